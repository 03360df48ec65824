"""Shared in-memory SPIDAcalc / Katapult fixtures."""

import pytest

from makeready_engine.config import Config
from makeready_engine.field_maps import FieldMap

# ~5 m north of LOC2 (1 degree latitude ~ 111195 m)
LOC2_LAT, LOC2_LON = 29.4300, -98.5000
N2_LAT = LOC2_LAT + 5.0 / 111194.93


def _measured(owner, client_item=None):
    pole = {"owner": owner}
    if client_item is not None:
        pole["clientItem"] = client_item
    return {"layerType": "Measured", "structure": {"pole": pole}}


@pytest.fixture
def spida_doc():
    return {
        "leads": [{
            "locations": [
                {
                    "id": "Loc1",
                    "label": "1-PL410620",
                    "geographicCoordinate": {"type": "Point", "coordinates": [-98.4936, 29.4241]},
                    "designs": [
                        _measured(
                            {"industry": "UTILITY", "id": "CPS Energy"},
                            {"species": "Southern Pine", "classOfPole": "4",
                             "height": {"unit": "METRE", "value": 12.192}},
                        ),
                        {
                            "layerType": "Recommended",
                            "structure": {"pole": {}},
                            "analysis": [{"analysisCaseDetails": {"constructionGrade": "C"}}],
                        },
                    ],
                },
                {
                    "id": "Loc2",
                    "label": "PL555001",
                    "geographicCoordinate": {"type": "Point", "coordinates": [LOC2_LON, LOC2_LAT]},
                    "designs": [_measured("Unknown")],
                },
                {
                    "id": "Loc3",
                    "label": "PL999999",
                    "designs": [],
                },
            ]
        }]
    }


def _annotation(owner, wire_type, measured=None, decimal=None, mr_move=None, proposed=None):
    attrs = {
        "equipment_type": {"button_added": wire_type},
        "owner_name": {"one": owner},
    }
    if measured is not None:
        attrs["measured_height_ft"] = {"one": measured}
    if decimal is not None:
        attrs["height_ft_decimal"] = {"one": decimal}
    if mr_move is not None:
        attrs["mr_move"] = {"one": mr_move}
    if proposed is not None:
        attrs["proposed"] = proposed
    return {"attributes": attrs}


@pytest.fixture
def katapult_connections():
    return {
        "c1": {
            "node_id_1": "n1",
            "node_id_2": "n2",
            "attributes": {"connection_type": {"button_added": "aerial cable"}},
            "sections": {
                "s1": {"annotations": {
                    "a1": _annotation("CPS Energy", "Primary", measured="30' 0\""),
                    "a2": _annotation("CPS Energy", "Neutral", decimal=28.5, mr_move=24),
                    "a3": _annotation("Charter", "Fiber Optic Com", measured="22' 6\""),
                }},
                "s2": {"annotations": {
                    "a4": _annotation("CPS Energy", "Secondary", measured="31'"),
                    "a5": _annotation("Charter", "Fiber Optic Com", measured="bad height"),
                }},
            },
        },
        "c2": {
            "node_id_1": "n2",
            "node_id_2": "n3",
            "attributes": {"connection_type": {"button_added": "REF"}},
            "sections": {
                "s3": {"annotations": {
                    "a6": _annotation("Charter", "Fiber", decimal=20.0, mr_move=12),
                }},
            },
        },
        "c3": {
            "node_id_1": "x1",
            "node_id_2": "x2",
            "sections": {
                "s4": {"annotations": {"a7": _annotation("AT&T", "Telephone", decimal=19.0)}},
            },
        },
        "c4": {
            "node_id_1": "n1",
            "sections": {},
        },
    }


@pytest.fixture
def katapult_doc(katapult_connections):
    pole = {"button_added": "pole"}
    return {
        "nodes": {
            "n1": {"attributes": {
                "node_type": pole,
                "DLOC_number": {"-Imported": "pl410620"},
                "pole_number_alt": {"-Imported": "ALT-1"},
                "pole_owner": {"-Imported": "Unknown"},
                "owner_id": {"-Imported": "OWN-9"},
                "scid": {"auto_button": "001"},
            }},
            "n2": {
                "attributes": {
                    "node_type": pole,
                    "pole_tag": {"-Nx1": {"tagtext": "T-77"}},
                    "pole_owner": {"-Imported": "AT&T"},
                },
                "latitude": N2_LAT,
                "longitude": LOC2_LON,
            },
            "n3": {"attributes": {
                "node_type": pole,
                "DLOC_number": {"-Imported": "PL123456"},
            }},
            "ref1": {"attributes": {
                "node_type": {"button_added": "reference"},
                "DLOC_number": {"-Imported": "PL999999"},
            }},
        },
        "connections": katapult_connections,
    }


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def simple_map():
    """Flat records: {"label": ..., "lat": ..., "lon": ...}."""
    return FieldMap(name="simple", label_paths=["label"], lat_paths=["lat"], lon_paths=["lon"])
