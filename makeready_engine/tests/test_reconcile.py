"""Precedence-based attribute reconciliation."""

import copy
import json

import pytest

from makeready_engine.config import Config
from makeready_engine.correlator import Correlator
from makeready_engine.field_maps import load_field_maps
from makeready_engine.models import SOURCE_A, SOURCE_B, PoleIdentity
from makeready_engine.reconcile import Reconciler, load_precedence_rules, reconcile

OWNER_RULES = {
    "pole_owner": [
        {"source": "A", "paths": ["owner"], "format": "owner"},
        {"source": "B", "paths": ["attributes.pole_owner"], "format": "text"},
    ],
}


def _pole(tag, sid, raw):
    return PoleIdentity(sid, "PL1", "1", tag, raw_ref=raw)


@pytest.fixture(scope="module")
def rules():
    return load_precedence_rules(Config().precedence_file)


@pytest.fixture
def correlation(spida_doc, katapult_doc):
    maps = load_field_maps(Config().field_maps_file)
    return Correlator().correlate(spida_doc, katapult_doc, maps["spida"], maps["katapult"])


# ============================================================
# precedence
# ============================================================

def test_first_source_wins():
    a = _pole(SOURCE_A, "a1", {"owner": {"industry": "UTILITY", "id": "CPS Energy"}})
    b = _pole(SOURCE_B, "b1", {"attributes": {"pole_owner": {"-Imported": "AT&T"}}})
    record = reconcile((a, b), OWNER_RULES)
    assert record.fields["pole_owner"] == "CPS Energy"
    assert record.field_sources["pole_owner"] == SOURCE_A


@pytest.mark.parametrize("placeholder", ["Unknown", "N/A", "", "  none "])
def test_placeholder_falls_through(placeholder):
    a = _pole(SOURCE_A, "a1", {"owner": placeholder})
    b = _pole(SOURCE_B, "b1", {"attributes": {"pole_owner": {"-Imported": "AT&T"}}})
    record = reconcile((a, b), OWNER_RULES)
    assert record.fields["pole_owner"] == "AT&T"
    assert record.field_sources["pole_owner"] == SOURCE_B


def test_nothing_usable_gives_none():
    a = _pole(SOURCE_A, "a1", {"owner": "unknown"})
    b = _pole(SOURCE_B, "b1", {})
    record = reconcile((a, b), OWNER_RULES)
    assert record.fields["pole_owner"] is None
    assert record.field_sources["pole_owner"] is None


def test_owner_industry_fallback():
    a = _pole(SOURCE_A, "a1", {"owner": {"industry": "COMMUNICATION", "id": ""}})
    record = reconcile(a, OWNER_RULES)
    assert record.fields["pole_owner"] == "COMMUNICATION Owner"


def test_reversed_precedence():
    rules = {"pole_owner": list(reversed(OWNER_RULES["pole_owner"]))}
    a = _pole(SOURCE_A, "a1", {"owner": "CPS Energy"})
    b = _pole(SOURCE_B, "b1", {"attributes": {"pole_owner": {"-Imported": "AT&T"}}})
    assert reconcile((a, b), rules).fields["pole_owner"] == "AT&T"


def test_custom_placeholders():
    a = _pole(SOURCE_A, "a1", {"owner": "TBD"})
    b = _pole(SOURCE_B, "b1", {"attributes": {"pole_owner": "AT&T"}})
    assert reconcile((a, b), OWNER_RULES).fields["pole_owner"] == "TBD"
    config = Config(placeholder_values=["tbd"])
    assert reconcile((a, b), OWNER_RULES, config).fields["pole_owner"] == "AT&T"


# ============================================================
# correlated documents
# ============================================================

def test_reconcile_normalized_match(rules, correlation):
    match = correlation.matches[0]
    record = reconcile(match, rules)
    assert record.pole_label == "1-PL410620"
    assert record.source_a_id == "Loc1"
    assert record.source_b_id == "n1"
    assert record.match_stage == "normalized"
    assert record.confidence == 0.8
    assert record.fields == {
        "pole_owner": "CPS Energy",
        "pole_structure": "40-4 Southern Pine",
        "pole_height_ft": 40,
        "pole_class": "4",
        "pole_species": "Southern Pine",
        "construction_grade": "Grade C",
    }
    assert set(record.field_sources.values()) == {SOURCE_A}


def test_reconcile_falls_back_to_field_survey(rules, correlation):
    record = reconcile(correlation.matches[1], rules)
    assert record.fields["pole_owner"] == "AT&T"
    assert record.field_sources["pole_owner"] == SOURCE_B
    assert record.fields["pole_height_ft"] is None


def test_lone_identity(rules, correlation):
    [loc3] = correlation.unmatched_a
    record = reconcile(loc3, rules)
    assert record.pole_label == "PL999999"
    assert record.source_a_id == "Loc3"
    assert record.source_b_id is None
    assert record.match_stage is None
    assert record.confidence == 0.0
    assert all(v is None for v in record.fields.values())

    [n3] = correlation.unmatched_b
    record = reconcile(n3, rules)
    assert record.source_a_id is None
    assert record.source_b_id == "n3"


def test_inputs_are_not_mutated(rules, correlation, spida_doc, katapult_doc):
    before = copy.deepcopy((spida_doc, katapult_doc))
    raw_before = [copy.deepcopy(m.a.raw_ref) for m in correlation.matches]
    for m in correlation.matches:
        reconcile(m, rules)
    assert (spida_doc, katapult_doc) == before
    assert [m.a.raw_ref for m in correlation.matches] == raw_before


def test_canonical_record_is_json_ready(rules, correlation):
    out = reconcile(correlation.matches[0], rules).to_dict()
    assert json.loads(json.dumps(out)) == out


# ============================================================
# bad input
# ============================================================

@pytest.mark.parametrize("pair", ["PL1", None, (None, None), (1, 2), ("a", "b", "c")])
def test_reconcile_rejects_bad_input(pair):
    with pytest.raises(TypeError):
        reconcile(pair, OWNER_RULES)


def test_rules_must_be_a_dict():
    with pytest.raises(TypeError):
        Reconciler(rules=[{"source": "A"}])


def test_unknown_format_rejected(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"f": [{"source": "A", "paths": ["x"], "format": "bogus"}]}))
    with pytest.raises(ValueError):
        load_precedence_rules(path)


def test_packaged_rules_load(rules):
    assert list(rules) == [
        "pole_owner", "pole_structure", "pole_height_ft",
        "pole_class", "pole_species", "construction_grade",
    ]
