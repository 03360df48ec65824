"""Pole coordinates: extraction from source records and great-circle distance scoring."""

import logging
import math
from typing import Optional, Tuple

from .field_maps import FieldMap, iter_path, unwrap_attribute

logger = logging.getLogger(__name__)

Coord = Tuple[float, float]  # (lat, lon)
EARTH_RADIUS_M = 6371000.0


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters. NaN in, NaN out."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Clamp rounding noise; keeps d(a, a) == 0 and NaN propagating
    if a > 1.0:
        a = 1.0
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_confidence(distance_m: float, cutoff_m: float, base: float = 0.5) -> float:
    """
    Confidence for a geographic match: base at 0 m, decaying linearly to 0
    at the cutoff. NaN distances and distances past the cutoff score 0.
    """
    if distance_m is None or math.isnan(distance_m) or cutoff_m <= 0:
        return 0.0
    return base * max(0.0, 1.0 - distance_m / cutoff_m)


def _to_float(value) -> Optional[float]:
    value = unwrap_attribute(value)
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(f) or math.isinf(f) else f


def _valid_coord(lat: Optional[float], lon: Optional[float]) -> Optional[Coord]:
    if lat is None or lon is None:
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return None
    return lat, lon


def _geojson_coord(block) -> Optional[Coord]:
    """GeoJSON order is [lon, lat]."""
    coords = block.get("coordinates") if isinstance(block, dict) else block
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        lon, lat = _to_float(coords[0]), _to_float(coords[1])
        return _valid_coord(lat, lon)
    return None


def extract_coordinate(record: dict, field_map: FieldMap) -> Optional[Coord]:
    """
    Return (lat, lon) or None. Tries, in order:
    1. GeoJSON blocks named by field_map.geojson_paths
    2. flat latitude / longitude paths (attribute-wrapped values allowed)

    Flat pairs that look swapped (|lat| < 5 and |lon| > 20) are swapped back.
    """
    if not isinstance(record, dict):
        return None

    for path in field_map.geojson_paths:
        for block in iter_path(record, path):
            c = _geojson_coord(block)
            if c:
                return c

    for lat_path, lon_path in zip(field_map.lat_paths, field_map.lon_paths):
        lat = next((v for v in map(_to_float, iter_path(record, lat_path)) if v is not None), None)
        lon = next((v for v in map(_to_float, iter_path(record, lon_path)) if v is not None), None)
        if lat is None or lon is None:
            continue
        if abs(lat) < 5 and abs(lon) > 20:
            lat, lon = lon, lat
        c = _valid_coord(lat, lon)
        if c:
            return c
    return None
