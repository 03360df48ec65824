"""Height parsing and formatting (feet-inches strings, unit dicts, decimals).

Every height that enters the engine goes through ``parse_height`` and every
height that leaves it for display goes through ``format_feet_inches``, so
``parse_height(format_feet_inches(h))`` is within half an inch of ``h``.
"""

import math
import re
from typing import Optional, Tuple

METRES_PER_FOOT = 0.3048

# 25'-6"  25' 6"  25'6  25ft 6in  25'
_FEET_INCHES = re.compile(
    r"""^(?P<feet>\d+(?:\.\d+)?)\s*(?:'|ft\.?|feet)\s*-?\s*
        (?:(?P<inches>\d+(?:\.\d+)?)\s*(?:"|''|in\.?|inches)?)?$""",
    re.IGNORECASE | re.VERBOSE,
)
# 6"  6in
_INCHES_ONLY = re.compile(r"""^(?P<inches>\d+(?:\.\d+)?)\s*(?:"|''|in\.?|inches)$""", re.IGNORECASE)
# 25 6"  (feet mark dropped)
_SPACE_SEPARATED = re.compile(r"""^(?P<feet>\d+)\s+(?P<inches>\d+(?:\.\d+)?)\s*(?:"|''|in\.?)$""", re.IGNORECASE)

_UNIT_TO_FEET = {
    "met": 1 / METRES_PER_FOOT,
    "foo": 1.0,
    "fee": 1.0,
    "ft": 1.0,
    "inc": 1 / 12,
    "in": 1 / 12,
}


def _valid(value: float) -> Optional[float]:
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None
    return value


def parse_feet_inches(text: str) -> Optional[float]:
    """Parse a feet-inches string to decimal feet. Returns None if unparsable."""
    if not isinstance(text, str):
        return None
    s = text.strip().replace("’", "'").replace("”", '"')
    if not s:
        return None

    try:
        return _valid(float(s))
    except ValueError:
        pass

    for pattern in (_FEET_INCHES, _SPACE_SEPARATED):
        m = pattern.match(s)
        if m:
            feet = float(m.group("feet"))
            inches = float(m.group("inches") or 0)
            return _valid(feet + inches / 12)

    m = _INCHES_ONLY.match(s)
    if m:
        return _valid(float(m.group("inches")) / 12)
    return None


def parse_height(raw) -> Optional[float]:
    """
    Convert any height representation to decimal feet.

    Accepts:
        - dicts from SPIDA JSON, e.g. {"unit": "METRE", "value": 16.764}
        - numbers (already feet)
        - feet-inches strings like "25' 6\"", "25'-6\"", "25'", "6\"" or "25.5"
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, dict):
        try:
            value = float(raw.get("value"))
        except (TypeError, ValueError):
            return None
        unit = str(raw.get("unit", "")).strip().lower()
        factor = 1.0
        for prefix, f in _UNIT_TO_FEET.items():
            if unit.startswith(prefix):
                factor = f
                break
        return _valid(value * factor)

    if isinstance(raw, (int, float)):
        return _valid(float(raw))

    return parse_feet_inches(str(raw))


def inches_to_feet(raw, divisor: float = 12.0) -> float:
    """Move values are recorded in inches; missing or bad values count as 0."""
    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value) or math.isinf(value):
        return 0.0
    return value / divisor


def format_feet_inches(height: Optional[float]) -> str:
    """Format decimal feet as 25'-6\" (nearest inch). None -> 'N/A'."""
    if height is None:
        return "N/A"
    total_inches = int(round(height * 12))
    feet, inches = divmod(total_inches, 12)
    return f"{feet}'-{inches}\""


def format_span_heights(aggregate) -> Tuple[str, str]:
    """
    Display strings (existing, proposed) for one span aggregate.

    Reference subgroups show the existing height in parentheses; proposed
    heights are never parenthesized and are blank when there is no move.
    """
    existing = format_feet_inches(aggregate.existing_height)
    if aggregate.is_reference_subgroup and aggregate.existing_height is not None:
        existing = f"({existing})"
    proposed = format_feet_inches(aggregate.proposed_height) if aggregate.proposed_height is not None else ""
    return existing, proposed
