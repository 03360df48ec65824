"""Attribute reconciliation by per-field source precedence.

For each canonical field the rule table lists sources in precedence order.
The first value that is present and not a placeholder ("unknown", "N/A", ...)
wins. Runs only after correlation; it never decides which poles match.
"""

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import Config
from .field_maps import iter_path, scalar_text, unwrap_attribute
from .measurements import parse_height
from .models import SOURCE_A, SOURCE_B, CanonicalPoleRecord, CorrelationMatch, PoleIdentity

logger = logging.getLogger(__name__)


def _format_text(value) -> Optional[str]:
    return scalar_text(value) or None


def _format_owner(value) -> Optional[str]:
    """SPIDA owners are objects {"industry": "UTILITY", "id": "CPS Energy"}."""
    if isinstance(value, dict) and ("id" in value or "industry" in value):
        owner_id = scalar_text(value.get("id"))
        if owner_id:
            return owner_id
        industry = scalar_text(value.get("industry"))
        return f"{industry} Owner" if industry else None
    return _format_text(value)


def _format_height_ft(value) -> Optional[int]:
    if not (isinstance(value, dict) and "value" in value):
        value = unwrap_attribute(value)
    feet = parse_height(value)
    return int(round(feet)) if feet is not None else None


def _format_grade(value) -> Optional[str]:
    text = _format_text(value)
    if not text:
        return None
    return text if text.lower().startswith("grade") else f"Grade {text}"


def _format_structure(value) -> Optional[str]:
    """Pole client item -> "40-4 Southern Pine" (height-class species)."""
    if not isinstance(value, dict):
        return None
    species = scalar_text(value.get("species"))
    pole_class = scalar_text(value.get("classOfPole") or value.get("class"))
    if not species or not pole_class:
        return None
    height = _format_height_ft(value.get("height"))
    if height:
        return f"{height}-{pole_class} {species}"
    return f"{pole_class} {species}"


FORMATTERS: Dict[str, Callable[[Any], Any]] = {
    "text": _format_text,
    "owner": _format_owner,
    "height_ft": _format_height_ft,
    "grade": _format_grade,
    "structure": _format_structure,
}


def load_precedence_rules(path: Path) -> Dict[str, List[dict]]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    rules = {k: v for k, v in data.items() if not k.startswith("_")}
    for name, entries in rules.items():
        for entry in entries:
            fmt = entry.get("format", "text")
            if fmt not in FORMATTERS:
                raise ValueError(f"Precedence rule '{name}': unknown format '{fmt}'")
    logger.info(f"Precedence rules: {len(rules)} canonical fields loaded")
    return rules


class Reconciler:
    """Applies precedence rules to a correlated pair (or a lone, unmatched pole)."""

    def __init__(self, rules: Optional[Dict[str, List[dict]]] = None, config: Optional[Config] = None):
        self.config = config or Config()
        if rules is None:
            rules = load_precedence_rules(self.config.precedence_file)
        if not isinstance(rules, dict):
            raise TypeError(f"precedence rules must be a dict of field -> entries, got {type(rules).__name__}")
        self.rules = rules
        self._placeholders = {str(v).strip().lower() for v in self.config.placeholder_values}

    def _is_empty(self, value) -> bool:
        if value is None:
            return True
        if isinstance(value, str):
            return value.strip().lower() in self._placeholders
        return False

    def resolve_field(self, entries: List[dict], sources: Dict[str, Optional[PoleIdentity]]):
        """Returns (value, source tag) of the first usable value, or (None, None)."""
        for entry in entries:
            identity = sources.get(entry.get("source"))
            if identity is None or identity.raw_ref is None:
                continue
            fmt = FORMATTERS[entry.get("format", "text")]
            for path in entry.get("paths", []):
                for raw in iter_path(identity.raw_ref, path):
                    value = fmt(raw)
                    if not self._is_empty(value):
                        return value, identity.source_tag
        return None, None

    def reconcile(self, matched_pair) -> CanonicalPoleRecord:
        """
        matched_pair: a CorrelationMatch, an (a, b) tuple with either side
        possibly None, or a single PoleIdentity.
        """
        a, b, stage, confidence = _unpack(matched_pair)
        sources = {SOURCE_A: a, SOURCE_B: b}
        record = CanonicalPoleRecord(
            pole_label=(a.primary_label if a else "") or (b.primary_label if b else "")
                       or (a or b).source_id,
            source_a_id=a.source_id if a else None,
            source_b_id=b.source_id if b else None,
            match_stage=stage,
            confidence=confidence,
        )
        for name, entries in self.rules.items():
            value, source = self.resolve_field(entries, sources)
            record.fields[name] = value
            record.field_sources[name] = source
        return record


def _unpack(matched_pair):
    if isinstance(matched_pair, CorrelationMatch):
        return matched_pair.a, matched_pair.b, matched_pair.stage, matched_pair.confidence
    if isinstance(matched_pair, PoleIdentity):
        if matched_pair.source_tag == SOURCE_B:
            return None, matched_pair, None, 0.0
        return matched_pair, None, None, 0.0
    if isinstance(matched_pair, tuple) and len(matched_pair) == 2:
        a, b = matched_pair
        if (a is None or isinstance(a, PoleIdentity)) and (b is None or isinstance(b, PoleIdentity)) and (a or b):
            return a, b, None, 0.0
    raise TypeError(
        f"reconcile expects a CorrelationMatch, PoleIdentity or (a, b) pair, got {type(matched_pair).__name__}"
    )


def reconcile(matched_pair, precedence_rules: Dict[str, List[dict]],
              config: Optional[Config] = None) -> CanonicalPoleRecord:
    """Merge one correlated pair into a canonical pole record."""
    return Reconciler(precedence_rules, config).reconcile(matched_pair)
