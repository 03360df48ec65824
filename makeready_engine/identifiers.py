"""Pole identity extraction and label normalization."""

import copy
import logging
import re
from typing import Iterable, List, Optional, Set

from .config import Config
from .field_maps import FieldMap, get_nested, iter_path, records_from_document, scalar_text, unwrap_attribute
from .geo import extract_coordinate
from .models import PoleIdentity

logger = logging.getLogger(__name__)

# "1-PL410620", "A-410620"
_SEQUENCE_PREFIX = re.compile(r"^\s*(?:\d+|[A-Za-z]{1,2})\s*-\s*(?=\S)")
_NON_ALNUM = re.compile(r"[^0-9a-z]")
# "pl410620", "p410620" (only when digits follow)
_POLE_PREFIX = re.compile(r"^pl?(?=\d)")
_KEY_TOKENS = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")


def normalize_label(label: Optional[str]) -> str:
    """
    Normalize a pole label for cross-source comparison.

    Strips a leading sequence prefix ("1-"), case-folds, drops everything
    that is not a letter or digit, then drops a leading "PL"/"P" pole prefix
    in front of digits. Idempotent.
    """
    if not label:
        return ""
    s = _SEQUENCE_PREFIX.sub("", str(label), count=1)
    s = _NON_ALNUM.sub("", s.casefold())
    return _POLE_PREFIX.sub("", s, count=1)


def key_tokens(key: str) -> List[str]:
    """Split an attribute key into lowercase tokens: 'DLOC_number' -> ['dloc', 'number']."""
    return [t.lower() for t in _KEY_TOKENS.findall(key or "")]


def is_identifier_key(key: str, field_map: FieldMap) -> bool:
    tokens = set(key_tokens(key))
    if not tokens:
        return False
    if tokens & set(field_map.identifier_key_exclude_tokens):
        return False
    return bool(tokens & set(field_map.identifier_key_tokens))


def _label_values(value, tag_value_keys: List[str]) -> List[str]:
    """Labels held in one value: a scalar, a tag object, or a list of either."""
    if isinstance(value, dict):
        for k in tag_value_keys + ["id"]:
            text = scalar_text(value.get(k))
            if text:
                return [text]
    value = unwrap_attribute(value)
    if isinstance(value, (list, tuple)):
        out = []
        for item in value:
            out.extend(_label_values(item, tag_value_keys))
        return out
    if isinstance(value, dict):
        # Katapult keys repeated tags by push id: {"-Nxyz": {"tagtext": ...}}
        out = []
        for child in value.values():
            if isinstance(child, dict):
                out.extend(_label_values(child, tag_value_keys))
        return out
    text = scalar_text(value)
    return [text] if text else []


def extract_identity(record: dict, field_map: FieldMap, source_tag: str,
                     source_id: str = "", placeholders: Optional[Iterable[str]] = None) -> PoleIdentity:
    """
    Build a PoleIdentity from one raw record. Never raises on missing data:
    a record without any label gets an empty primary_label.
    """
    if not isinstance(record, dict):
        record = {}
    if placeholders is None:
        placeholders = Config().placeholder_values
    skip = {str(v).strip().lower() for v in placeholders}

    primary = ""
    alternates: Set[str] = set()

    for path in field_map.label_paths:
        for value in iter_path(record, path):
            for text in _label_values(value, field_map.tag_value_keys):
                if text.strip().lower() in skip:
                    continue
                if not primary:
                    primary = text
                else:
                    alternates.add(text)

    for path in field_map.tag_paths + field_map.alias_paths:
        for value in iter_path(record, path):
            alternates.update(_label_values(value, field_map.tag_value_keys))

    if field_map.attribute_path and field_map.identifier_key_tokens:
        attrs = get_nested(record, field_map.attribute_path, {})
        if isinstance(attrs, dict):
            for key, value in attrs.items():
                if is_identifier_key(key, field_map):
                    alternates.update(_label_values(value, field_map.tag_value_keys))

    alternates.discard(primary)
    alternates.discard("")

    return PoleIdentity(
        source_id=str(source_id),
        primary_label=primary,
        normalized_label=normalize_label(primary),
        source_tag=source_tag,
        alternate_labels=frozenset(alternates),
        coordinate=extract_coordinate(record, field_map),
        raw_ref=copy.deepcopy(record),
    )


def extract_identities(records, field_map: FieldMap, source_tag: str,
                       placeholders: Optional[Iterable[str]] = None) -> List[PoleIdentity]:
    """
    Extract identities from a collection of records.

    records may be a parsed source document (dict holding the field map's
    records_path), a mapping of source_id -> record (field maps without a
    records_path), or an iterable of records / (source_id, record) pairs.
    Anything else is a programmer error and raises TypeError, and so does a
    document missing its records container.

    placeholders: label values that count as no label
    (default Config.placeholder_values).
    """
    if not isinstance(field_map, FieldMap):
        raise TypeError(f"field_map must be a FieldMap, got {type(field_map).__name__}")
    if records is None or isinstance(records, (str, bytes)):
        raise TypeError(f"{field_map.name}: records must be a collection of dicts, got {type(records).__name__}")

    pairs = _as_pairs(records, field_map)
    identities = [extract_identity(rec, field_map, source_tag, sid, placeholders) for sid, rec in pairs]
    unlabeled = sum(1 for p in identities if not p.has_label)
    logger.info(
        f"{field_map.name}: {len(identities)} identities extracted "
        f"({unlabeled} without a label, "
        f"{sum(1 for p in identities if p.coordinate)} with coordinates)"
    )
    return identities


def _as_pairs(records, field_map: FieldMap) -> list:
    if isinstance(records, dict):
        if field_map.records_path:
            container = field_map.records_path.split("[")[0]
            if get_nested(records, container) is None:
                raise TypeError(f"{field_map.name}: source document has no '{container}' records container")
            return records_from_document(records, field_map)
        return [(str(k), v) for k, v in records.items() if isinstance(v, dict) and field_map.is_pole(v)]

    try:
        items = list(records)
    except TypeError:
        raise TypeError(
            f"{field_map.name}: records must be iterable, got {type(records).__name__}"
        ) from None

    pairs = []
    for idx, item in enumerate(items):
        if isinstance(item, tuple) and len(item) == 2 and isinstance(item[1], dict):
            sid, rec = item
        elif isinstance(item, dict):
            rec = item
            sid = scalar_text(get_nested(rec, field_map.id_path)) if field_map.id_path else ""
            sid = sid or f"{field_map.name}-{idx + 1:03d}"
        else:
            raise TypeError(
                f"{field_map.name}: record {idx} must be a dict, got {type(item).__name__}"
            )
        if field_map.is_pole(rec):
            pairs.append((str(sid), rec))
    return pairs


def all_labels(identity: PoleIdentity) -> Iterable[str]:
    if identity.primary_label:
        yield identity.primary_label
    yield from sorted(identity.alternate_labels)
