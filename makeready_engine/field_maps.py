"""Per-source field maps and the dotted-path resolver they are written in.

A field map says where a source keeps the pieces of a pole identity. Paths
are dotted keys with optional selectors:

    leads[*].locations[*]                 every location of every lead
    designs[layerType=Measured].structure first design whose layerType matches
    attributes.pole_tag.*.tagtext         any child of pole_tag
    coordinates[1]                        list index
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

_SEGMENT = re.compile(r"^(?P<name>[^\[\]]*)(?:\[(?P<sel>[^\]]*)\])?$")

# Katapult wraps attribute values as {"-Imported": v}, {"one": v}, {"button_added": v}, ...
_PREFERRED_ATTRIBUTE_KEYS = ("-Imported", "one", "button_added", "assessment", "multi_added")


def _children(node) -> list:
    if isinstance(node, dict):
        return list(node.values())
    if isinstance(node, (list, tuple)):
        return list(node)
    return []


def _apply_selector(node, sel: str) -> list:
    if not isinstance(node, (list, tuple, dict)):
        return []
    if sel == "*":
        return _children(node)
    if sel.lstrip("-").isdigit():
        items = list(node) if isinstance(node, (list, tuple)) else []
        idx = int(sel)
        return [items[idx]] if -len(items) <= idx < len(items) else []
    if "=" in sel:
        key, _, want = sel.partition("=")
        for item in _children(node):
            if isinstance(item, dict) and str(item.get(key.strip())) == want.strip():
                return [item]
        return []
    return []


def iter_path(obj: Any, path: str) -> Iterator[Any]:
    """Yield every value reachable from obj along path (None values skipped)."""
    if not path:
        if obj is not None:
            yield obj
        return

    current = [obj]
    for segment in path.split("."):
        m = _SEGMENT.match(segment)
        if not m:
            return
        name, sel = m.group("name"), m.group("sel")
        nxt = []
        for node in current:
            if name == "*":
                nxt.extend(_children(node))
                continue
            if name:
                if not isinstance(node, dict) or name not in node:
                    continue
                node = node[name]
            if sel is None:
                nxt.append(node)
            else:
                nxt.extend(_apply_selector(node, sel))
        current = [n for n in nxt if n is not None]
        if not current:
            return
    yield from current


def get_nested(obj: Any, path: str, default: Any = None) -> Any:
    """First value at path, or default."""
    return next(iter_path(obj, path), default)


def unwrap_attribute(value: Any) -> Any:
    """Resolve a Katapult-style attribute dict to its value (prefers -Imported)."""
    depth = 0
    while isinstance(value, dict) and value and depth < 3:
        for key in _PREFERRED_ATTRIBUTE_KEYS:
            if value.get(key) is not None:
                value = value[key]
                break
        else:
            first = next(iter(value.values()))
            return value if isinstance(first, (dict, list)) else first
        depth += 1
    return value


def scalar_text(value: Any) -> str:
    """Stringify a scalar label value; dicts, lists and bools give ''."""
    value = unwrap_attribute(value)
    if value is None or isinstance(value, (bool, dict, list, tuple)):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


@dataclass
class FieldMap:
    name: str
    records_path: str = ""
    id_path: Optional[str] = None
    label_paths: List[str] = field(default_factory=list)
    tag_paths: List[str] = field(default_factory=list)
    tag_value_keys: List[str] = field(default_factory=lambda: ["value", "name", "tag_number", "tagtext"])
    alias_paths: List[str] = field(default_factory=list)
    attribute_path: Optional[str] = None
    identifier_key_tokens: List[str] = field(default_factory=list)
    identifier_key_exclude_tokens: List[str] = field(default_factory=list)
    geojson_paths: List[str] = field(default_factory=list)
    lat_paths: List[str] = field(default_factory=list)
    lon_paths: List[str] = field(default_factory=list)
    node_type_path: Optional[str] = None
    allowed_node_types: List[str] = field(default_factory=list)
    connections_path: Optional[str] = None

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "FieldMap":
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Field map '{name}': ignoring unknown keys {sorted(unknown)}")
        kwargs = {k: v for k, v in data.items() if k in known and k != "name"}
        return cls(name=name, **kwargs)

    def is_pole(self, record: dict) -> bool:
        if not self.node_type_path or not self.allowed_node_types:
            return True
        node_type = scalar_text(get_nested(record, self.node_type_path))
        return not node_type or node_type in self.allowed_node_types


def load_field_maps(path: Path) -> Dict[str, FieldMap]:
    """Load every source's field map from a JSON file."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    maps = {name: FieldMap.from_dict(name, entry) for name, entry in data.items()
            if not name.startswith("_")}
    logger.info(f"Field maps: {len(maps)} sources loaded ({', '.join(sorted(maps))})")
    return maps


def records_from_document(document: dict, field_map: FieldMap) -> List[Tuple[str, dict]]:
    """
    Pull the pole records out of a parsed source document.

    Returns (source_id, record) pairs. Records held in a mapping keep their
    key as source_id; list records use field_map.id_path or their position.
    Non-pole records (by node type) are dropped.
    """
    if not isinstance(document, dict):
        raise TypeError(
            f"{field_map.name}: source document must be a dict, got {type(document).__name__}"
        )

    if field_map.records_path and "[" not in field_map.records_path and "*" not in field_map.records_path:
        container = get_nested(document, field_map.records_path, {})
    else:
        container = list(iter_path(document, field_map.records_path))

    if isinstance(container, dict):
        pairs = [(str(k), v) for k, v in container.items()]
    else:
        pairs = [(None, v) for v in container]

    records = []
    skipped = 0
    for idx, (key, record) in enumerate(pairs):
        if not isinstance(record, dict):
            skipped += 1
            continue
        if not field_map.is_pole(record):
            skipped += 1
            continue
        source_id = key
        if source_id is None and field_map.id_path:
            source_id = scalar_text(get_nested(record, field_map.id_path)) or None
        if source_id is None:
            source_id = f"{field_map.name}-{idx + 1:03d}"
        records.append((source_id, record))

    if skipped:
        logger.debug(f"{field_map.name}: skipped {skipped} non-pole records")
    return records
