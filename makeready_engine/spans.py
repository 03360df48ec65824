"""Span (midspan) wire aggregation.

Each connection between two poles carries measurement sections, and each
section carries wire annotations. Annotations are folded per connection
into one aggregate per (category, owner):

    existing_height  running minimum of measured heights
    move_value_feet  largest move recorded for the key (inches -> feet)
    proposed_height  existing_height + move, set only once the connection
                     is complete and only when the move is positive
"""

import logging
import math
from typing import Dict, Iterable, List, Optional, Tuple

from .classification import WireClassifier
from .config import Config
from .field_maps import get_nested, iter_path, scalar_text, unwrap_attribute
from .measurements import inches_to_feet, parse_height
from .models import (
    MeasurementSection,
    SpanAggregationResult,
    SpanConnection,
    SpanWireAggregate,
    WireAnnotation,
)

logger = logging.getLogger(__name__)

_REFERENCE_KEYWORDS = ("ref", "reference")
_TRUE_STRINGS = {"true", "yes", "y", "1"}


def _truthy(value) -> bool:
    value = unwrap_attribute(value)
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value) if isinstance(value, (bool, int, float)) else False


def _items(container) -> List[Tuple[str, dict]]:
    """(id, record) pairs from a dict keyed by id or a list of records with 'id'."""
    if isinstance(container, dict):
        return [(str(k), v) for k, v in container.items() if isinstance(v, dict)]
    if isinstance(container, (list, tuple)):
        return [(str(v.get("id", idx)), v) for idx, v in enumerate(container) if isinstance(v, dict)]
    return []


def _max_move_inches(record: dict) -> Optional[float]:
    moves = []
    for path in ("attributes.mr_move", "mr_move", "attributes._effective_moves.value", "_effective_moves.value"):
        for value in iter_path(record, path):
            value = unwrap_attribute(value)
            if value is None or isinstance(value, bool):
                continue
            try:
                move = float(value)
            except (TypeError, ValueError):
                continue
            if math.isnan(move) or math.isinf(move):
                continue
            moves.append(move)
    return max(moves) if moves else None


class SpanAggregator:
    """Builds per-span wire aggregates from Katapult-style connection records."""

    def __init__(self, config: Optional[Config] = None, classifier: Optional[WireClassifier] = None):
        self.config = config or Config()
        self.classifier = classifier or WireClassifier(self.config.wire_keywords_file)

    # ------------------------------------------------------------------
    # parsing
    # ------------------------------------------------------------------

    @staticmethod
    def is_reference_connection(record: dict) -> bool:
        if _truthy(get_nested(record, "attributes.is_reference")):
            return True
        connection_type = scalar_text(get_nested(record, "attributes.connection_type")).lower()
        return any(k in connection_type for k in _REFERENCE_KEYWORDS)

    def parse_annotation(self, annotation_id: str, record: dict, section_id: str, connection_id: str,
                         photofirst_wires=None) -> Optional[WireAnnotation]:
        """One annotation record -> WireAnnotation, or None if it carries no usable height."""
        wire_type = scalar_text(get_nested(record, "attributes.equipment_type"))
        owner = scalar_text(get_nested(record, "attributes.owner_name")) or "Unknown"

        height = None
        decimal = get_nested(record, "attributes.height_ft_decimal")
        if decimal is not None:
            height = parse_height(unwrap_attribute(decimal))
        if height is None:
            measured = get_nested(record, "attributes.measured_height_ft")
            if measured is not None:
                height = parse_height(unwrap_attribute(measured))

        if not wire_type and owner == "Unknown":
            logger.debug(f"Annotation {connection_id}/{section_id}/{annotation_id}: no type or owner, skipped")
            return None
        if height is None:
            logger.debug(f"Annotation {connection_id}/{section_id}/{annotation_id}: malformed height, skipped")
            return None

        move_inches = _max_move_inches(record)
        pf_inches = self._photofirst_move(wire_type, owner, photofirst_wires)
        candidates = [m for m in (move_inches, pf_inches) if m is not None]
        move_feet = inches_to_feet(max(candidates), self.config.move_unit_divisor) if candidates else 0.0

        return WireAnnotation(
            category=self.classifier.classify(owner, wire_type),
            owner=owner,
            height_feet=height,
            wire_type=wire_type,
            is_proposed=_truthy(get_nested(record, "attributes.proposed")) or _truthy(record.get("proposed")),
            move_feet=move_feet,
            section_id=section_id,
            connection_id=connection_id,
        )

    @staticmethod
    def _photofirst_move(wire_type: str, owner: str, photofirst_wires) -> Optional[float]:
        """Move (inches) from the job-level photofirst wire table, matched on type and owner."""
        if not photofirst_wires or not wire_type:
            return None
        wt, ow = wire_type.lower(), owner.lower()
        for _, wire in _items(photofirst_wires):
            pf_type = scalar_text(wire.get("type")).lower()
            pf_owner = scalar_text(wire.get("owner") or wire.get("company")).lower()
            if wt in pf_type and ow in pf_owner:
                return _max_move_inches(wire)
        return None

    def parse_connection(self, connection_id: str, record: dict,
                         photofirst_wires=None) -> Tuple[Optional[SpanConnection], int]:
        """Returns (connection or None, number of annotations skipped)."""
        from_pole = scalar_text(record.get("node_id_1"))
        to_pole = scalar_text(record.get("node_id_2"))
        if not from_pole or not to_pole:
            logger.debug(f"Connection {connection_id} missing pole ids, skipped")
            return None, 0

        connection = SpanConnection(
            id=connection_id,
            from_pole_id=from_pole,
            to_pole_id=to_pole,
            is_reference_subgroup=self.is_reference_connection(record),
        )
        skipped = 0
        for section_id, section in _items(record.get("sections")):
            annotations = []
            for annotation_id, ann in _items(section.get("annotations")):
                wire = self.parse_annotation(annotation_id, ann, section_id, connection_id, photofirst_wires)
                if wire is None:
                    skipped += 1
                else:
                    annotations.append(wire)
            if annotations:
                connection.sections.append(MeasurementSection(
                    id=section_id,
                    annotations=annotations,
                    lat=_float_or_none(section.get("latitude")),
                    lon=_float_or_none(section.get("longitude")),
                ))
        return connection, skipped

    # ------------------------------------------------------------------
    # aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def fold_connection(connection: SpanConnection) -> List[SpanWireAggregate]:
        """
        Fold every annotation of one connection, then finalize. Every
        annotation with a height feeds the running minimum, proposed or not.
        """
        aggregates: Dict[Tuple[str, str], SpanWireAggregate] = {}
        for section in connection.sections:
            for ann in section.annotations:
                key = (ann.category, ann.owner)
                agg = aggregates.get(key)
                if agg is None:
                    agg = SpanWireAggregate(
                        connection_id=connection.id,
                        from_pole_id=connection.from_pole_id,
                        to_pole_id=connection.to_pole_id,
                        category=ann.category,
                        owner=ann.owner,
                        is_reference_subgroup=connection.is_reference_subgroup,
                    )
                    aggregates[key] = agg
                agg.annotation_count += 1
                if ann.wire_type and ann.wire_type not in agg.wire_types:
                    agg.wire_types.append(ann.wire_type)
                if agg.existing_height is None or ann.height_feet < agg.existing_height:
                    agg.existing_height = ann.height_feet
                if ann.move_feet > agg.move_value_feet:
                    agg.move_value_feet = ann.move_feet

        for agg in aggregates.values():
            if agg.existing_height is not None and agg.move_value_feet > 0:
                agg.proposed_height = agg.existing_height + agg.move_value_feet
        return list(aggregates.values())

    def aggregate(self, connection_records, correlated_pole_ids: Optional[Iterable[str]] = None,
                  photofirst_wires=None) -> SpanAggregationResult:
        """
        Aggregate wires for every connection touching a correlated pole.

        connection_records is a dict keyed by connection id, a list of
        connection dicts, or a whole Katapult document with 'connections'.
        An empty or None correlated_pole_ids disables the pole filter.
        """
        if isinstance(connection_records, dict) and isinstance(connection_records.get("connections"), dict):
            if photofirst_wires is None:
                photofirst_wires = get_nested(connection_records, "photofirst_data.wire")
            connection_records = connection_records["connections"]
        if not isinstance(connection_records, (dict, list, tuple)):
            raise TypeError(
                f"connection_records must be a dict or list of connection dicts, "
                f"got {type(connection_records).__name__}"
            )
        if isinstance(correlated_pole_ids, (str, bytes)):
            raise TypeError("correlated_pole_ids must be a collection of ids, not a string")
        pole_filter = {str(p) for p in correlated_pole_ids} if correlated_pole_ids else set()

        result = SpanAggregationResult()
        for connection_id, record in _items(connection_records):
            connection, skipped = self.parse_connection(connection_id, record, photofirst_wires)
            result.skipped_annotations += skipped
            if connection is None:
                result.skipped_connections += 1
                continue
            if pole_filter and not ({connection.from_pole_id, connection.to_pole_id} & pole_filter):
                result.skipped_connections += 1
                continue
            result.connections_processed += 1
            result.aggregates.extend(self.fold_connection(connection))

        logger.info(
            f"Spans: {len(result.aggregates)} wire aggregates from {result.connections_processed} connections "
            f"(skipped {result.skipped_connections} connections, {result.skipped_annotations} annotations)"
        )
        return result


def _float_or_none(value) -> Optional[float]:
    value = unwrap_attribute(value)
    try:
        return float(value) if value is not None and not isinstance(value, bool) else None
    except (TypeError, ValueError):
        return None


def lowest_height(aggregates: Iterable[SpanWireAggregate], category: str,
                  use_proposed: bool = False) -> Optional[float]:
    """Lowest existing height in a category; with use_proposed, a lower proposed height wins."""
    lowest = None
    for agg in aggregates:
        if agg.category != category:
            continue
        heights = [agg.existing_height]
        if use_proposed:
            heights.append(agg.proposed_height)
        for h in heights:
            if h is not None and (lowest is None or h < lowest):
                lowest = h
    return lowest


def aggregate_spans(connection_records, correlated_pole_ids: Optional[Iterable[str]] = None,
                    config: Optional[Config] = None) -> SpanAggregationResult:
    """Aggregate span wires for the connections between correlated poles."""
    return SpanAggregator(config).aggregate(connection_records, correlated_pole_ids)
