"""Data models for the make-ready engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

# Matching stages, in cascade order
STAGE_EXACT = "exact"
STAGE_NORMALIZED = "normalized"
STAGE_PARTIAL = "partial"
STAGE_GEOGRAPHIC = "geographic"
STAGES = (STAGE_EXACT, STAGE_NORMALIZED, STAGE_PARTIAL, STAGE_GEOGRAPHIC)

# Wire categories
CATEGORY_COMMUNICATION = "communication"
CATEGORY_ELECTRICAL = "electrical"
CATEGORY_OTHER = "other"
CATEGORIES = (CATEGORY_COMMUNICATION, CATEGORY_ELECTRICAL, CATEGORY_OTHER)

SOURCE_A = "A"
SOURCE_B = "B"


@dataclass(frozen=True)
class PoleIdentity:
    source_id: str
    primary_label: str
    normalized_label: str
    source_tag: str
    alternate_labels: FrozenSet[str] = frozenset()
    coordinate: Optional[Tuple[float, float]] = None  # (lat, lon)
    # Detached copy of the source record; never serialized
    raw_ref: Optional[dict] = field(default=None, repr=False, compare=False, hash=False)

    @property
    def has_label(self) -> bool:
        return bool(self.primary_label)

    @property
    def is_matchable(self) -> bool:
        return bool(self.primary_label or self.coordinate)

    def to_dict(self) -> dict:
        return {
            "source_id": self.source_id,
            "source_tag": self.source_tag,
            "primary_label": self.primary_label,
            "normalized_label": self.normalized_label,
            "alternate_labels": sorted(self.alternate_labels),
            "lat": round(self.coordinate[0], 7) if self.coordinate else None,
            "lon": round(self.coordinate[1], 7) if self.coordinate else None,
        }


@dataclass(frozen=True)
class CorrelationMatch:
    a: PoleIdentity
    b: PoleIdentity
    confidence: float
    stage: str
    distance_m: Optional[float] = None
    similarity: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "a": self.a.to_dict(),
            "b": self.b.to_dict(),
            "confidence": round(self.confidence, 3),
            "stage": self.stage,
            "distance_m": round(self.distance_m, 2) if self.distance_m is not None else None,
            "similarity": round(self.similarity, 3) if self.similarity is not None else None,
        }


@dataclass
class CorrelationResult:
    matches: List[CorrelationMatch] = field(default_factory=list)
    unmatched_a: List[PoleIdentity] = field(default_factory=list)
    unmatched_b: List[PoleIdentity] = field(default_factory=list)
    # Identities with no label and no coordinate (MissingIdentifier)
    ineligible_a: int = 0
    ineligible_b: int = 0
    # AmbiguousMatch diagnostics, one dict per tie resolved by order
    ambiguities: List[Dict] = field(default_factory=list)

    def stage_counts(self) -> Dict[str, int]:
        counts = {stage: 0 for stage in STAGES}
        for m in self.matches:
            counts[m.stage] += 1
        return counts

    def summary(self) -> dict:
        return {
            "matched": len(self.matches),
            "by_stage": self.stage_counts(),
            "unmatched_a": len(self.unmatched_a),
            "unmatched_b": len(self.unmatched_b),
            "ineligible_a": self.ineligible_a,
            "ineligible_b": self.ineligible_b,
            "ambiguous": len(self.ambiguities),
        }

    def to_dict(self) -> dict:
        return {
            "matches": [m.to_dict() for m in self.matches],
            "unmatched_a": [p.to_dict() for p in self.unmatched_a],
            "unmatched_b": [p.to_dict() for p in self.unmatched_b],
            "ambiguities": self.ambiguities,
            "summary": self.summary(),
        }


@dataclass
class CanonicalPoleRecord:
    pole_label: str
    source_a_id: Optional[str] = None
    source_b_id: Optional[str] = None
    match_stage: Optional[str] = None
    confidence: float = 0.0
    fields: Dict[str, Any] = field(default_factory=dict)
    field_sources: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "pole_label": self.pole_label,
            "source_a_id": self.source_a_id,
            "source_b_id": self.source_b_id,
            "match_stage": self.match_stage,
            "confidence": round(self.confidence, 3),
            "fields": dict(self.fields),
            "field_sources": dict(self.field_sources),
        }


@dataclass(frozen=True)
class WireAnnotation:
    category: str
    owner: str
    height_feet: float
    wire_type: str = ""
    is_proposed: bool = False
    move_feet: float = 0.0
    section_id: str = ""
    connection_id: str = ""


@dataclass
class MeasurementSection:
    id: str
    annotations: List[WireAnnotation] = field(default_factory=list)
    lat: Optional[float] = None
    lon: Optional[float] = None


@dataclass
class SpanConnection:
    id: str
    from_pole_id: str
    to_pole_id: str
    is_reference_subgroup: bool = False
    sections: List[MeasurementSection] = field(default_factory=list)


@dataclass
class SpanWireAggregate:
    connection_id: str
    from_pole_id: str
    to_pole_id: str
    category: str
    owner: str
    existing_height: Optional[float] = None
    proposed_height: Optional[float] = None
    move_value_feet: float = 0.0
    is_reference_subgroup: bool = False
    wire_types: List[str] = field(default_factory=list)
    annotation_count: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.owner)

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "from_pole_id": self.from_pole_id,
            "to_pole_id": self.to_pole_id,
            "category": self.category,
            "owner": self.owner,
            "existing_height": round(self.existing_height, 4) if self.existing_height is not None else None,
            "proposed_height": round(self.proposed_height, 4) if self.proposed_height is not None else None,
            "move_value_feet": round(self.move_value_feet, 4),
            "is_reference_subgroup": self.is_reference_subgroup,
            "wire_types": list(self.wire_types),
            "annotation_count": self.annotation_count,
        }


@dataclass
class SpanAggregationResult:
    aggregates: List[SpanWireAggregate] = field(default_factory=list)
    connections_processed: int = 0
    # Connections dropped: missing endpoints or not touching a correlated pole
    skipped_connections: int = 0
    # MalformedMeasurement: annotations with no parsable height or no type
    skipped_annotations: int = 0

    def __iter__(self):
        return iter(self.aggregates)

    def __len__(self) -> int:
        return len(self.aggregates)

    def summary(self) -> dict:
        return {
            "aggregates": len(self.aggregates),
            "connections_processed": self.connections_processed,
            "skipped_connections": self.skipped_connections,
            "skipped_annotations": self.skipped_annotations,
        }

    def to_dict(self) -> dict:
        return {
            "aggregates": [a.to_dict() for a in self.aggregates],
            "summary": self.summary(),
        }


@dataclass
class EngineReport:
    correlation: CorrelationResult
    poles: List[CanonicalPoleRecord] = field(default_factory=list)
    spans: SpanAggregationResult = field(default_factory=SpanAggregationResult)
    processing_time_ms: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def summary(self) -> dict:
        return {
            **self.correlation.summary(),
            "poles": len(self.poles),
            **self.spans.summary(),
        }

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output."""
        return {
            "poles": [p.to_dict() for p in self.poles],
            "correlation": self.correlation.to_dict(),
            "spans": self.spans.to_dict(),
            "summary": self.summary,
            "processing_time_ms": self.processing_time_ms,
            "timestamp": self.timestamp,
        }
