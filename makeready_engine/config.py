"""Configuration for the make-ready correlation engine."""

from dataclasses import dataclass, field
from pathlib import Path


_DATA = Path(__file__).parent / "data"


@dataclass
class Config:
    # Rule tables (declarative, editable without code changes)
    field_maps_file: Path = _DATA / "field_maps.json"
    precedence_file: Path = _DATA / "precedence_rules.json"
    wire_keywords_file: Path = _DATA / "wire_keywords.json"

    # Source names as they appear in field_maps.json
    source_a: str = "spida"
    source_b: str = "katapult"

    # Confidence by matching stage
    exact_confidence: float = 1.0
    normalized_confidence: float = 0.8
    partial_confidence: float = 0.6
    geographic_confidence: float = 0.5

    # Partial stage: rapidfuzz ratio is 0-100, this is 0-1
    partial_similarity_threshold: float = 0.80
    min_partial_length: int = 3

    # Geographic stage
    geo_cutoff_m: float = 50.0

    # Move values in the Katapult export are inches
    move_unit_divisor: float = 12.0

    # Values that count as "empty" during reconciliation (compared lowercased)
    placeholder_values: list = field(default_factory=lambda: [
        "", "unknown", "n/a", "na", "none", "null", "-", "--", "—",
    ])

    def stage_confidence(self, stage: str) -> float:
        return {
            "exact": self.exact_confidence,
            "normalized": self.normalized_confidence,
            "partial": self.partial_confidence,
            "geographic": self.geographic_confidence,
        }[stage]
