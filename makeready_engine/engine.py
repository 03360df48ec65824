"""Main MakeReadyEngine, runs the whole pipeline over two parsed source documents."""

import logging
import time
from typing import Optional

from .classification import WireClassifier
from .config import Config
from .correlator import Correlator
from .field_maps import FieldMap, get_nested, load_field_maps
from .models import CorrelationResult, EngineReport, SpanAggregationResult
from .reconcile import Reconciler, load_precedence_rules
from .spans import SpanAggregator

logger = logging.getLogger(__name__)


class MakeReadyEngine:
    """
    Make-ready correlation engine.

    Takes a parsed structural-analysis document (source A, SPIDAcalc) and a
    parsed field-survey document (source B, Katapult), pairs up their poles,
    merges each pair into one canonical pole record, and aggregates midspan
    wire heights per span. Pure in-memory processing; no file or network I/O.
    """

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

        logger.info("Initializing MakeReadyEngine...")
        t0 = time.time()

        # Declarative rule tables
        self.field_maps = load_field_maps(self.config.field_maps_file)
        self.precedence_rules = load_precedence_rules(self.config.precedence_file)
        self.classifier = WireClassifier(self.config.wire_keywords_file)

        for name in (self.config.source_a, self.config.source_b):
            if name not in self.field_maps:
                raise KeyError(f"No field map for source '{name}' in {self.config.field_maps_file}")

        self.correlator = Correlator(self.config)
        self.reconciler = Reconciler(self.precedence_rules, self.config)
        self.spans = SpanAggregator(self.config, self.classifier)

        logger.info(f"MakeReadyEngine ready in {time.time() - t0:.2f}s")

    @property
    def field_map_a(self) -> FieldMap:
        return self.field_maps[self.config.source_a]

    @property
    def field_map_b(self) -> FieldMap:
        return self.field_maps[self.config.source_b]

    def correlate(self, records_a, records_b) -> CorrelationResult:
        return self.correlator.correlate(records_a, records_b, self.field_map_a, self.field_map_b)

    def aggregate_spans(self, connection_records, correlated_pole_ids=None,
                        photofirst_wires=None) -> SpanAggregationResult:
        return self.spans.aggregate(connection_records, correlated_pole_ids, photofirst_wires)

    def process(self, document_a: dict, document_b: dict) -> EngineReport:
        """
        Run the whole pipeline on two parsed source documents.

        1. Correlate poles (A <-> B)
        2. Reconcile each match, then each unmatched A pole on its own
        3. Aggregate span wires on B's connections touching a matched pole
        """
        t0 = time.time()

        correlation = self.correlate(document_a, document_b)

        poles = [self.reconciler.reconcile(m) for m in correlation.matches]
        poles.extend(self.reconciler.reconcile(p) for p in correlation.unmatched_a)

        connections_path = self.field_map_b.connections_path or "connections"
        connections = get_nested(document_b, connections_path, {})
        photofirst = get_nested(document_b, "photofirst_data.wire")
        correlated_ids = {m.b.source_id for m in correlation.matches}
        if correlated_ids:
            spans = self.aggregate_spans(connections, correlated_ids, photofirst)
        else:
            logger.warning("No correlated poles; span aggregation skipped")
            spans = SpanAggregationResult()

        report = EngineReport(
            correlation=correlation,
            poles=poles,
            spans=spans,
            processing_time_ms=int((time.time() - t0) * 1000),
        )
        summary = report.summary
        if summary["unmatched_a"] or summary["unmatched_b"] or summary["skipped_annotations"]:
            logger.warning(
                f"Incomplete correlation: {summary['unmatched_a']} A poles and "
                f"{summary['unmatched_b']} B poles unmatched, "
                f"{summary['skipped_annotations']} span annotations skipped"
            )
        logger.info(f"Processed {len(poles)} poles, {len(spans)} span aggregates in {report.processing_time_ms}ms")
        return report
