"""Make-ready correlation engine: pairs poles across SPIDAcalc and Katapult exports and aggregates span wires."""

from .correlator import Correlator, correlate
from .engine import MakeReadyEngine
from .models import CorrelationMatch, CorrelationResult, PoleIdentity, SpanWireAggregate
from .reconcile import reconcile
from .spans import aggregate_spans

__all__ = [
    "MakeReadyEngine",
    "Correlator",
    "correlate",
    "reconcile",
    "aggregate_spans",
    "CorrelationMatch",
    "CorrelationResult",
    "PoleIdentity",
    "SpanWireAggregate",
]
