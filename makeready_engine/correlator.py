"""Cross-source pole correlation: a staged matching cascade with confidence scoring.

Stages run in a fixed order over the pool of still-unmatched poles:

    exact -> normalized -> partial -> geographic

Each stage first scores every eligible (A, B) pair in the pool, then a single
sequential reducer accepts pairs best-first, so every pole takes part in at
most one match and the result does not depend on scoring order.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from .config import Config
from .field_maps import FieldMap
from .geo import distance_confidence, haversine_distance_m
from .identifiers import all_labels, extract_identities, normalize_label
from .models import (
    SOURCE_A,
    SOURCE_B,
    STAGE_EXACT,
    STAGE_GEOGRAPHIC,
    STAGE_NORMALIZED,
    STAGE_PARTIAL,
    STAGES,
    CorrelationMatch,
    CorrelationResult,
    PoleIdentity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidatePool:
    """Indices of poles not yet matched. Stages return a new pool, never mutate one."""

    remaining_a: FrozenSet[int]
    remaining_b: FrozenSet[int]

    @classmethod
    def initial(cls, ids_a: Sequence[PoleIdentity], ids_b: Sequence[PoleIdentity]) -> "CandidatePool":
        return cls(
            remaining_a=frozenset(i for i, p in enumerate(ids_a) if p.is_matchable),
            remaining_b=frozenset(j for j, p in enumerate(ids_b) if p.is_matchable),
        )

    def without(self, pairs: List[Tuple[int, int]]) -> "CandidatePool":
        return CandidatePool(
            remaining_a=self.remaining_a - {i for i, _ in pairs},
            remaining_b=self.remaining_b - {j for _, j in pairs},
        )


@dataclass(frozen=True)
class Candidate:
    a: int
    b: int
    confidence: float
    similarity: float = 1.0
    distance_m: Optional[float] = None

    @property
    def score(self) -> Tuple[float, float, float]:
        return (self.confidence, self.similarity, -(self.distance_m or 0.0))

    @property
    def rank(self) -> tuple:
        # Best first; ties fall back to first-seen order on A, then B
        return (-self.confidence, -self.similarity, self.distance_m or 0.0, self.a, self.b)


class Correlator:
    """Matches poles from two sources (A = structural analysis, B = field survey)."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or Config()

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def correlate(self, records_a, records_b, field_map_a: FieldMap, field_map_b: FieldMap) -> CorrelationResult:
        """Extract identities from both sources and run the cascade."""
        placeholders = self.config.placeholder_values
        ids_a = extract_identities(records_a, field_map_a, SOURCE_A, placeholders)
        ids_b = extract_identities(records_b, field_map_b, SOURCE_B, placeholders)
        return self.correlate_identities(ids_a, ids_b)

    def correlate_identities(self, ids_a: Sequence[PoleIdentity],
                             ids_b: Sequence[PoleIdentity]) -> CorrelationResult:
        ids_a, ids_b = list(ids_a), list(ids_b)
        result = CorrelationResult()
        result.ineligible_a = sum(1 for p in ids_a if not p.is_matchable)
        result.ineligible_b = sum(1 for p in ids_b if not p.is_matchable)
        if result.ineligible_a or result.ineligible_b:
            logger.warning(
                f"Missing identifier: {result.ineligible_a} A and {result.ineligible_b} B poles "
                f"have neither a label nor a coordinate and cannot be matched"
            )

        pool = CandidatePool.initial(ids_a, ids_b)
        matched_pairs: List[Tuple[int, int]] = []
        for stage in STAGES:
            if not pool.remaining_a or not pool.remaining_b:
                break
            candidates = self._score_stage(stage, ids_a, ids_b, pool)
            accepted, ambiguities = self._resolve(stage, candidates, ids_a, ids_b)
            for c in accepted:
                result.matches.append(CorrelationMatch(
                    a=ids_a[c.a],
                    b=ids_b[c.b],
                    confidence=c.confidence,
                    stage=stage,
                    distance_m=c.distance_m,
                    similarity=c.similarity,
                ))
                logger.debug(
                    f"{stage}: '{ids_a[c.a].primary_label}' <-> '{ids_b[c.b].primary_label}' "
                    f"(confidence={c.confidence:.2f})"
                )
            result.ambiguities.extend(ambiguities)
            pairs = [(c.a, c.b) for c in accepted]
            matched_pairs.extend(pairs)
            pool = pool.without(pairs)

        matched_a = {i for i, _ in matched_pairs}
        matched_b = {j for _, j in matched_pairs}
        result.unmatched_a = [p for i, p in enumerate(ids_a) if i not in matched_a]
        result.unmatched_b = [p for j, p in enumerate(ids_b) if j not in matched_b]

        counts = result.stage_counts()
        logger.info(
            f"Correlation: {len(result.matches)} matched of {len(ids_a)} A / {len(ids_b)} B "
            f"(exact={counts[STAGE_EXACT]}, normalized={counts[STAGE_NORMALIZED]}, "
            f"partial={counts[STAGE_PARTIAL]}, geographic={counts[STAGE_GEOGRAPHIC]}), "
            f"unmatched A={len(result.unmatched_a)}, B={len(result.unmatched_b)}, "
            f"ambiguous={len(result.ambiguities)}"
        )
        return result

    # ------------------------------------------------------------------
    # scoring
    # ------------------------------------------------------------------

    def _score_stage(self, stage: str, ids_a, ids_b, pool: CandidatePool) -> List[Candidate]:
        scorer = {
            STAGE_EXACT: self._score_exact,
            STAGE_NORMALIZED: self._score_normalized,
            STAGE_PARTIAL: self._score_partial,
            STAGE_GEOGRAPHIC: self._score_geographic,
        }[stage]
        a_idx = sorted(pool.remaining_a)
        b_idx = sorted(pool.remaining_b)
        return scorer(ids_a, ids_b, a_idx, b_idx)

    def _score_exact(self, ids_a, ids_b, a_idx, b_idx) -> List[Candidate]:
        by_label: Dict[str, List[int]] = defaultdict(list)
        for j in b_idx:
            if ids_b[j].primary_label:
                by_label[ids_b[j].primary_label].append(j)
        conf = self.config.exact_confidence
        return [
            Candidate(i, j, conf)
            for i in a_idx if ids_a[i].primary_label
            for j in by_label.get(ids_a[i].primary_label, ())
        ]

    def _score_normalized(self, ids_a, ids_b, a_idx, b_idx) -> List[Candidate]:
        """
        Normalized label equality, primary-to-primary first. Alternate labels
        (tags, aliases, identifier-like attributes) are cross-checked too but
        rank below a primary-to-primary hit.
        """
        by_key: Dict[str, List[Tuple[int, bool]]] = defaultdict(list)
        for j in b_idx:
            p = ids_b[j]
            if not p.primary_label:
                continue
            for key, is_primary in _normalized_keys(p):
                by_key[key].append((j, is_primary))

        conf = self.config.normalized_confidence
        candidates = []
        for i in a_idx:
            p = ids_a[i]
            if not p.primary_label:
                continue
            best: Dict[int, float] = {}
            for key, a_primary in _normalized_keys(p):
                for j, b_primary in by_key.get(key, ()):
                    sim = 1.0 if (a_primary and b_primary) else 0.9
                    if sim > best.get(j, 0.0):
                        best[j] = sim
            candidates.extend(Candidate(i, j, conf, sim) for j, sim in best.items())
        return candidates

    def _score_partial(self, ids_a, ids_b, a_idx, b_idx) -> List[Candidate]:
        """Substring containment or edit-distance similarity on normalized labels."""
        min_len = self.config.min_partial_length
        cutoff = self.config.partial_similarity_threshold * 100
        conf = self.config.partial_confidence

        b_labels = [(j, ids_b[j].normalized_label) for j in b_idx if ids_b[j].normalized_label]
        candidates = []
        for i in a_idx:
            na = ids_a[i].normalized_label
            if not na:
                continue
            for j, nb in b_labels:
                ratio = fuzz.ratio(na, nb) / 100
                contained = min(len(na), len(nb)) >= min_len and (na in nb or nb in na)
                if contained or ratio * 100 >= cutoff:
                    candidates.append(Candidate(i, j, conf, ratio))
        return candidates

    def _score_geographic(self, ids_a, ids_b, a_idx, b_idx) -> List[Candidate]:
        cutoff = self.config.geo_cutoff_m
        base = self.config.geographic_confidence
        b_coords = [(j, ids_b[j].coordinate) for j in b_idx if ids_b[j].coordinate]
        candidates = []
        for i in a_idx:
            ca = ids_a[i].coordinate
            if not ca:
                continue
            for j, cb in b_coords:
                d = haversine_distance_m(ca[0], ca[1], cb[0], cb[1])
                if math.isnan(d) or d >= cutoff:
                    continue
                candidates.append(Candidate(i, j, distance_confidence(d, cutoff, base), 1.0, d))
        return candidates

    # ------------------------------------------------------------------
    # assignment
    # ------------------------------------------------------------------

    def _resolve(self, stage: str, candidates: List[Candidate], ids_a, ids_b):
        """
        Accept candidates best-first; each A and B pole is taken at most once.
        A tie between equally ranked candidates is resolved by input order and
        reported as an ambiguity.
        """
        by_a: Dict[int, List[Candidate]] = defaultdict(list)
        by_b: Dict[int, List[Candidate]] = defaultdict(list)
        for c in candidates:
            by_a[c.a].append(c)
            by_b[c.b].append(c)

        taken_a, taken_b = set(), set()
        accepted, ambiguities = [], []
        for c in sorted(candidates, key=lambda x: x.rank):
            if c.a in taken_a or c.b in taken_b:
                continue
            rivals_b = [o.b for o in by_a[c.a] if o.b != c.b and o.b not in taken_b and o.score == c.score]
            rivals_a = [o.a for o in by_b[c.b] if o.a != c.a and o.a not in taken_a and o.score == c.score]
            if rivals_a or rivals_b:
                ambiguities.append({
                    "stage": stage,
                    "a": ids_a[c.a].source_id,
                    "a_label": ids_a[c.a].primary_label,
                    "b": ids_b[c.b].source_id,
                    "b_label": ids_b[c.b].primary_label,
                    "confidence": round(c.confidence, 3),
                    "other_a": [ids_a[i].source_id for i in rivals_a],
                    "other_b": [ids_b[j].source_id for j in rivals_b],
                })
                logger.warning(
                    f"Ambiguous {stage} match for '{ids_a[c.a].primary_label or ids_a[c.a].source_id}': "
                    f"chose {ids_b[c.b].source_id} over "
                    f"{[ids_b[j].source_id for j in rivals_b] + [ids_a[i].source_id for i in rivals_a]} "
                    f"by input order"
                )
            taken_a.add(c.a)
            taken_b.add(c.b)
            accepted.append(c)
        return accepted, ambiguities


def _normalized_keys(identity: PoleIdentity) -> List[Tuple[str, bool]]:
    keys, seen = [], set()
    for n, label in enumerate(all_labels(identity)):
        key = normalize_label(label)
        if key and key not in seen:
            seen.add(key)
            keys.append((key, n == 0))
    return keys


def correlate(records_a, records_b, field_map_a: FieldMap, field_map_b: FieldMap,
              config: Optional[Config] = None) -> CorrelationResult:
    """Correlate two record sets (A = structural analysis, B = field survey)."""
    return Correlator(config).correlate(records_a, records_b, field_map_a, field_map_b)
