"""
Ranking Engine: multi-signal scoring, query-aware type boosting and feedback adjustment.

Every candidate is scored as

    base     = 0.60*similarity + 0.15*confidence + 0.10*recency
               + 0.10*observation + 0.05*type_boost (+ 0.15 query boost)
    adjusted = base + 0.05*positive_feedback - 0.05*negative_feedback

and the adjusted score is clamped to [0, 2]. Boosts are additive, so scores
above 1 are expected; only the final value is clamped, never the feedback
term on its own.
"""

import math
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional, Tuple

from ..models.core import Candidate, MemoryType, RetrievalResult, ScoreBreakdown, ScoredMemory
from ..models.errors import InvalidInputError
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import days_since, utc_now
from .feedback_ledger import feedback_adjustment

logger = get_logger(__name__)

SIMILARITY_WEIGHT = 0.60
CONFIDENCE_WEIGHT = 0.15
RECENCY_WEIGHT = 0.10
OBSERVATION_WEIGHT = 0.10
TYPE_BOOST_WEIGHT = 0.05

QUERY_BOOST = 0.15
RECENCY_HALF_LIFE_DAYS = 28.0
OBSERVATION_SATURATION = 10
SCORE_FLOOR = 0.0
SCORE_CEILING = 2.0

HIGH_PRIORITY_TYPES: FrozenSet[MemoryType] = frozenset({MemoryType.CORRECTION, MemoryType.DECISION, MemoryType.COMMITMENT})

# Query keywords -> memory types they make more relevant
TYPE_BOOST_TABLE: Tuple[Tuple[Tuple[str, ...], FrozenSet[MemoryType]], ...] = (
    (('mistake', 'wrong', 'error'), frozenset({MemoryType.CORRECTION, MemoryType.GAP})),
    (('decided', 'chose', 'decision'), frozenset({MemoryType.DECISION})),
    (('always', 'usually', 'prefer'), frozenset({MemoryType.COMMITMENT, MemoryType.PATTERN_SEED})),
    (('learned', 'realized'), frozenset({MemoryType.LEARNING, MemoryType.INSIGHT})),
)


def boosted_types(query_text: str) -> FrozenSet[MemoryType]:
    """Memory types whose keywords appear in the query.

    Keywords match case-insensitively anywhere in the text, so "errors" and
    "preferred" count as "error" and "prefer".
    """
    if not query_text:
        return frozenset()
    lowered = query_text.lower()
    types = set()
    for keywords, memory_types in TYPE_BOOST_TABLE:
        if any(keyword in lowered for keyword in keywords):
            types.update(memory_types)
    return frozenset(types)


def recency_score(last_observed_at: datetime, now: datetime, half_life_days: float = RECENCY_HALF_LIFE_DAYS) -> float:
    return math.pow(2.0, -days_since(last_observed_at, now) / half_life_days)


def observation_score(times_observed: int) -> float:
    return min(times_observed, OBSERVATION_SATURATION) / OBSERVATION_SATURATION


class RankingEngine:
    """Scores and orders merged candidates. Stateless apart from its constants."""

    def __init__(self, half_life_days: float = RECENCY_HALF_LIFE_DAYS):
        if half_life_days <= 0:
            raise InvalidInputError(f'Recency half-life must be positive, got {half_life_days}')
        self.half_life_days = half_life_days

    def score(self, candidate: Candidate, query_types: FrozenSet[MemoryType], now: datetime) -> ScoreBreakdown:
        """
        Compute every weighted term for one candidate.

        Args:
            candidate: Merged candidate; a missing similarity counts as 0
            query_types: Types boosted by the query keywords
            now: Reference time for recency

        Returns:
            ScoreBreakdown with the final adjusted score
        """
        memory = candidate.memory
        similarity = candidate.similarity if candidate.similarity is not None else 0.0
        similarity = min(max(similarity, 0.0), 1.0)

        recency = recency_score(memory.last_observed_at, now, self.half_life_days)
        observation = observation_score(memory.times_observed)
        type_boost = 1.0 if memory.type in HIGH_PRIORITY_TYPES else 0.0
        query_boost = QUERY_BOOST if memory.type in query_types else 0.0

        similarity_term = SIMILARITY_WEIGHT * similarity
        confidence_term = CONFIDENCE_WEIGHT * memory.confidence_score
        recency_term = RECENCY_WEIGHT * recency
        observation_term = OBSERVATION_WEIGHT * observation
        type_boost_term = TYPE_BOOST_WEIGHT * type_boost

        base_score = similarity_term + confidence_term + recency_term + observation_term + type_boost_term + query_boost
        adjustment = feedback_adjustment(memory.positive_feedback_count, memory.negative_feedback_count)
        adjusted_score = min(max(base_score + adjustment, SCORE_FLOOR), SCORE_CEILING)

        return ScoreBreakdown(similarity=similarity,
                              similarity_term=similarity_term,
                              confidence_term=confidence_term,
                              recency_score=recency,
                              recency_term=recency_term,
                              observation_score=observation,
                              observation_term=observation_term,
                              type_boost_term=type_boost_term,
                              query_boost=query_boost,
                              base_score=base_score,
                              feedback_adjustment=adjustment,
                              adjusted_score=adjusted_score)

    def rank(self,
             candidates: Iterable[Candidate],
             query_text: str,
             limit: int = 5,
             now: Optional[datetime] = None) -> RetrievalResult:
        """
        Score, order and truncate candidates.

        Ordering is adjusted score, then confidence, then last observation
        (all descending), then memory id ascending, so equal inputs always
        produce the same list.

        Args:
            candidates: Merged candidates
            query_text: Query used for keyword boosting
            limit: Maximum number of results
            now: Reference time for recency; current UTC time if None

        Returns:
            RetrievalResult with the best candidates first
        """
        if limit < 1:
            raise InvalidInputError(f'limit must be a positive integer, got {limit!r}')

        now = now or utc_now()
        query_types = boosted_types(query_text)

        scored: List[ScoredMemory] = []
        for candidate in candidates:
            breakdown = self.score(candidate, query_types, now)
            scored.append(ScoredMemory(memory=candidate.memory,
                                       final_score=breakdown.adjusted_score,
                                       breakdown=breakdown,
                                       retrieval_method=candidate.retrieval_method))

        scored.sort(key=lambda item: item.memory.id)
        scored.sort(key=lambda item: (item.final_score, item.memory.confidence_score, item.memory.last_observed_at),
                    reverse=True)

        if scored:
            logger.debug(f'Ranked {len(scored)} candidates, top score {scored[0].final_score:.4f}')
        return RetrievalResult(items=scored[:limit], query_text=query_text or '')
