"""
Tests for the ranking engine.

Tests cover:
- Exact weighted arithmetic of the base score
- Query keyword boosting
- Feedback adjustment and clamping
- Deterministic ordering and truncation
"""

import math

import pytest

from memrecall.models.core import Candidate, MemoryType, RetrievalMethod
from memrecall.models.errors import InvalidInputError
from memrecall.services.ranking import (HIGH_PRIORITY_TYPES, QUERY_BOOST, RankingEngine, boosted_types, observation_score,
                                        recency_score)

from memory_factories import NOW, days_ago, make_memory


def semantic(memory, similarity):
    return Candidate(memory=memory, similarity=similarity, retrieval_method=RetrievalMethod.SEMANTIC)


def entity_only(memory):
    return Candidate(memory=memory, similarity=None, entity_match_score=1.0, retrieval_method=RetrievalMethod.ENTITY)


class TestSignals:
    """Tests for the individual score signals."""

    def test_recency_halves_every_28_days(self):
        assert recency_score(NOW, NOW) == 1.0
        assert recency_score(days_ago(28), NOW) == pytest.approx(0.5)
        assert recency_score(days_ago(56), NOW) == pytest.approx(0.25)

    def test_future_observation_counts_as_now(self):
        assert recency_score(days_ago(-3), NOW) == 1.0

    def test_observation_saturates_at_ten(self):
        assert observation_score(1) == 0.1
        assert observation_score(3) == pytest.approx(0.3)
        assert observation_score(10) == 1.0
        assert observation_score(250) == 1.0

    def test_high_priority_types(self):
        assert HIGH_PRIORITY_TYPES == {MemoryType.CORRECTION, MemoryType.DECISION, MemoryType.COMMITMENT}

    def test_half_life_must_be_positive(self):
        with pytest.raises(InvalidInputError):
            RankingEngine(half_life_days=0)


class TestBoostedTypes:
    """Tests for query keyword boosting."""

    @pytest.mark.parametrize('query, expected', [
        ('Was that a mistake?', {MemoryType.CORRECTION, MemoryType.GAP}),
        ('what went WRONG', {MemoryType.CORRECTION, MemoryType.GAP}),
        ('any errors yesterday', {MemoryType.CORRECTION, MemoryType.GAP}),
        ('What have we decided', {MemoryType.DECISION}),
        ('which option we chose', {MemoryType.DECISION}),
        ('I usually prefer tabs', {MemoryType.COMMITMENT, MemoryType.PATTERN_SEED}),
        ('what we learned', {MemoryType.LEARNING, MemoryType.INSIGHT}),
    ])
    def test_keywords(self, query, expected):
        assert boosted_types(query) == expected

    def test_choose_is_not_chose(self):
        assert boosted_types('What database did we choose?') == frozenset()

    def test_keywords_combine(self):
        assert boosted_types('we decided wrong') == {MemoryType.DECISION, MemoryType.CORRECTION, MemoryType.GAP}

    def test_empty_query(self):
        assert boosted_types('') == frozenset()


class TestScore:
    """Tests for RankingEngine.score."""

    def setup_method(self):
        self.engine = RankingEngine()

    def test_database_decision_arithmetic(self):
        memory = make_memory('m-db', MemoryType.DECISION, confidence_score=0.9, times_observed=3, last_observed_days_ago=2)
        query_types = boosted_types('What database did we choose?')

        breakdown = self.engine.score(semantic(memory, 0.82), query_types, NOW)

        expected = 0.60 * 0.82 + 0.15 * 0.9 + 0.10 * math.pow(2, -2 / 28) + 0.10 * 0.3 + 0.05 * 1.0
        assert breakdown.query_boost == 0.0
        assert breakdown.similarity_term == pytest.approx(0.492)
        assert breakdown.confidence_term == pytest.approx(0.135)
        assert breakdown.recency_term == pytest.approx(0.0951695, abs=1e-7)
        assert breakdown.observation_term == pytest.approx(0.03)
        assert breakdown.type_boost_term == pytest.approx(0.05)
        assert breakdown.base_score == pytest.approx(expected, abs=1e-12)
        assert breakdown.adjusted_score == pytest.approx(0.8021695, abs=1e-6)

    def test_query_boost_applied_once(self):
        memory = make_memory('m-db', MemoryType.DECISION, confidence_score=0.9, times_observed=3, last_observed_days_ago=2)
        plain = self.engine.score(semantic(memory, 0.82), boosted_types('what did we pick'), NOW)

        boosted = self.engine.score(semantic(memory, 0.82), boosted_types('we decided, decision made, we chose'), NOW)

        assert boosted.query_boost == QUERY_BOOST
        assert boosted.base_score - plain.base_score == pytest.approx(QUERY_BOOST)

    def test_four_negative_votes_cost_exactly_point_two(self):
        memory = make_memory('m-bad', MemoryType.INSIGHT, confidence_score=0.8, times_observed=4, negative=4)

        breakdown = self.engine.score(semantic(memory, 0.9), frozenset(), NOW)

        assert breakdown.feedback_adjustment == pytest.approx(-0.20)
        assert breakdown.base_score - breakdown.adjusted_score == pytest.approx(0.20)

    def test_entity_only_stale_memory(self):
        memory = make_memory('m-alice', MemoryType.INSIGHT, confidence_score=0.7, times_observed=1, last_observed_days_ago=200)

        breakdown = self.engine.score(entity_only(memory), frozenset(), NOW)

        assert breakdown.similarity == 0.0
        assert breakdown.similarity_term == 0.0
        assert breakdown.recency_score == pytest.approx(math.pow(2, -200 / 28))
        assert breakdown.recency_score < 0.01
        assert breakdown.adjusted_score > 0.0

    def test_positive_votes_can_lift_above_one(self):
        memory = make_memory('m-good', MemoryType.DECISION, confidence_score=1.0, times_observed=10, positive=10)

        breakdown = self.engine.score(semantic(memory, 1.0), boosted_types('decided'), NOW)

        assert breakdown.base_score == pytest.approx(1.15)
        assert breakdown.adjusted_score == pytest.approx(1.65)

    def test_score_clamped_at_two(self):
        memory = make_memory('m-loved', MemoryType.DECISION, confidence_score=1.0, times_observed=10, positive=40)

        breakdown = self.engine.score(semantic(memory, 1.0), boosted_types('decided'), NOW)

        assert breakdown.feedback_adjustment == pytest.approx(2.0)
        assert breakdown.adjusted_score == 2.0

    def test_score_clamped_at_zero(self):
        memory = make_memory('m-hated', MemoryType.INSIGHT, confidence_score=0.1, negative=30)

        breakdown = self.engine.score(semantic(memory, 0.5), frozenset(), NOW)

        assert breakdown.base_score > 0.0
        assert breakdown.adjusted_score == 0.0

    def test_breakdown_to_dict_exposes_every_term(self):
        breakdown = self.engine.score(semantic(make_memory(), 0.5), frozenset(), NOW)

        terms = breakdown.to_dict()
        assert terms['adjusted_score'] == breakdown.adjusted_score
        assert set(terms) >= {'similarity_term', 'confidence_term', 'recency_term', 'observation_term', 'type_boost_term',
                              'query_boost', 'feedback_adjustment'}


class TestRank:
    """Tests for RankingEngine.rank."""

    def setup_method(self):
        self.engine = RankingEngine()

    def test_empty_candidates(self):
        result = self.engine.rank([], 'anything', limit=5, now=NOW)

        assert len(result) == 0
        assert result.query_text == 'anything'

    def test_orders_by_score_and_truncates(self):
        candidates = [semantic(make_memory(f'm-{i}'), i / 10) for i in range(8)]

        result = self.engine.rank(candidates, 'q', limit=3, now=NOW)

        assert result.memory_ids == ['m-7', 'm-6', 'm-5']
        assert [item.final_score for item in result] == sorted((item.final_score for item in result), reverse=True)

    def test_limit_must_be_positive(self):
        with pytest.raises(InvalidInputError):
            self.engine.rank([], 'q', limit=0, now=NOW)

    def test_entity_only_candidate_kept(self):
        result = self.engine.rank([entity_only(make_memory('m-e', last_observed_days_ago=200))], 'q', now=NOW)

        assert result.memory_ids == ['m-e']
        assert result.items[0].retrieval_method is RetrievalMethod.ENTITY

    def test_equal_scores_fall_back_to_id(self):
        candidates = [semantic(make_memory(memory_id), 0.5) for memory_id in ('m-c', 'm-a', 'm-b')]

        result = self.engine.rank(candidates, 'q', now=NOW)

        assert result.memory_ids == ['m-a', 'm-b', 'm-c']

    def test_more_recent_memory_ranks_higher(self):
        older = semantic(make_memory('m-a', last_observed_days_ago=10), 0.5)
        newer = semantic(make_memory('m-b', last_observed_days_ago=1), 0.5)

        assert self.engine.rank([older, newer], 'q', now=NOW).memory_ids == ['m-b', 'm-a']

    def test_rank_is_deterministic(self):
        candidates = [semantic(make_memory(f'm-{i % 3}-{i}', confidence_score=(i % 4) / 4), 0.5) for i in range(12)]

        first = self.engine.rank(candidates, 'q', limit=12, now=NOW).memory_ids
        second = self.engine.rank(list(reversed(candidates)), 'q', limit=12, now=NOW).memory_ids

        assert first == second
