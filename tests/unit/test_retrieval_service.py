"""
Tests for the retrieval service end to end over the in-memory store.

Tests cover:
- Semantic, entity and hybrid retrieval
- Degradation when the embedding provider fails or times out
- Option handling and input validation
- Store outages and best-effort recall logging
- Feedback flowing back into ranking
"""

import pytest

from memrecall.models.core import Entity, EntityType, RetrievalMethod
from memrecall.models.errors import InvalidInputError, MemoryNotFoundError, StoreUnavailableError
from memrecall.services.recall_log import RecallLog
from memrecall.services.retrieval import RetrievalService
from memrecall.utils.memory_store import InMemoryMemoryStore

from memory_factories import CAMERA_AXIS, DATABASE_QUERY, NOW, FakeEmbedder, build_store, make_config, make_memory


class UnreachableStore(InMemoryMemoryStore):

    def list_entities(self):
        raise StoreUnavailableError('connection refused')

    def list_memories(self):
        raise StoreUnavailableError('connection refused')


class CountingStore(InMemoryMemoryStore):

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.entity_scans = 0

    def list_entities(self):
        self.entity_scans += 1
        return super().list_entities()


class BrokenRecallLog(RecallLog):

    def log_recall(self, session_id, query_text, result):
        raise RuntimeError('disk full')

    def get_statistics(self):
        return {'total_recalls': 0, 'avg_memories_per_query': 0.0, 'avg_relevance_score': 0.0}


class TestSemanticRetrieval:
    """Tests for queries answered by the semantic path."""

    def test_database_query(self, service):
        result = service.retrieve(DATABASE_QUERY, now=NOW)

        assert result.memory_ids == ['m-db', 'm-camera']
        assert all(item.retrieval_method is RetrievalMethod.SEMANTIC for item in result)
        assert result.degraded is False
        assert result.items[0].breakdown.similarity == pytest.approx(0.82)

    def test_scores_descend(self, service):
        result = service.retrieve(DATABASE_QUERY, now=NOW)

        scores = [item.final_score for item in result]
        assert scores == sorted(scores, reverse=True)

    def test_limit_option(self, service):
        assert service.retrieve(DATABASE_QUERY, options={'limit': 1}, now=NOW).memory_ids == ['m-db']

    def test_semantic_threshold_option(self, service):
        result = service.retrieve(DATABASE_QUERY, options={'semantic_threshold': 0.6}, now=NOW)

        assert result.memory_ids == ['m-db']

    def test_nothing_relevant_returns_empty(self, service):
        result = service.retrieve('unrelated chatter', now=NOW)

        assert len(result) == 0
        assert result.degraded is False


class TestEntityRetrieval:
    """Tests for queries answered by the entity path."""

    def test_entity_mention_in_query(self, service):
        result = service.retrieve('Ask John Smith about the camera', now=NOW)

        assert result.memory_ids == ['m-camera']
        assert result.items[0].retrieval_method is RetrievalMethod.ENTITY
        assert result.items[0].breakdown.similarity == 0.0

    def test_explicit_entity_ids(self, service):
        result = service.retrieve('any updates?', ['e-atlas'], now=NOW)

        assert result.memory_ids == ['m-db', 'm-atlas-notes']

    def test_explicit_entity_names(self, service):
        assert service.retrieve('status?', ['Alice'], now=NOW).memory_ids == ['m-alice']

    def test_unknown_explicit_entities_ignored(self, service):
        assert len(service.retrieve('status?', ['e-ghost'], now=NOW)) == 0

    def test_blank_query_skips_embedding(self, service, embedder):
        result = service.retrieve('   ', ['e-atlas'], now=NOW)

        assert embedder.calls == 0
        assert result.memory_ids == ['m-db', 'm-atlas-notes']

    def test_entity_only_matches_survive_strictest_threshold(self, service):
        result = service.retrieve('status?', ['e-atlas'], options={'entity_threshold': 1.0}, now=NOW)

        assert len(result) == 2

    def test_stale_entity_match_still_returned(self, service):
        result = service.retrieve('What is new with Alice?', now=NOW)

        assert result.memory_ids == ['m-alice']
        assert result.items[0].breakdown.recency_score < 0.01

    def test_hybrid_match(self, service, embedder):
        embedder.vectors['Ask John Smith about the camera'] = CAMERA_AXIS

        result = service.retrieve('Ask John Smith about the camera', now=NOW)

        assert result.memory_ids[0] == 'm-camera'
        assert result.items[0].retrieval_method is RetrievalMethod.HYBRID
        assert result.items[0].breakdown.similarity == pytest.approx(1.0)
        assert result.memory_ids.count('m-camera') == 1


class TestDegradation:
    """Tests for retrieval without the embedding provider."""

    def test_provider_failure_falls_back_to_entities(self, service, embedder):
        embedder.fail = True

        result = service.retrieve('What did Alice decide about Project Atlas?', now=NOW)

        assert result.degraded is True
        assert sorted(result.memory_ids) == ['m-alice', 'm-atlas-notes', 'm-db']
        assert all(item.retrieval_method is RetrievalMethod.ENTITY for item in result)

    def test_provider_failure_without_entities_is_empty_but_degraded(self, service, embedder):
        embedder.fail = True

        result = service.retrieve(DATABASE_QUERY, now=NOW)

        assert len(result) == 0
        assert result.degraded is True

    def test_provider_timeout_falls_back_to_entities(self, store, recall_log):
        embedder = FakeEmbedder()
        embedder.delay = 0.5
        service = RetrievalService(store, embedder, recall_log, app_config=make_config(embed_timeout_seconds=0.05))
        try:
            result = service.retrieve('Ask John Smith about the camera', now=NOW)
        finally:
            service.close()

        assert result.degraded is True
        assert result.memory_ids == ['m-camera']


class TestValidation:
    """Tests for malformed requests."""

    @pytest.mark.parametrize('options', [{'limit': 0}, {'semantic_threshold': 1.2}, {'entity_threshold': -1}, {'top_k': 3}])
    def test_invalid_options_rejected_before_work(self, service, embedder, options):
        with pytest.raises(InvalidInputError):
            service.retrieve(DATABASE_QUERY, options=options)

        assert embedder.calls == 0

    def test_non_string_query_rejected(self, service):
        with pytest.raises(InvalidInputError):
            service.retrieve(None)

    def test_entity_ids_must_be_a_list(self, service):
        with pytest.raises(InvalidInputError):
            service.retrieve('status?', 'e-atlas')

    def test_store_outage_propagates(self, embedder, recall_log):
        service = RetrievalService(UnreachableStore(), embedder, recall_log, app_config=make_config())
        try:
            with pytest.raises(StoreUnavailableError):
                service.retrieve(DATABASE_QUERY, now=NOW)
        finally:
            service.close()


class TestRecallLogging:
    """Tests for recall logging and statistics."""

    def test_recall_logged_per_session(self, service, recall_log):
        service.retrieve(DATABASE_QUERY, session_id='s1', now=NOW)
        service.retrieve('unrelated chatter', session_id='s2', now=NOW)

        entries = recall_log.entries('s1')
        assert len(entries) == 1
        assert entries[0].memory_ids == ['m-db', 'm-camera']
        assert entries[0].query_text == DATABASE_QUERY
        assert len(recall_log.entries()) == 2

    def test_recall_log_failure_does_not_fail_retrieval(self, store, embedder):
        service = RetrievalService(store, embedder, BrokenRecallLog(), app_config=make_config())
        try:
            result = service.retrieve(DATABASE_QUERY, session_id='s1', now=NOW)
        finally:
            service.close()

        assert result.memory_ids == ['m-db', 'm-camera']

    def test_statistics(self, service):
        first = service.retrieve(DATABASE_QUERY, now=NOW)
        service.retrieve('unrelated chatter', now=NOW)
        service.submit_feedback('m-db', 's1', 'positive')
        service.submit_feedback('m-db', 's1', 'positive')
        service.submit_feedback('m-camera', 's1', 'negative')

        statistics = service.get_statistics()

        assert statistics['total_recalls'] == 2
        assert statistics['avg_memories_per_query'] == pytest.approx(1.0)
        assert statistics['avg_relevance_score'] == pytest.approx(first.items[0].final_score)
        assert statistics['feedback_ratio'] == pytest.approx(2 / 3)

    def test_statistics_without_activity(self, service):
        assert service.get_statistics() == {
            'total_recalls': 0,
            'avg_memories_per_query': 0.0,
            'avg_relevance_score': 0.0,
            'feedback_ratio': 0.0
        }


class TestEntityCache:
    """Tests for the cached entity alias index."""

    def setup_method(self):
        seeded = build_store()
        self.store = CountingStore(seeded.list_memories(), seeded.list_entities())

    def test_entities_scanned_once_across_retrievals(self, embedder, recall_log):
        service = RetrievalService(self.store, embedder, recall_log, app_config=make_config())
        try:
            service.retrieve('What did Alice say?', now=NOW)
            service.retrieve('Any news on Project Atlas?', now=NOW)

            assert self.store.entity_scans == 1
        finally:
            service.close()

    def test_refresh_picks_up_new_entities(self, embedder, recall_log):
        service = RetrievalService(self.store, embedder, recall_log, app_config=make_config())
        try:
            assert service.retrieve('Ask Globex about it', now=NOW).memory_ids == []

            self.store.put_entity(Entity(id='e-globex', type=EntityType.ORGANIZATION, canonical_name='Globex'))
            self.store.put_memory(make_memory('m-globex', related_entities={'e-globex'}))
            assert service.retrieve('Ask Globex about it', now=NOW).memory_ids == []

            service.refresh_entities()
            assert service.retrieve('Ask Globex about it', now=NOW).memory_ids == ['m-globex']
            assert self.store.entity_scans == 2
        finally:
            service.close()

    def test_expired_index_rebuilt(self, embedder, recall_log):
        service = RetrievalService(self.store, embedder, recall_log, app_config=make_config(entity_cache_seconds=0))
        try:
            service.retrieve('What did Alice say?', now=NOW)
            service.retrieve('What did Alice say?', now=NOW)

            assert self.store.entity_scans == 2
        finally:
            service.close()


class TestFeedbackLoop:
    """Tests for feedback changing subsequent rankings."""

    def test_negative_feedback_demotes_memory(self, service):
        assert service.retrieve(DATABASE_QUERY, now=NOW).memory_ids == ['m-db', 'm-camera']

        for session in range(5):
            service.submit_feedback('m-db', f'session-{session}', 'negative')

        result = service.retrieve(DATABASE_QUERY, now=NOW)
        assert result.memory_ids == ['m-camera', 'm-db']
        assert result.items[1].breakdown.feedback_adjustment == pytest.approx(-0.25)

    def test_feedback_on_unknown_memory(self, service):
        with pytest.raises(MemoryNotFoundError):
            service.submit_feedback('m-ghost', 's1', 'positive')
