"""
Retrieval Service: dual-path candidate search, merge, ranking and feedback.
"""

import threading
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from ..models.core import FeedbackRecord, FeedbackType, RetrievalOptions, RetrievalQuery, RetrievalResult
from ..models.errors import InvalidInputError, ProviderUnavailableError
from ..utils.config import AppConfig, config
from ..utils.embedding_provider import EmbeddingProvider
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore
from .candidate_merger import merge
from .candidate_sources import EntityMatchSource, SemanticMatchSource
from .entity_resolver import EntityResolver
from .feedback_ledger import FeedbackLedger
from .ranking import RankingEngine
from .recall_log import InMemoryRecallLog, RecallLog

logger = get_logger(__name__)


class RetrievalService:
    """Turns a conversational query into a ranked list of memories."""

    def __init__(self,
                 store: Optional[MemoryStore] = None,
                 embedder: Optional[EmbeddingProvider] = None,
                 recall_log: Optional[RecallLog] = None,
                 app_config: Optional[AppConfig] = None):
        """
        Initialize the retrieval service.

        Args:
            store: Memory store, an OpenSearch store from config if None
            embedder: Embedding provider, Bedrock from config if None
            recall_log: Analytics sink, an in-memory log if None
            app_config: Configuration, the global config if None
        """
        self.config = app_config or config
        settings = self.config.retrieval

        if store is None:
            from ..utils.opensearch_client import OpenSearchClient
            store = OpenSearchClient(self.config.opensearch)
        if embedder is None:
            from ..utils.bedrock_embed import BedrockEmbed
            embedder = BedrockEmbed(self.config.bedrock_embed)

        self.store = store
        self.embedder = embedder
        self.recall_log = recall_log if recall_log is not None else InMemoryRecallLog(settings.recall_log_size)
        self.defaults = RetrievalOptions(limit=settings.default_limit,
                                         semantic_threshold=settings.semantic_threshold,
                                         entity_threshold=settings.entity_threshold)

        self.entity_source = EntityMatchSource(store)
        self.semantic_source = SemanticMatchSource(store, embedder, max_workers=settings.embed_workers)
        self.ranking = RankingEngine(half_life_days=settings.recency_half_life_days)
        self.ledger = FeedbackLedger(store)

        self._resolver: Optional[EntityResolver] = None
        self._resolver_built_at = 0.0
        self._resolver_lock = threading.Lock()

        logger.info('Initialized RetrievalService')

    def entity_resolver(self) -> EntityResolver:
        """Alias index over the store's entities, rebuilt once older than entity_cache_seconds."""
        with self._resolver_lock:
            age = time.monotonic() - self._resolver_built_at
            if self._resolver is None or age >= self.config.retrieval.entity_cache_seconds:
                self._resolver = EntityResolver.from_store(self.store)
                self._resolver_built_at = time.monotonic()
                logger.debug('Rebuilt entity alias index')
            return self._resolver

    def refresh_entities(self) -> None:
        """Drop the cached alias index so the next retrieval rescans entities."""
        with self._resolver_lock:
            self._resolver = None

    def _build_query(self,
                     query_text: str,
                     explicit_entity_ids: Optional[List[str]],
                     options: Optional[Union[Dict[str, Any], RetrievalOptions]],
                     session_id: Optional[str]) -> RetrievalQuery:
        if not isinstance(query_text, str):
            raise InvalidInputError(f'query_text must be a string, got {type(query_text).__name__}')
        if explicit_entity_ids is not None and (isinstance(explicit_entity_ids, str) or
                                                not all(isinstance(ref, str) for ref in explicit_entity_ids)):
            raise InvalidInputError('explicit_entity_ids must be a list of strings')
        if session_id is not None and not isinstance(session_id, str):
            raise InvalidInputError('session_id must be a string')

        if not isinstance(options, RetrievalOptions):
            options = RetrievalOptions.from_dict(options, self.defaults)
        return RetrievalQuery(query_text=query_text,
                              entity_ids=list(explicit_entity_ids or []),
                              options=options,
                              session_id=session_id)

    def retrieve(self,
                 query_text: str,
                 explicit_entity_ids: Optional[List[str]] = None,
                 options: Optional[Union[Dict[str, Any], RetrievalOptions]] = None,
                 session_id: Optional[str] = None,
                 now: Optional[datetime] = None) -> RetrievalResult:
        """Retrieve the memories most relevant to a query.

        Args:
            query_text: Raw conversational query
            explicit_entity_ids: Entity ids or names the caller already knows are relevant
            options: limit, semantic_threshold, entity_threshold
            session_id: Chat session, used for recall logging
            now: Reference time for recency scoring, current UTC time if None

        Returns:
            RetrievalResult, empty when nothing is relevant; degraded is set
            when the embedding provider was unavailable

        Raises:
            InvalidInputError: On malformed arguments, before any work
            StoreUnavailableError: If the memory store cannot be read
        """
        query = self._build_query(query_text, explicit_entity_ids, options, session_id)
        opts = query.options
        candidate_limit = opts.limit * max(self.config.retrieval.candidate_multiplier, 1)

        # Entity path
        resolver = self.entity_resolver()
        entity_ids = resolver.resolve_references(query.entity_ids) | resolver.resolve(query.query_text)
        entity_results = self.entity_source.by_entities(entity_ids, candidate_limit)

        # Semantic path
        degraded = False
        semantic_results = []
        if query.query_text.strip():
            try:
                semantic_results = self.semantic_source.by_semantic(query.query_text,
                                                                    opts.semantic_threshold,
                                                                    candidate_limit,
                                                                    timeout=self.config.retrieval.embed_timeout_seconds)
            except ProviderUnavailableError as e:
                logger.warning(f'Semantic search unavailable, continuing with entity matches only: {e}')
                degraded = True

        candidates = [
            candidate for candidate in merge(entity_results, semantic_results)
            if candidate.similarity is not None or candidate.entity_match_score >= opts.entity_threshold
        ]
        logger.debug(f'Merged {len(entity_results)} entity and {len(semantic_results)} semantic results '
                     f'into {len(candidates)} candidates')

        result = self.ranking.rank(candidates, query.query_text, opts.limit, now=now)
        if degraded:
            result = replace(result, degraded=True)

        self._log_recall(query, result)
        return result

    def _log_recall(self, query: RetrievalQuery, result: RetrievalResult) -> None:
        try:
            self.recall_log.log_recall(query.session_id, query.query_text, result)
        except Exception as e:
            logger.warning(f'Failed to log recall for session {query.session_id}: {e}')

    def submit_feedback(self, memory_id: str, session_id: str, feedback_type: Union[str, FeedbackType]) -> FeedbackRecord:
        """
        Record user feedback on a surfaced memory.

        Args:
            memory_id: Memory the feedback is about
            session_id: Chat session the feedback came from
            feedback_type: 'positive' or 'negative'

        Returns:
            The appended FeedbackRecord

        Raises:
            InvalidInputError: On blank ids or an unknown feedback type
            MemoryNotFoundError: If the memory does not exist
        """
        return self.ledger.submit(memory_id, session_id, feedback_type)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Retrieval statistics for analytics.

        Returns:
            Recall statistics plus feedback_ratio (share of positive votes)
        """
        statistics = dict(self.recall_log.get_statistics())
        feedback = self.ledger.summary()
        statistics['feedback_ratio'] = feedback['positive'] / feedback['total'] if feedback['total'] else 0.0
        return statistics

    def close(self) -> None:
        self.semantic_source.close()
