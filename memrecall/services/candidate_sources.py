"""
Candidate sources: exact entity match and semantic vector similarity.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import List, Optional, Sequence, Set, Tuple

from ..models.core import Memory
from ..models.errors import ProviderUnavailableError
from ..utils.embedding_provider import EmbeddingProvider
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore
from ..utils.vector_utils import cosine_similarity

logger = get_logger(__name__)


class EntityMatchSource:
    """Memories linked to any of the resolved entities."""

    def __init__(self, store: MemoryStore):
        self.store = store

    def by_entities(self, entity_ids: Set[str], limit: int) -> List[Memory]:
        """
        Find memories whose related entities intersect entity_ids.

        Args:
            entity_ids: Resolved entity ids; empty means no entity signal
            limit: Maximum number of memories to return

        Returns:
            Memories ordered by overlap size, then confidence, then recency
        """
        if not entity_ids or limit <= 0:
            return []

        entity_ids = set(entity_ids)
        matches = [memory for memory in self.store.memories_for_entities(entity_ids) if memory.related_entities & entity_ids]
        # Stable sorts, least significant key first
        matches.sort(key=lambda memory: memory.id)
        matches.sort(key=lambda memory: (len(memory.related_entities & entity_ids), memory.confidence_score,
                                         memory.last_observed_at),
                     reverse=True)

        logger.debug(f'Entity match found {len(matches)} memories for {len(entity_ids)} entities')
        return matches[:limit]


class SemanticMatchSource:
    """Brute-force cosine similarity over every stored embedding."""

    def __init__(self, store: MemoryStore, embedder: EmbeddingProvider, max_workers: int = 8):
        self.store = store
        self.embedder = embedder
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='embed')

    def embed_query(self, query_text: str, timeout: Optional[float] = None) -> List[float]:
        """
        Obtain the query embedding from the provider.

        Args:
            query_text: Text to embed
            timeout: Seconds to wait for the provider, None waits indefinitely

        Returns:
            Query embedding

        Raises:
            ProviderUnavailableError: If the provider fails or times out
        """
        future = self._executor.submit(self.embedder.embed, query_text)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            # A call already running keeps its worker until the provider returns.
            # Only a call still queued behind busy workers is cancelled here.
            future.cancel()
            raise ProviderUnavailableError(f'Embedding provider timed out after {timeout}s')
        except ProviderUnavailableError:
            raise
        except Exception as e:
            raise ProviderUnavailableError(f'Embedding provider failed: {e}')

    def by_vector(self, query_vector: Sequence[float], threshold: float, limit: int) -> List[Tuple[Memory, float]]:
        """
        Score every stored memory against a query vector.

        Args:
            query_vector: Query embedding
            threshold: Minimum similarity to keep (inclusive)
            limit: Maximum number of results

        Returns:
            (memory, similarity) pairs, best first, ties broken by recency
        """
        if limit <= 0:
            return []

        results = []
        for memory in self.store.memories_with_embeddings():
            similarity = cosine_similarity(query_vector, memory.embedding)
            if similarity >= threshold:
                results.append((memory, similarity))

        results.sort(key=lambda pair: pair[0].id)
        results.sort(key=lambda pair: (pair[1], pair[0].last_observed_at), reverse=True)
        return results[:limit]

    def by_semantic(self, query_text: str, threshold: float, limit: int,
                    timeout: Optional[float] = None) -> List[Tuple[Memory, float]]:
        """
        Embed the query and return the most similar memories.

        Args:
            query_text: Raw query text
            threshold: Minimum similarity to keep (inclusive)
            limit: Maximum number of results
            timeout: Seconds to wait for the embedding provider

        Returns:
            (memory, similarity) pairs, best first

        Raises:
            ProviderUnavailableError: If the query cannot be embedded
        """
        query_vector = self.embed_query(query_text, timeout=timeout)
        results = self.by_vector(query_vector, threshold, limit)
        logger.debug(f'Semantic match kept {len(results)} memories at threshold {threshold}')
        return results

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
