"""
Memory store interface and a thread-safe in-process implementation.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set

from ..models.core import Entity, FeedbackRecord, FeedbackType, Memory
from ..models.errors import MemoryNotFoundError
from .logging_config import get_logger

logger = get_logger(__name__)


class MemoryStore(ABC):
    """Read access to memories and entities, write access to feedback counters.

    Read methods raise StoreUnavailableError when the backing store cannot be
    reached.
    """

    @abstractmethod
    def list_memories(self) -> List[Memory]:
        """Snapshot of every stored memory."""

    @abstractmethod
    def get_memory(self, memory_id: str) -> Optional[Memory]:
        """Return one memory, or None if the id is unknown."""

    @abstractmethod
    def list_entities(self) -> List[Entity]:
        """Snapshot of every known entity."""

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[Entity]:
        """Return one entity, or None if the id is unknown."""

    @abstractmethod
    def apply_feedback(self, record: FeedbackRecord) -> Memory:
        """Atomically bump the matching counter and append the record.

        Args:
            record: Feedback to apply

        Returns:
            The memory as it is after the increment

        Raises:
            MemoryNotFoundError: If record.memory_id is unknown
        """

    @abstractmethod
    def list_feedback(self, memory_id: Optional[str] = None) -> List[FeedbackRecord]:
        """Feedback records in append order, optionally for one memory."""

    def memories_for_entities(self, entity_ids: Set[str]) -> List[Memory]:
        """Memories whose related entities intersect entity_ids, in no particular order."""
        if not entity_ids:
            return []
        return [memory for memory in self.list_memories() if memory.related_entities & entity_ids]

    def memories_with_embeddings(self) -> List[Memory]:
        return [memory for memory in self.list_memories() if memory.embedding]

    def health_check(self) -> bool:
        try:
            self.list_entities()
            return True
        except Exception as e:
            logger.error(f'Memory store health check failed: {e}')
            return False


class InMemoryMemoryStore(MemoryStore):
    """Process-local store.

    Records are immutable; a feedback write swaps in a new record under a
    per-memory lock, so concurrent increments on one memory serialize while
    writes to different memories never contend. Readers always see a whole
    record.
    """

    def __init__(self, memories: Iterable[Memory] = (), entities: Iterable[Entity] = ()):
        self._lock = threading.Lock()
        self._row_locks: Dict[str, threading.Lock] = {}
        self._memories: Dict[str, Memory] = {}
        self._entities: Dict[str, Entity] = {}
        self._feedback: List[FeedbackRecord] = []
        self._feedback_lock = threading.Lock()

        for memory in memories:
            self.put_memory(memory)
        for entity in entities:
            self.put_entity(entity)

    def _row_lock(self, memory_id: str) -> threading.Lock:
        with self._lock:
            lock = self._row_locks.get(memory_id)
            if lock is None:
                lock = threading.Lock()
                self._row_locks[memory_id] = lock
            return lock

    def put_memory(self, memory: Memory) -> None:
        """Insert or replace a memory (used by the external extraction pipeline)."""
        with self._row_lock(memory.id):
            with self._lock:
                self._memories[memory.id] = memory

    def put_entity(self, entity: Entity) -> None:
        with self._lock:
            self._entities[entity.id] = entity

    def list_memories(self) -> List[Memory]:
        with self._lock:
            return list(self._memories.values())

    def get_memory(self, memory_id: str) -> Optional[Memory]:
        return self._memories.get(memory_id)

    def list_entities(self) -> List[Entity]:
        with self._lock:
            return list(self._entities.values())

    def get_entity(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def apply_feedback(self, record: FeedbackRecord) -> Memory:
        with self._row_lock(record.memory_id):
            current = self._memories.get(record.memory_id)
            if current is None:
                raise MemoryNotFoundError(f'Memory not found: {record.memory_id}')

            if record.feedback_type == FeedbackType.POSITIVE:
                updated = replace(current, positive_feedback_count=current.positive_feedback_count + 1)
            else:
                updated = replace(current, negative_feedback_count=current.negative_feedback_count + 1)

            self._memories[record.memory_id] = updated
            with self._feedback_lock:
                self._feedback.append(record)

        logger.debug(f'Applied {record.feedback_type.value} feedback to memory {record.memory_id}')
        return updated

    def list_feedback(self, memory_id: Optional[str] = None) -> List[FeedbackRecord]:
        with self._feedback_lock:
            records = list(self._feedback)
        if memory_id is None:
            return records
        return [record for record in records if record.memory_id == memory_id]
