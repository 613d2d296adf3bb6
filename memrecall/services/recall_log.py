"""
Recall logging: which memories were surfaced for which query and session.
"""

import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from ..models.core import RetrievalResult
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecallEntry:
    session_id: Optional[str]
    query_text: str
    memory_ids: List[str]
    top_scores: List[float]
    degraded: bool
    logged_at: datetime


class RecallLog(ABC):
    """Analytics sink for surfaced memories. Callers treat it as best-effort."""

    @abstractmethod
    def log_recall(self, session_id: Optional[str], query_text: str, result: RetrievalResult) -> None:
        """Record one retrieval."""

    @abstractmethod
    def get_statistics(self) -> Dict[str, Any]:
        """Aggregate recall statistics."""


class InMemoryRecallLog(RecallLog):
    """Bounded ring buffer of recent recalls."""

    def __init__(self, max_entries: int = 10000):
        self._entries: Deque[RecallEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def log_recall(self, session_id: Optional[str], query_text: str, result: RetrievalResult) -> None:
        entry = RecallEntry(session_id=session_id,
                            query_text=query_text,
                            memory_ids=result.memory_ids,
                            top_scores=[item.final_score for item in result.items[:3]],
                            degraded=result.degraded,
                            logged_at=utc_now())
        with self._lock:
            self._entries.append(entry)
        logger.debug(f'Recall logged: session={session_id} memories={len(entry.memory_ids)}')

    def entries(self, session_id: Optional[str] = None) -> List[RecallEntry]:
        with self._lock:
            entries = list(self._entries)
        if session_id is None:
            return entries
        return [entry for entry in entries if entry.session_id == session_id]

    def get_statistics(self) -> Dict[str, Any]:
        """
        Summarize the buffered recalls.

        Returns:
            Dictionary with total_recalls, avg_memories_per_query and
            avg_relevance_score (mean score of the best result per recall)
        """
        entries = self.entries()
        total = len(entries)
        if total == 0:
            return {'total_recalls': 0, 'avg_memories_per_query': 0.0, 'avg_relevance_score': 0.0}

        top_scores = [entry.top_scores[0] for entry in entries if entry.top_scores]
        return {
            'total_recalls': total,
            'avg_memories_per_query': sum(len(entry.memory_ids) for entry in entries) / total,
            'avg_relevance_score': sum(top_scores) / len(top_scores) if top_scores else 0.0
        }
