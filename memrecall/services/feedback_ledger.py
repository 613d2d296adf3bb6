"""
Feedback Ledger: records approval signals and moves the ranking adjustment term.
"""

from typing import Dict, List, Optional, Union

from ..models.core import FeedbackRecord, FeedbackType
from ..models.errors import InvalidInputError, MemoryNotFoundError
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore
from ..utils.timestamp_utils import utc_now

logger = get_logger(__name__)

# Score delta per net vote
FEEDBACK_WEIGHT = 0.05


def feedback_adjustment(positive_count: int, negative_count: int) -> float:
    """Net ranking adjustment for a memory's feedback counters.

    Not capped: ten net positive votes are worth +0.5 whatever the other
    signals say.
    """
    return FEEDBACK_WEIGHT * positive_count - FEEDBACK_WEIGHT * negative_count


def parse_feedback_type(feedback_type: Union[str, FeedbackType]) -> FeedbackType:
    if isinstance(feedback_type, FeedbackType):
        return feedback_type
    try:
        return FeedbackType(str(feedback_type).strip().lower())
    except ValueError:
        raise InvalidInputError(f'Feedback type must be "positive" or "negative", got {feedback_type!r}')


class FeedbackLedger:
    """Append-only feedback log backed by the memory store's counters."""

    def __init__(self, store: MemoryStore):
        self.store = store

    def submit(self, memory_id: str, session_id: str, feedback_type: Union[str, FeedbackType]) -> FeedbackRecord:
        """
        Record one feedback vote.

        Args:
            memory_id: Memory the vote is about
            session_id: Chat session that produced the vote
            feedback_type: 'positive' or 'negative'

        Returns:
            The appended FeedbackRecord

        Raises:
            InvalidInputError: On a blank id or unknown feedback type
            MemoryNotFoundError: If the memory does not exist
        """
        if not isinstance(memory_id, str) or not memory_id.strip():
            raise InvalidInputError('Memory ID is required')
        if not isinstance(session_id, str) or not session_id.strip():
            raise InvalidInputError('Session ID is required')
        kind = parse_feedback_type(feedback_type)

        record = FeedbackRecord(memory_id=memory_id, session_id=session_id, feedback_type=kind, created_at=utc_now())
        try:
            updated = self.store.apply_feedback(record)
        except MemoryNotFoundError:
            logger.warning(f'Feedback rejected for unknown memory {memory_id}')
            raise

        logger.info(f'Feedback submitted: memory={memory_id} session={session_id} type={kind.value} '
                    f'(+{updated.positive_feedback_count}/-{updated.negative_feedback_count})')
        return record

    def history(self, memory_id: Optional[str] = None) -> List[FeedbackRecord]:
        return self.store.list_feedback(memory_id)

    def summary(self) -> Dict[str, int]:
        """Totals of recorded votes by type."""
        records = self.store.list_feedback()
        positive = sum(1 for record in records if record.feedback_type == FeedbackType.POSITIVE)
        return {'positive': positive, 'negative': len(records) - positive, 'total': len(records)}
