"""
Core data models for the memory retrieval engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from ..utils.timestamp_utils import ensure_utc
from .errors import InvalidInputError


class MemoryType(str, Enum):
    """The ten kinds of memory produced by the extraction pipeline."""
    CORRECTION = 'correction'
    DECISION = 'decision'
    COMMITMENT = 'commitment'
    INSIGHT = 'insight'
    LEARNING = 'learning'
    CONFIDENCE = 'confidence'
    PATTERN_SEED = 'pattern_seed'
    CROSS_AGENT = 'cross_agent'
    WORKFLOW_NOTE = 'workflow_note'
    GAP = 'gap'


class EntityType(str, Enum):
    PERSON = 'person'
    PROJECT = 'project'
    ORGANIZATION = 'organization'
    OTHER = 'other'


class FeedbackType(str, Enum):
    POSITIVE = 'positive'
    NEGATIVE = 'negative'


class RetrievalMethod(str, Enum):
    ENTITY = 'entity'
    SEMANTIC = 'semantic'
    HYBRID = 'hybrid'


@dataclass(frozen=True)
class Memory:
    """A recorded fact, decision or correction.

    Records are owned by the external store; the engine only ever holds an
    immutable snapshot, so a concurrent feedback write replaces the record
    instead of mutating it.
    """
    id: str
    type: MemoryType
    title: str
    content: str
    last_observed_at: datetime
    first_observed_at: Optional[datetime] = None
    source_chunk: str = ''
    embedding: List[float] = field(default_factory=list, compare=False, repr=False)
    related_entities: FrozenSet[str] = frozenset()
    confidence_score: float = 0.0
    times_observed: int = 1
    positive_feedback_count: int = 0
    negative_feedback_count: int = 0

    def __post_init__(self):
        if not isinstance(self.type, MemoryType):
            object.__setattr__(self, 'type', MemoryType(self.type))
        if not isinstance(self.related_entities, frozenset):
            object.__setattr__(self, 'related_entities', frozenset(self.related_entities))
        if not 0.0 <= self.confidence_score <= 1.0:
            raise InvalidInputError(f'confidence_score must be in [0, 1], got {self.confidence_score}')
        if self.times_observed < 1:
            raise InvalidInputError(f'times_observed must be positive, got {self.times_observed}')
        if self.positive_feedback_count < 0 or self.negative_feedback_count < 0:
            raise InvalidInputError('Feedback counts must be non-negative')
        object.__setattr__(self, 'last_observed_at', ensure_utc(self.last_observed_at))
        if self.first_observed_at is None:
            object.__setattr__(self, 'first_observed_at', self.last_observed_at)
        else:
            object.__setattr__(self, 'first_observed_at', ensure_utc(self.first_observed_at))


@dataclass(frozen=True)
class Entity:
    """A named referent (person, project, organization) that memories link to."""
    id: str
    type: EntityType
    canonical_name: str
    aliases: FrozenSet[str] = frozenset()
    external_ref: Optional[str] = None  # Contact or project id in the host application

    def __post_init__(self):
        if not isinstance(self.type, EntityType):
            object.__setattr__(self, 'type', EntityType(self.type))
        if not isinstance(self.aliases, frozenset):
            object.__setattr__(self, 'aliases', frozenset(self.aliases))

    @property
    def names(self) -> List[str]:
        """Canonical name followed by the aliases, in a stable order."""
        return [self.canonical_name] + sorted(self.aliases)


@dataclass(frozen=True)
class FeedbackRecord:
    """A single approval or disapproval signal. Append-only."""
    memory_id: str
    session_id: str
    feedback_type: FeedbackType
    created_at: datetime


@dataclass(frozen=True)
class RetrievalOptions:
    """Per-call retrieval settings."""
    limit: int = 5
    semantic_threshold: float = 0.4
    entity_threshold: float = 0.5

    def __post_init__(self):
        if isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1:
            raise InvalidInputError(f'limit must be a positive integer, got {self.limit!r}')
        for name in ('semantic_threshold', 'entity_threshold'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
                raise InvalidInputError(f'{name} must be a number in [0, 1], got {value!r}')

    @classmethod
    def from_dict(cls, options: Optional[Dict[str, Any]], defaults: Optional['RetrievalOptions'] = None) -> 'RetrievalOptions':
        """Build options from a caller-supplied mapping.

        Args:
            options: Mapping with any of limit, semantic_threshold, entity_threshold
            defaults: Values used for keys missing from options

        Returns:
            Validated RetrievalOptions

        Raises:
            InvalidInputError: On unknown keys or out-of-range values
        """
        base = defaults or cls()
        if options is None:
            return base
        if not isinstance(options, dict):
            raise InvalidInputError(f'options must be a mapping, got {type(options).__name__}')

        unknown = set(options) - {'limit', 'semantic_threshold', 'entity_threshold'}
        if unknown:
            raise InvalidInputError(f'Unknown retrieval options: {sorted(unknown)}')

        return cls(limit=options.get('limit', base.limit),
                   semantic_threshold=options.get('semantic_threshold', base.semantic_threshold),
                   entity_threshold=options.get('entity_threshold', base.entity_threshold))


@dataclass(frozen=True)
class RetrievalQuery:
    """One retrieval request. Created per call and discarded after scoring."""
    query_text: str
    entity_ids: List[str] = field(default_factory=list)
    options: RetrievalOptions = field(default_factory=RetrievalOptions)
    session_id: Optional[str] = None


@dataclass(frozen=True)
class Candidate:
    """A memory surfaced by one or both candidate sources.

    similarity is None for memories found only through an entity match.
    """
    memory: Memory
    similarity: Optional[float] = None
    entity_match_score: float = 0.0
    retrieval_method: RetrievalMethod = RetrievalMethod.SEMANTIC


@dataclass(frozen=True)
class ScoreBreakdown:
    """Every weighted term behind a final score."""
    similarity: float
    similarity_term: float
    confidence_term: float
    recency_score: float
    recency_term: float
    observation_score: float
    observation_term: float
    type_boost_term: float
    query_boost: float
    base_score: float
    feedback_adjustment: float
    adjusted_score: float

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class ScoredMemory:
    memory: Memory
    final_score: float
    breakdown: ScoreBreakdown
    retrieval_method: RetrievalMethod


@dataclass(frozen=True)
class RetrievalResult:
    """Ordered retrieval output, best match first."""
    items: List[ScoredMemory] = field(default_factory=list)
    query_text: str = ''
    degraded: bool = False  # True when the semantic path was unavailable

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def memory_ids(self) -> List[str]:
        return [item.memory.id for item in self.items]
