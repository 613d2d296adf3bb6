"""
Entity Resolver: maps free-text query fragments to known entity ids.
"""

import re
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..models.core import Entity
from ..utils.logging_config import get_logger
from ..utils.memory_store import MemoryStore

logger = get_logger(__name__)

TOKEN_PATTERN = re.compile(r'\w+', re.UNICODE)


def tokenize(text: str) -> Tuple[str, ...]:
    """Lower-cased word tokens of text."""
    return tuple(TOKEN_PATTERN.findall(text.lower()))


class EntityResolver:
    """Longest-match-first alias matching over the known entities.

    Every canonical name and alias is tokenized the same way as the query, so
    "Smith's" in a query still matches the alias "Smith". At each query
    position the longest alias that fits wins and its tokens are consumed,
    which keeps "John Smith" from also resolving "John" and "Smith"
    separately.
    """

    def __init__(self, entities: Iterable[Entity] = ()):
        self._index: Dict[Tuple[str, ...], Set[str]] = {}
        self._max_tokens = 0
        self._entities: Dict[str, Entity] = {}
        for entity in entities:
            self.add(entity)

    @classmethod
    def from_store(cls, store: MemoryStore) -> 'EntityResolver':
        return cls(store.list_entities())

    def add(self, entity: Entity) -> None:
        self._entities[entity.id] = entity
        for name in entity.names:
            tokens = tokenize(name)
            if not tokens:
                continue
            self._index.setdefault(tokens, set()).add(entity.id)
            self._max_tokens = max(self._max_tokens, len(tokens))

    def resolve(self, query_text: str) -> Set[str]:
        """
        Resolve entity mentions in a query.

        Args:
            query_text: Raw query text

        Returns:
            Set of matched entity ids, empty when nothing matches
        """
        if not query_text or not self._index:
            return set()

        tokens = tokenize(query_text)
        resolved: Set[str] = set()
        position = 0
        while position < len(tokens):
            match_length = 0
            longest = min(self._max_tokens, len(tokens) - position)
            for length in range(longest, 0, -1):
                entity_ids = self._index.get(tokens[position:position + length])
                if entity_ids:
                    resolved.update(entity_ids)
                    match_length = length
                    break
            position += match_length or 1

        if resolved:
            logger.debug(f'Resolved {len(resolved)} entities from query')
        return resolved

    def resolve_references(self, references: Optional[List[str]]) -> Set[str]:
        """
        Resolve explicitly supplied entity references.

        Each reference is tried as an entity id first, then as a canonical
        name or alias.

        Args:
            references: Entity ids or names supplied by the caller

        Returns:
            Set of entity ids; unknown references are skipped
        """
        resolved: Set[str] = set()
        for reference in references or []:
            if reference in self._entities:
                resolved.add(reference)
                continue
            entity_ids = self._index.get(tokenize(reference))
            if entity_ids:
                resolved.update(entity_ids)
            else:
                logger.debug(f'Unknown entity reference skipped: {reference}')
        return resolved
