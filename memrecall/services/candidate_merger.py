"""
Candidate Merger: union of entity and semantic candidates, deduplicated by memory id.
"""

from typing import Dict, Iterable, List, Tuple

from ..models.core import Candidate, Memory, RetrievalMethod

# Every exact entity hit counts as a full-strength entity match
ENTITY_MATCH_SCORE = 1.0


def merge(entity_results: Iterable[Memory], semantic_results: Iterable[Tuple[Memory, float]]) -> List[Candidate]:
    """
    Merge both candidate lists.

    A memory found by both sources keeps its semantic similarity and is
    tagged hybrid. Entity-only memories carry no similarity. When a source
    repeats an id, the highest similarity wins. Order is first appearance,
    entity results first.

    Args:
        entity_results: Memories from the entity source
        semantic_results: (memory, similarity) pairs from the semantic source

    Returns:
        Deduplicated candidates
    """
    merged: Dict[str, Candidate] = {}

    for memory in entity_results:
        if memory.id not in merged:
            merged[memory.id] = Candidate(memory=memory,
                                          similarity=None,
                                          entity_match_score=ENTITY_MATCH_SCORE,
                                          retrieval_method=RetrievalMethod.ENTITY)

    for memory, similarity in semantic_results:
        existing = merged.get(memory.id)
        if existing is None:
            merged[memory.id] = Candidate(memory=memory, similarity=similarity, retrieval_method=RetrievalMethod.SEMANTIC)
            continue

        best = similarity if existing.similarity is None else max(existing.similarity, similarity)
        method = RetrievalMethod.SEMANTIC if existing.retrieval_method == RetrievalMethod.SEMANTIC else RetrievalMethod.HYBRID
        merged[memory.id] = Candidate(memory=existing.memory,
                                      similarity=best,
                                      entity_match_score=existing.entity_match_score,
                                      retrieval_method=method)

    return list(merged.values())
