"""
MCP Interface Layer using fastmcp for the conversational and feedback layers.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import RetrievalResult
from .models.errors import InvalidInputError, MemoryNotFoundError, StoreUnavailableError
from .services.retrieval import RetrievalService
from .utils.config import config
from .utils.health_check import get_system_info
from .utils.logging_config import get_logger

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('Memory Recall')
_service: Optional[RetrievalService] = None


def get_service() -> RetrievalService:
    """Build the retrieval service on first use so importing this module needs no AWS access."""
    global _service
    if _service is None:
        _service = RetrievalService()
    return _service


def serialize_result(result: RetrievalResult) -> List[Dict[str, Any]]:
    """Plain-dict view of a retrieval result for tool output.

    Args:
        result: Ranked retrieval result

    Returns:
        One dict per memory, best first
    """
    return [{
        'memory_id': item.memory.id,
        'type': item.memory.type.value,
        'title': item.memory.title,
        'content': item.memory.content,
        'score': round(item.final_score, 6),
        'retrieval_method': item.retrieval_method.value,
        'breakdown': item.breakdown.to_dict()
    } for item in result.items]


@mcp.tool()
def retrieve_memories(query: str,
                      session_id: str,
                      entity_ids: Optional[List[str]] = None,
                      limit: Optional[int] = None,
                      semantic_threshold: Optional[float] = None,
                      entity_threshold: Optional[float] = None) -> List[Dict[str, Any]]:
    """Retrieve memories relevant to the current conversational query.

    Args:
        query: Natural language query
        session_id: Current chat session ID
        entity_ids: Optional entity IDs or names known to be relevant
        limit: Maximum number of results to return (default: RETRIEVAL_DEFAULT_LIMIT)
        semantic_threshold: Minimum cosine similarity for semantic matches (default: RETRIEVAL_SEMANTIC_THRESHOLD)
        entity_threshold: Minimum entity match score (default: RETRIEVAL_ENTITY_THRESHOLD)

    Returns:
        List of memories with scores and score breakdowns, best first

    Raises:
        Exception: If the arguments are invalid or the memory store is unavailable
    """
    supplied = {'limit': limit, 'semantic_threshold': semantic_threshold, 'entity_threshold': entity_threshold}
    options = {key: value for key, value in supplied.items() if value is not None}
    try:
        result = get_service().retrieve(query, entity_ids, options, session_id=session_id)
        if result.degraded:
            logger.info(f'Degraded retrieval for session {session_id}: entity matches only')

        memories = serialize_result(result)
        logger.debug(f'MCP retrieval returned {len(memories)} memories for session {session_id}')
        return memories

    except InvalidInputError as e:
        logger.warning(f'Invalid retrieval request: {e}')
        raise Exception(f'Invalid retrieval request: {e}')
    except StoreUnavailableError as e:
        logger.error(f'Memory store unavailable during MCP retrieval: {e}')
        raise Exception(f'Memory retrieval failed: {e}')


@mcp.tool()
def submit_memory_feedback(memory_id: str, session_id: str, feedback_type: str) -> Dict[str, str]:
    """Record whether a surfaced memory was helpful.

    Args:
        memory_id: ID of the memory being rated
        session_id: Current chat session ID
        feedback_type: "positive" or "negative"

    Returns:
        The recorded feedback

    Raises:
        Exception: If the memory does not exist or the arguments are invalid
    """
    try:
        record = get_service().submit_feedback(memory_id, session_id, feedback_type)
        return {
            'memory_id': record.memory_id,
            'session_id': record.session_id,
            'feedback_type': record.feedback_type.value,
            'created_at': record.created_at.isoformat()
        }

    except MemoryNotFoundError as e:
        raise Exception(f'Memory not found: {e}')
    except InvalidInputError as e:
        raise Exception(f'Invalid feedback: {e}')
    except StoreUnavailableError as e:
        logger.error(f'Memory store unavailable during feedback submission: {e}')
        raise Exception(f'Feedback submission failed: {e}')


@mcp.tool()
def retrieval_statistics() -> Dict[str, Any]:
    """Recall and feedback statistics for this server process."""
    return get_service().get_statistics()


@mcp.tool()
def system_info() -> Dict[str, Any]:
    """Configuration and component health."""
    service = get_service()
    return get_system_info(service.store, service.embedder, service.config)


def main() -> None:
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    try:
        mcp.run(transport=transport, host=host, port=port)
    finally:
        if _service is not None:
            logger.info('Shutting down retrieval service')
            _service.close()


if __name__ == '__main__':
    main()
