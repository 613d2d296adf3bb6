"""
Health check utilities for the retrieval engine.
"""

from typing import Any, Dict, Optional

from .config import config
from .embedding_provider import EmbeddingProvider
from .logging_config import get_logger
from .memory_store import MemoryStore

logger = get_logger(__name__)


def check_health(store: MemoryStore, embedder: EmbeddingProvider) -> bool:
    """Check the health of all system components.

    Args:
        store: Memory store in use
        embedder: Embedding provider in use

    Returns:
        True if all components are healthy, False otherwise
    """
    try:
        health_status = get_health_status(store, embedder)

        # Check if all components are healthy
        all_healthy = all(status.get('healthy', False) for status in health_status.values())

        if all_healthy:
            logger.info('All system components are healthy')
        else:
            logger.warning('Some system components are unhealthy')

        return all_healthy

    except Exception as e:
        logger.error(f'Health check failed: {e}')
        return False


def get_health_status(store: MemoryStore, embedder: EmbeddingProvider) -> Dict[str, Any]:
    """Get detailed health status of all components.

    The embedder is reported separately because retrieval still answers
    (entity matches only) while it is down.

    Args:
        store: Memory store in use
        embedder: Embedding provider in use

    Returns:
        Dictionary with health status of each component
    """
    health_status = {}

    try:
        health_status['embedding_provider'] = {
            'healthy': embedder.health_check(),
            'service': type(embedder).__name__,
            'dimension': embedder.dimension,
            'required': False
        }
    except Exception as e:
        health_status['embedding_provider'] = {'healthy': False, 'service': type(embedder).__name__, 'error': str(e)}

    try:
        health_status['memory_store'] = {'healthy': store.health_check(), 'service': type(store).__name__, 'required': True}
    except Exception as e:
        health_status['memory_store'] = {'healthy': False, 'service': type(store).__name__, 'error': str(e)}

    return health_status


def get_system_info(store: MemoryStore, embedder: EmbeddingProvider, app_config: Optional[Any] = None) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    app_config = app_config or config
    return {
        'service_name': 'memrecall',
        'version': '1.0.0',
        'configuration': {
            'embed_model': app_config.bedrock_embed.model_id,
            'default_limit': app_config.retrieval.default_limit,
            'semantic_threshold': app_config.retrieval.semantic_threshold,
            'entity_threshold': app_config.retrieval.entity_threshold,
            'embed_timeout_seconds': app_config.retrieval.embed_timeout_seconds,
            'recency_half_life_days': app_config.retrieval.recency_half_life_days
        },
        'health_status': get_health_status(store, embedder)
    }
