"""
Embedding provider interface.
"""

from abc import ABC, abstractmethod
from typing import List

from .logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingProvider(ABC):
    """A capability that turns text into a fixed-length vector.

    Implementations raise ProviderUnavailableError (or a subclass) when the
    backing service cannot produce an embedding.
    """

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of every vector this provider returns."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Compute the embedding for a query text."""

    def health_check(self) -> bool:
        """
        Perform a health check on the embedding provider.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            test_embedding = self.embed('test')
            return len(test_embedding) == self.dimension

        except Exception as e:
            logger.error(f'{type(self).__name__} health check failed: {e}')
            return False
