"""
Error taxonomy shared by the retrieval engine and its clients.
"""


class MemoryRecallError(Exception):
    """Base exception for memory recall errors."""
    pass


class ProviderUnavailableError(MemoryRecallError):
    """The embedding provider failed or timed out."""
    pass


class MemoryNotFoundError(MemoryRecallError):
    """A memory id does not exist in the store."""
    pass


class InvalidInputError(MemoryRecallError, ValueError):
    """Malformed arguments or options, rejected before any work is done."""
    pass


class StoreUnavailableError(MemoryRecallError):
    """The persistent store could not be read or written."""
    pass
