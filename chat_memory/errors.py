"""Error kinds raised by the indexing and retrieval pipeline."""


class ChatMemoryError(Exception):
    """Base class for pipeline errors."""


class ServiceUnavailable(ChatMemoryError):
    """Embedding service or vector store is unreachable or refused the call."""


class MalformedResponse(ChatMemoryError):
    """A remote service answered with an unexpected shape."""


class NotConfigured(ChatMemoryError):
    """A client was used before its required setup step."""


class Cancelled(ChatMemoryError):
    """An indexing job observed its cancellation flag."""
