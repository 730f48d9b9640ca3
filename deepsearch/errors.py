"""Exception types shared across the service."""


class DeepSearchError(Exception):
    """Base class for service errors."""


class ProviderError(DeepSearchError):
    """An upstream provider (search API) failed or returned a malformed response."""


class ModelInvocationError(DeepSearchError):
    """The completion call to the language model failed."""


class OperationCancelled(DeepSearchError):
    """The request's cancellation scope fired while work was in flight."""

    def __init__(self, reason: str = "Operation cancelled"):
        super().__init__(reason)
        self.reason = reason


class ChatNotFoundError(DeepSearchError):
    """The chat does not exist or belongs to another user."""
