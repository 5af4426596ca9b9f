from fastapi import status


class ChatError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ChatError):
    """The submission is malformed or violates attachment limits."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthorizationError(ChatError):
    """The caller does not own the requested session."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(ChatError):
    """A user or session record does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class UpstreamError(ChatError):
    """A model, record store or blob store call failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class StorageError(Exception):
    """Raised by the blob and record stores; callers decide whether to recover."""


class StorageTimeoutError(StorageError):
    """A storage call missed its deadline; the worker thread may still be running."""
