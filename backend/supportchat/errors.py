"""Error taxonomy shared by the conversation and message services.

Services raise these exceptions; ``supportchat.main`` registers a handler that
turns them into ``{"detail": ..., "error": ...}`` responses.
"""

from fastapi import status


class ChatError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "CHAT_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "error": self.code}


class ValidationError(ChatError):
    """Malformed input: field length, required field, bad reference."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "VALIDATION_ERROR"


class NotFoundError(ChatError):
    """Record is absent or belongs to another tenant."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class PermissionDeniedError(ChatError):
    """Caller is authenticated but not allowed to perform the action."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "PERMISSION_DENIED"


class InvalidStateError(ChatError):
    """Operation is not valid for the record's current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_STATE"


class ConflictError(ChatError):
    """Uniqueness violation."""

    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class UnauthenticatedError(ChatError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHENTICATED"
