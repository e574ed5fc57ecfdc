class ChatError(Exception):
    """Base class for errors raised by the chat engine.

    Each subclass carries the HTTP status it maps to and a stable code that
    socket clients can switch on.
    """
    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFoundError(ChatError):
    """Conversation, user or message does not exist (or is soft-deleted)."""
    status_code = 404
    code = 'NOT_FOUND'


class ForbiddenError(ChatError):
    """Caller is not a participant, or is acting on someone else's data."""
    status_code = 403
    code = 'FORBIDDEN'


class ValidationError(ChatError):
    """Bad input: content too long, missing field, malformed id."""
    status_code = 400
    code = 'VALIDATION_ERROR'


class ConflictError(ChatError):
    """Duplicate conversation creation race. Resolved internally, never returned to clients."""
    status_code = 409
    code = 'CONFLICT'


class ServiceUnavailableError(ChatError):
    """Backing store or broker is unreachable."""
    status_code = 503
    code = 'SERVICE_UNAVAILABLE'
