from .ChatError import (
    ChatError, NotFoundError, ForbiddenError, ValidationError,
    ConflictError, ServiceUnavailableError,
)
from .UnauthorizedError import UnauthorizedError

__all__ = [
    'ChatError', 'NotFoundError', 'ForbiddenError', 'ValidationError',
    'ConflictError', 'ServiceUnavailableError', 'UnauthorizedError',
]
