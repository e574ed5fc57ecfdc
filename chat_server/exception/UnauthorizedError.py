from chat_server.exception.ChatError import ChatError


class UnauthorizedError(ChatError):
    """Raised when authentication fails due to invalid, expired, or malformed token."""
    status_code = 401
    code = 'UNAUTHORIZED'

    def __init__(self, message):
        super().__init__(message)
