"""Route decorators for common patterns like error handling and authentication.

This module provides reusable decorators to reduce boilerplate in route handlers.
"""
import functools
import logging
from typing import Callable

from flask import current_app, request

from chat_server.exception.ChatError import ChatError
from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.security.authentication import get_bearer_token
from chat_server.utils.helpers import respond_error

logger = logging.getLogger(__name__)


def handle_errors(func: Callable) -> Callable:
    """Decorator to handle common exceptions in route handlers.

    Catches:
    - ChatError (and subclasses) -> its status_code, with its code in the body
    - ValueError -> 400
    - Other exceptions -> 500

    Usage:
        @bp.route('/example')
        @handle_errors
        def example_route():
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ChatError as e:
            if e.status_code >= 500:
                logger.error("%s in %s: %s", e.code, func.__name__, e)
            else:
                logger.warning("%s: %s", e.code, e)
            return respond_error(e.message, status=e.status_code, code=e.code)
        except ValueError as e:
            logger.warning("Validation error: %s", e)
            return respond_error(str(e), status=400, code='VALIDATION_ERROR')
        except Exception:
            logger.exception("Unexpected error in %s", func.__name__)
            return respond_error('Server error', status=500, code='INTERNAL_ERROR')
    return wrapper


def require_auth(func: Callable) -> Callable:
    """Decorator to require authentication and inject payload into handler.

    The bearer token is verified and the user must still exist and be active.
    The decorated function receives `auth_payload` as a keyword argument;
    ``auth_payload['user_id']`` is the caller.

    Usage:
        @bp.route('/protected')
        @handle_errors
        @require_auth
        def protected_route(auth_payload):
            user_id = auth_payload['user_id']
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        token = get_bearer_token(request.headers)
        if not token:
            raise UnauthorizedError('Missing or invalid token')
        identity = current_app.extensions['chat_identity']
        kwargs['auth_payload'] = identity.authenticate(token)
        return func(*args, **kwargs)
    return wrapper


def validate_json(*required_fields: str) -> Callable:
    """Decorator to validate that required JSON fields are present.

    Usage:
        @bp.route('/create', methods=['POST'])
        @validate_json('receiverId')
        def create_item():
            data = request.get_json()
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            data = request.get_json(silent=True)

            if not isinstance(data, dict):
                return respond_error('Request body must be JSON', status=400, code='VALIDATION_ERROR')

            missing = [f for f in required_fields if f not in data or data[f] in (None, '')]
            if missing:
                return respond_error(f'Missing required fields: {", ".join(missing)}', status=400,
                                     code='VALIDATION_ERROR')

            return func(*args, **kwargs)
        return wrapper
    return decorator


def log_request(func: Callable) -> Callable:
    """Decorator to log request details."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger.info("%s %s called", request.method, request.path)
        return func(*args, **kwargs)
    return wrapper
