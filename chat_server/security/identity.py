"""Identity collaborator: token verification and user lookup."""
import logging
from typing import Any, Dict, Optional

from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.repository.user_repository import UserRepository
from chat_server.security.authentication import AuthSecurity

logger = logging.getLogger(__name__)

SUBJECT_CLAIMS = ('sub', 'user_id', 'userId')


def is_active_user(user_doc: Optional[Dict[str, Any]]) -> bool:
    """Present, not soft-deleted and not deactivated."""
    if not user_doc:
        return False
    if user_doc.get('is_deleted'):
        return False
    return user_doc.get('is_active', True) is not False


class IdentityService:

    def __init__(self, users: UserRepository):
        self.users = users

    def verify_token(self, token: str) -> Dict[str, Any]:
        """Decode the bearer token. Returns the claims plus ``user_id``."""
        payload = AuthSecurity.decode_token(token)
        user_id = next((payload[c] for c in SUBJECT_CLAIMS if payload.get(c)), None)
        if not user_id:
            raise UnauthorizedError('Token does not identify a user')
        return {**payload, 'user_id': str(user_id)}

    def get_user_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self.users.find_by_id(user_id)

    def authenticate(self, token: str) -> Dict[str, Any]:
        """verify_token plus a check that the user still exists and is active."""
        claims = self.verify_token(token)
        if not is_active_user(self.get_user_by_id(claims['user_id'])):
            logger.warning("Rejected token for missing or inactive user %s", claims['user_id'])
            raise UnauthorizedError('User not found or inactive')
        return claims
