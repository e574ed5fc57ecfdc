import time
from datetime import timedelta, datetime

from jose import jwt, JWTError

from chat_server.exception.UnauthorizedError import UnauthorizedError
from chat_server.utils.time_utils import utc_now


class AuthSecurity:
    """Bearer token verification shared by the HTTP surface and the gateway.

    Tokens are issued elsewhere; this service only needs the shared secret.
    ``encode_token`` exists for tooling and tests.
    """
    secret_key = None
    algorithm = 'HS256'
    access_token_expire_minutes = 7 * 24 * 60  # 10080 minutes

    @classmethod
    def configure(cls, secret_key, algorithm='HS256', access_token_expire_minutes=7*24*60):
        cls.secret_key = secret_key
        cls.algorithm = algorithm
        cls.access_token_expire_minutes = access_token_expire_minutes

    @classmethod
    def encode_token(cls, data: dict, expires_delta: timedelta = None) -> str:
        to_encode = data.copy()
        expire = utc_now() + (expires_delta or timedelta(minutes=cls.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, cls.secret_key, algorithm=cls.algorithm)

    @classmethod
    def decode_token(cls, token: str) -> dict:
        # Well-formed JWTs have exactly two dots
        if not token or token.count('.') != 2:
            raise UnauthorizedError("Malformed or missing token. Please provide a valid JWT token.")
        if not cls.secret_key:
            raise UnauthorizedError("Token verification is not configured on this server.")
        try:
            payload = jwt.decode(token, cls.secret_key, algorithms=[cls.algorithm])
        except JWTError as e:
            msg = str(e)
            if 'Signature has expired' in msg:
                raise UnauthorizedError("Token expired. Please login again or refresh your session.")
            elif 'Not enough segments' in msg or 'Invalid header string' in msg:
                raise UnauthorizedError("Malformed or missing token. Please provide a valid JWT token.")
            elif 'Signature verification failed' in msg:
                raise UnauthorizedError("Invalid token signature. Please login again.")
            else:
                raise UnauthorizedError(f"Invalid token: {msg}")
        exp = payload.get('exp')
        if exp is not None:
            if isinstance(exp, datetime):
                exp = int(exp.timestamp())
            if int(float(exp)) < int(time.time()):
                raise UnauthorizedError("Token expired. Please login again or refresh your session.")
        if payload.get('type') == 'refresh':
            raise UnauthorizedError("Refresh tokens cannot be used to access chat.")
        return payload


def get_bearer_token(headers) -> str:
    """Return the token from an ``Authorization: Bearer ...`` header, or None."""
    auth_header = headers.get('Authorization') or ''
    if auth_header.startswith('Bearer '):
        token = auth_header.split(' ', 1)[1].strip()
        return token or None
    return None
