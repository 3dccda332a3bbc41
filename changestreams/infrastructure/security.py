"""Access token helpers for authenticating hub connections."""

from jose import JWTError, jwt

from changestreams.config import get_settings

ALGORITHM = "HS256"


def _secret_key() -> str:
    secret_key = get_settings().secret_key
    if not secret_key:
        raise ValueError("SECRET_KEY is not configured")
    return secret_key


def decode_access_token(token: str) -> dict:
    try:
        return jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])
    except JWTError as exc:
        raise ValueError("Could not validate credentials") from exc
