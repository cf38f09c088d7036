# app/core/limiter.py
import jwt
from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address

from app.core.config import settings


def rate_limit_key(request: Request) -> str:
    """Key authenticated requests by user id, anonymous ones by client address"""
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        try:
            payload = jwt.decode(
                auth[7:], settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
            )
            return f"user:{payload['sub']}"
        except (jwt.PyJWTError, KeyError):
            pass
    return get_remote_address(request)


# Single limiter instance for the entire app
limiter = Limiter(key_func=rate_limit_key)

# Export everything needed
__all__ = [
    "limiter",
    "rate_limit_key",
    "_rate_limit_exceeded_handler"
]
