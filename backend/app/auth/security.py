from datetime import datetime, timedelta, timezone
from uuid import UUID
import jwt
from passlib.context import CryptContext
from app.core.config import settings

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

def hash_password(plain: str) -> str:
    return pwd_ctx.hash(plain)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_ctx.verify(plain, hashed)

def _jwt_encode(payload: dict) -> str:
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def create_access_token(sub: UUID | str,
                        expires_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {
        "sub": str(sub),
        "typ": "access",
        "iat": now,
        "exp": expire,
    }
    return _jwt_encode(payload)

def decode_access_token(token: str) -> UUID:
    """
    Verify an access token and return the user id it was issued for.

    Raises:
        jwt.PyJWTError: bad signature, expired, or not an access token
        ValueError: subject is not a valid UUID
    """
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    if payload.get("typ") != "access":
        raise jwt.InvalidTokenError("Invalid token type")
    return UUID(payload["sub"])
