from datetime import datetime, timedelta, timezone
from uuid import uuid4
from jose import jwt, JWTError
from src.config import settings


def create_access_token(principal_id: str, email: str) -> str:
    """Create a signed JWT session token. Each token carries its own session id."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {
        "sub": principal_id,
        "email": email,
        "sid": uuid4().hex,
        "type": "session",
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT. Returns payload or None if invalid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        if payload.get("type") != "session" or not payload.get("sub"):
            return None
        return payload
    except JWTError:
        return None
