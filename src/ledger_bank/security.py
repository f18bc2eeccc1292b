"""
Bearer-token helpers. The service only needs the caller's account id;
issuing and refreshing sessions belongs to the auth layer in front of it.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import jwt

from . import settings


def create_access_token(account_id: UUID, expires_minutes: Optional[int] = None) -> str:
    ttl = expires_minutes if expires_minutes is not None else settings.TOKEN_TTL_MINUTES
    payload = {
        "sub": str(account_id),
        "iat": datetime.utcnow(),
        "exp": datetime.utcnow() + timedelta(minutes=ttl),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify JWT token
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def account_id_from_token(token: str) -> Optional[UUID]:
    payload = verify_token(token)
    if not payload or not payload.get("sub"):
        return None
    try:
        return UUID(str(payload["sub"]))
    except ValueError:
        return None
