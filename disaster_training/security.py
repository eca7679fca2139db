"""
Password hashing (bcrypt) and access tokens (PyJWT).
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

import bcrypt
import jwt

from disaster_training.config import settings
from disaster_training.exceptions import Unauthenticated

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 10


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        logger.warning("Stored password hash could not be parsed")
        return False


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    """Sign an access token for a user id."""
    now = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.JWT_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "type": "access",
        "iat": now,
        "exp": now + lifetime,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify signature, expiry, issuer and audience.

    Raises Unauthenticated for any token problem.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected token: {e}")
        raise Unauthenticated("Invalid token.")

    if payload.get("type") != "access" or not str(payload.get("sub", "")).isdigit():
        raise Unauthenticated("Invalid token.")
    return payload
