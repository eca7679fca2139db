from datetime import datetime, timedelta, timezone

import jwt
import pytest

from disaster_training.config import settings
from disaster_training.exceptions import Unauthenticated
from disaster_training.security import (
    create_access_token, decode_access_token, hash_password, verify_password,
)


def test_password_hash_roundtrip():
    hashed = hash_password("Secret123")
    assert hashed != "Secret123"
    assert verify_password("Secret123", hashed)
    assert not verify_password("secret123", hashed)


def test_malformed_hash_does_not_verify():
    assert verify_password("Secret123", "not-a-bcrypt-hash") is False


def test_access_token_carries_user_id():
    payload = decode_access_token(create_access_token(42))
    assert payload["sub"] == "42"
    assert payload["type"] == "access"


def test_expired_token():
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {
            "sub": "1", "type": "access",
            "iat": now - timedelta(hours=2), "exp": now - timedelta(hours=1),
            "iss": settings.JWT_ISSUER, "aud": settings.JWT_AUDIENCE,
        },
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(Unauthenticated, match="expired"):
        decode_access_token(token)


def test_token_signed_with_other_secret():
    token = jwt.encode(
        {"sub": "1", "type": "access", "iss": settings.JWT_ISSUER, "aud": settings.JWT_AUDIENCE},
        "some-other-secret",
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(Unauthenticated):
        decode_access_token(token)


def test_garbage_token():
    with pytest.raises(Unauthenticated):
        decode_access_token("abc.def.ghi")
