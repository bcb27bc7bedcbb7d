from datetime import timedelta

import jwt
import pytest

from spendbox.core.config import settings
from spendbox.core.errors import TooManyRequests, Unauthorized
from spendbox.core.rate_limit import RateLimiter
from spendbox.core.security import (
    create_access_token,
    decode_access_token,
    generate_one_time_token,
    get_password_hash,
    hash_one_time_token,
    verify_password,
)


def test_password_hash_round_trip():
    hashed = get_password_hash("correct horse battery")
    assert hashed != "correct horse battery"
    assert hashed.startswith("$2b$")
    assert verify_password("correct horse battery", hashed)
    assert not verify_password("wrong horse", hashed)


def test_password_hash_uses_configured_cost():
    hashed = get_password_hash("password123")
    assert hashed.split("$")[2] == f"{settings.BCRYPT_ROUNDS:02d}"


def test_default_cost_is_at_least_twelve():
    assert type(settings).model_fields["BCRYPT_ROUNDS"].default >= 12


def test_verify_password_rejects_missing_or_malformed_hash():
    assert not verify_password("password123", None)
    assert not verify_password("password123", "not-a-bcrypt-hash")


def test_access_token_carries_subject():
    token = create_access_token({"sub": "user-1"})
    payload = decode_access_token(token)
    assert payload["sub"] == "user-1"
    assert payload["exp"] > payload["iat"]


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-5))
    with pytest.raises(Unauthorized) as exc:
        decode_access_token(token)
    assert exc.value.message == "Token has expired"


def test_token_signed_with_other_secret_is_rejected():
    forged = jwt.encode({"sub": "user-1"}, "another-secret", algorithm="HS256")
    with pytest.raises(Unauthorized):
        decode_access_token(forged)


def test_one_time_tokens_are_random_and_hashed():
    first, second = generate_one_time_token(), generate_one_time_token()
    assert first != second
    assert len(first) == 64
    assert hash_one_time_token(first) == hash_one_time_token(first)
    assert hash_one_time_token(first) != first


def test_rate_limiter_blocks_after_limit():
    limiter = RateLimiter("test", max_requests=2, window_seconds=60)
    assert limiter.is_allowed("1.2.3.4")
    assert limiter.is_allowed("1.2.3.4")
    assert not limiter.is_allowed("1.2.3.4")
    assert limiter.is_allowed("5.6.7.8")
    assert limiter.get_remaining("1.2.3.4") == 0

    limiter.reset()
    assert limiter.get_remaining("1.2.3.4") == 2


def test_rate_limiter_dependency_raises():
    import asyncio
    from types import SimpleNamespace

    limiter = RateLimiter("test", max_requests=1, window_seconds=60)
    request = SimpleNamespace(client=SimpleNamespace(host="9.9.9.9"))
    asyncio.run(limiter(request))
    with pytest.raises(TooManyRequests):
        asyncio.run(limiter(request))
