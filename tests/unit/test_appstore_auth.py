"""Unit tests for App Store Connect token minting and caching."""
import time
from unittest.mock import AsyncMock

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from redis.exceptions import ConnectionError as RedisConnectionError

from src.statly_core.providers.appstore_auth import (
    TOKEN_AUDIENCE,
    AppStoreTokenCache,
    mint_token,
)
from src.statly_core.providers.exceptions import ProviderError


@pytest.fixture(scope="module")
def ec_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="module")
def private_pem(ec_key):
    return ec_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def test_mint_token_claims_and_header(ec_key, private_pem):
    """ES256 token with kid header, issuer, audience and 20-minute expiry."""
    token = mint_token("KEY123", "issuer-uuid", private_pem, now=1_700_000_000)

    header = jwt.get_unverified_header(token)
    claims = jwt.decode(
        token,
        ec_key.public_key(),
        algorithms=["ES256"],
        audience=TOKEN_AUDIENCE,
        options={"verify_exp": False},
    )
    assert header["kid"] == "KEY123"
    assert header["alg"] == "ES256"
    assert claims["iss"] == "issuer-uuid"
    assert claims["exp"] - claims["iat"] == 20 * 60


def test_mint_token_accepts_escaped_newlines(private_pem):
    """Keys pasted with literal \\n sequences still sign."""
    escaped = private_pem.replace("\n", "\\n")

    assert mint_token("KEY123", "issuer-uuid", escaped).count(".") == 2


def test_mint_token_invalid_key():
    """Garbage keys surface as ProviderError."""
    with pytest.raises(ProviderError) as exc_info:
        mint_token("KEY123", "issuer-uuid", "not a key")

    assert "Invalid App Store Connect private key" in str(exc_info.value)


@pytest.mark.asyncio
async def test_in_process_cache_reuses_token(private_pem):
    """Without Redis the same token is returned until refresh time."""
    cache = AppStoreTokenCache()

    first = await cache.get_token("KEY123", "issuer-uuid", private_pem)
    second = await cache.get_token("KEY123", "issuer-uuid", private_pem)
    other = await cache.get_token("KEY999", "issuer-uuid", private_pem)

    assert first == second
    assert other != first


@pytest.mark.asyncio
async def test_refresh_margin_expires_local_entry(private_pem):
    """Entries are only usable for lifetime minus the refresh margin."""
    cache = AppStoreTokenCache(lifetime=1200, refresh_margin=120)
    key = cache.cache_key("KEY123", "issuer-uuid")
    before = time.time()

    await cache.get_token("KEY123", "issuer-uuid", private_pem)
    token, usable_until = cache._local[key]

    assert before + 1080 <= usable_until <= time.time() + 1080
    assert await cache._read(key, now=usable_until + 1) is None
    assert await cache._read(key, now=usable_until - 1) == token


@pytest.mark.asyncio
async def test_redis_cache_hit_skips_signing():
    """A cached token in Redis is returned as-is."""
    redis = AsyncMock()
    redis.get.return_value = b"cached.jwt.token"
    cache = AppStoreTokenCache(redis)

    token = await cache.get_token("KEY123", "issuer-uuid", "not a key")

    assert token == "cached.jwt.token"
    redis.get.assert_awaited_once_with("statly:asc_token:issuer-uuid:KEY123")
    redis.set.assert_not_called()


@pytest.mark.asyncio
async def test_redis_cache_miss_stores_with_ttl(private_pem):
    """A fresh token is stored with TTL = lifetime - refresh margin."""
    redis = AsyncMock()
    redis.get.return_value = None
    cache = AppStoreTokenCache(redis)

    token = await cache.get_token("KEY123", "issuer-uuid", private_pem)

    redis.set.assert_awaited_once_with(
        "statly:asc_token:issuer-uuid:KEY123", token, ex=18 * 60
    )


@pytest.mark.asyncio
async def test_redis_outage_falls_back_to_signing(private_pem):
    """Redis errors never block a sync."""
    redis = AsyncMock()
    redis.get.side_effect = RedisConnectionError("down")
    redis.set.side_effect = RedisConnectionError("down")
    cache = AppStoreTokenCache(redis)

    token = await cache.get_token("KEY123", "issuer-uuid", private_pem)

    assert token.count(".") == 2
