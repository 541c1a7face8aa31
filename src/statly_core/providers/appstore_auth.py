"""App Store Connect API tokens (ES256 JWT) with a Redis-backed cache."""
import logging
import time
from typing import Optional

import jwt
from redis.asyncio import Redis
from redis.exceptions import RedisError

from .exceptions import ProviderError


logger = logging.getLogger(__name__)

TOKEN_AUDIENCE = "appstoreconnect-v1"
TOKEN_LIFETIME_SECONDS = 20 * 60
REFRESH_MARGIN_SECONDS = 2 * 60
CACHE_KEY_PREFIX = "statly:asc_token"


def normalize_private_key(private_key: str) -> str:
    """Accept .p8 contents pasted with literal ``\\n`` sequences."""
    key = private_key.strip()
    if "\\n" in key:
        key = key.replace("\\n", "\n")
    return key


def mint_token(
    key_id: str,
    issuer_id: str,
    private_key: str,
    lifetime: int = TOKEN_LIFETIME_SECONDS,
    now: Optional[float] = None,
) -> str:
    """Sign a fresh App Store Connect JWT.

    Raises:
        ProviderError: If the private key cannot sign ES256
    """
    issued_at = int(now if now is not None else time.time())
    claims = {
        "iss": issuer_id,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "aud": TOKEN_AUDIENCE,
    }
    try:
        return jwt.encode(
            claims,
            normalize_private_key(private_key),
            algorithm="ES256",
            headers={"kid": key_id, "typ": "JWT"},
        )
    except (ValueError, TypeError, jwt.PyJWTError) as exc:
        raise ProviderError(f"Invalid App Store Connect private key: {exc}") from exc


class AppStoreTokenCache:
    """Reuse a signed token until it is within the refresh margin of expiry.

    With a Redis client the token is shared between processes (key TTL is
    lifetime minus margin). Without one, tokens are cached in-process.
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        lifetime: int = TOKEN_LIFETIME_SECONDS,
        refresh_margin: int = REFRESH_MARGIN_SECONDS,
    ) -> None:
        self.redis = redis
        self.lifetime = lifetime
        self.refresh_margin = refresh_margin
        self._local: dict[str, tuple[str, float]] = {}

    @staticmethod
    def cache_key(key_id: str, issuer_id: str) -> str:
        return f"{CACHE_KEY_PREFIX}:{issuer_id}:{key_id}"

    async def get_token(self, key_id: str, issuer_id: str, private_key: str) -> str:
        cache_key = self.cache_key(key_id, issuer_id)
        now = time.time()

        cached = await self._read(cache_key, now)
        if cached:
            return cached

        token = mint_token(key_id, issuer_id, private_key, self.lifetime, now)
        await self._write(cache_key, token, now)
        logger.debug("Minted App Store Connect token for key %s", key_id)
        return token

    async def _read(self, cache_key: str, now: float) -> Optional[str]:
        if self.redis is not None:
            try:
                value = await self.redis.get(cache_key)
            except RedisError as exc:
                logger.warning("Token cache read failed, minting new token: %s", exc)
                return None
            if value is None:
                return None
            return value.decode() if isinstance(value, bytes) else str(value)

        entry = self._local.get(cache_key)
        if entry and entry[1] > now:
            return entry[0]
        return None

    async def _write(self, cache_key: str, token: str, now: float) -> None:
        usable_for = max(1, self.lifetime - self.refresh_margin)
        if self.redis is not None:
            try:
                await self.redis.set(cache_key, token, ex=usable_for)
            except RedisError as exc:
                logger.warning("Token cache write failed: %s", exc)
            return
        self._local[cache_key] = (token, now + usable_for)
