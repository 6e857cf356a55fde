import asyncio
import hashlib
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from gems_api.core.errors import UpstreamUnavailable

logger = structlog.get_logger(__name__)


def fingerprint(credential: str) -> str:
    """Refresh credentials are kept as SHA-256 digests, never in clear."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()


class RefreshChainStore(Protocol):
    """
    Tracks which refresh credential is the live head of each principal's chain.
    Exactly one credential per principal is current at any time.
    """
    async def register(self, uid: str, credential: str, ttl: int) -> None: ...
    async def is_current(self, uid: str, credential: str) -> bool: ...
    async def compare_and_swap(self, uid: str, expected: str, new: str, ttl: int) -> bool: ...
    async def revoke(self, uid: str, credential: str) -> bool: ...


class RedisRefreshChainStore:
    """
    Redis-backed chain with fail-closed behavior (no in-memory fallback).
    Swaps and revocations run as Lua scripts so racing rotations cannot both win.
    """

    KEY_PREFIX = "refresh_chain:"

    _CAS_SCRIPT = """
    local key = KEYS[1]
    local expected = ARGV[1]
    local new = ARGV[2]
    local ttl = tonumber(ARGV[3])
    local current = redis.call('GET', key)
    if current == false or current ~= expected then
      return 0
    end
    redis.call('SET', key, new, 'EX', ttl)
    return 1
    """

    _REVOKE_SCRIPT = """
    local key = KEYS[1]
    local expected = ARGV[1]
    local current = redis.call('GET', key)
    if current == false or current ~= expected then
      return 0
    end
    redis.call('DEL', key)
    return 1
    """

    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis_client: Optional[Redis] = redis_client

    def _key(self, uid: str) -> str:
        return f"{self.KEY_PREFIX}{uid}"

    def _require_client(self) -> Redis:
        if not self.redis_client:
            raise UpstreamUnavailable("refresh_chain")
        return self.redis_client

    async def register(self, uid: str, credential: str, ttl: int) -> None:
        client = self._require_client()
        try:
            await client.set(self._key(uid), fingerprint(credential), ex=ttl)
        except RedisError as e:
            logger.error("refresh_chain_register_error", error=str(e), uid=uid)
            raise UpstreamUnavailable("refresh_chain")

    async def is_current(self, uid: str, credential: str) -> bool:
        client = self._require_client()
        try:
            current = await client.get(self._key(uid))
        except RedisError as e:
            logger.error("refresh_chain_get_error", error=str(e), uid=uid)
            raise UpstreamUnavailable("refresh_chain")
        if current is None:
            return False
        if isinstance(current, bytes):
            current = current.decode("utf-8")
        return current == fingerprint(credential)

    async def compare_and_swap(self, uid: str, expected: str, new: str, ttl: int) -> bool:
        client = self._require_client()
        try:
            result = await client.eval(
                self._CAS_SCRIPT, 1, self._key(uid), fingerprint(expected), fingerprint(new), ttl
            )
        except RedisError as e:
            logger.error("refresh_chain_cas_error", error=str(e), uid=uid)
            raise UpstreamUnavailable("refresh_chain")
        return int(result) == 1

    async def revoke(self, uid: str, credential: str) -> bool:
        client = self._require_client()
        try:
            result = await client.eval(self._REVOKE_SCRIPT, 1, self._key(uid), fingerprint(credential))
        except RedisError as e:
            logger.error("refresh_chain_revoke_error", error=str(e), uid=uid)
            raise UpstreamUnavailable("refresh_chain")
        return int(result) == 1


class InMemoryRefreshChainStore:
    """Single-process chain store for development and tests."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._heads: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live_head(self, uid: str) -> Optional[str]:
        entry = self._heads.get(uid)
        if entry is None:
            return None
        digest, expires_at = entry
        if self._clock() >= expires_at:
            del self._heads[uid]
            return None
        return digest

    async def register(self, uid: str, credential: str, ttl: int) -> None:
        async with self._lock:
            self._heads[uid] = (fingerprint(credential), self._clock() + ttl)

    async def is_current(self, uid: str, credential: str) -> bool:
        async with self._lock:
            return self._live_head(uid) == fingerprint(credential)

    async def compare_and_swap(self, uid: str, expected: str, new: str, ttl: int) -> bool:
        async with self._lock:
            if self._live_head(uid) != fingerprint(expected):
                return False
            self._heads[uid] = (fingerprint(new), self._clock() + ttl)
            return True

    async def revoke(self, uid: str, credential: str) -> bool:
        async with self._lock:
            if self._live_head(uid) != fingerprint(credential):
                return False
            del self._heads[uid]
            return True
