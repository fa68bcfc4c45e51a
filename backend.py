import asyncio
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, REDIS_URL, STORE_BACKEND
from logging_config import get_logger

logger = get_logger(__name__)

# Redis TTL replies for keys without a remaining lifetime
TTL_MISSING = -2
TTL_PERSISTENT = -1


class StoreBackend(ABC):
    """Key-value store with per-key TTL that rooms, memberships and messages live in.

    Values are strings. Hashes map string fields to strings, sets hold string
    members and lists hold string elements. Every method is a single store
    round trip and atomic on its own; sequences of calls are not.
    """

    # True when the store expires keys by itself, False when a sweep must run
    native_ttl = True

    @abstractmethod
    def ping(self) -> bool: ...

    @abstractmethod
    def exists(self, key: str) -> bool: ...

    @abstractmethod
    def set_hash(self, key: str, mapping: dict, ttl: Optional[int] = None) -> None: ...

    @abstractmethod
    def get_hash(self, key: str) -> Dict[str, str]: ...

    @abstractmethod
    def set_ttl(self, key: str, seconds: int) -> bool: ...

    @abstractmethod
    def get_ttl(self, key: str) -> int:
        """Remaining seconds, TTL_MISSING for absent keys, TTL_PERSISTENT without expiry."""

    @abstractmethod
    def add_to_set(self, key: str, member: str) -> bool: ...

    @abstractmethod
    def is_set_member(self, key: str, member: str) -> bool: ...

    @abstractmethod
    def set_cardinality(self, key: str) -> int: ...

    @abstractmethod
    def append_to_list(self, key: str, value: str) -> int: ...

    @abstractmethod
    def get_list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]: ...

    @abstractmethod
    def set_list_element(self, key: str, index: int, value: str) -> None:
        """Replace the element at index. Raises IndexError if the key or index is missing."""

    @abstractmethod
    def delete(self, *keys: str) -> int: ...


def _stringify_mapping(mapping: dict) -> dict:
    # Redis hashes only hold strings, None values are skipped
    return {k: str(v) for k, v in mapping.items() if v is not None}


class RedisBackend(StoreBackend):
    native_ttl = True

    def __init__(self, redis_client: redis.Redis = None):
        if redis_client is None:
            if REDIS_URL:
                redis_client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
            else:
                redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        self.redis_client = redis_client
        logger.info(f"Initializing RedisBackend with connection to {REDIS_URL or f'{REDIS_HOST}:{REDIS_PORT}'}")

    def ping(self) -> bool:
        return bool(self.redis_client.ping())

    def exists(self, key: str) -> bool:
        return self.redis_client.exists(key) == 1

    def set_hash(self, key: str, mapping: dict, ttl: Optional[int] = None) -> None:
        logger.debug(f"Writing hash {key} with TTL {ttl}")
        # HSET and EXPIRE go out as one MULTI so the hash is never visible without a TTL
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.hset(key, mapping=_stringify_mapping(mapping))
        if ttl:
            pipe.expire(key, ttl)
        pipe.execute()

    def get_hash(self, key: str) -> Dict[str, str]:
        return self.redis_client.hgetall(key)

    def set_ttl(self, key: str, seconds: int) -> bool:
        return bool(self.redis_client.expire(key, seconds))

    def get_ttl(self, key: str) -> int:
        return int(self.redis_client.ttl(key))

    def add_to_set(self, key: str, member: str) -> bool:
        return self.redis_client.sadd(key, member) == 1

    def is_set_member(self, key: str, member: str) -> bool:
        return bool(self.redis_client.sismember(key, member))

    def set_cardinality(self, key: str) -> int:
        return int(self.redis_client.scard(key))

    def append_to_list(self, key: str, value: str) -> int:
        return int(self.redis_client.rpush(key, value))

    def get_list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        return self.redis_client.lrange(key, start, end)

    def set_list_element(self, key: str, index: int, value: str) -> None:
        try:
            self.redis_client.lset(key, index, value)
        except redis.ResponseError as e:
            # "no such key" or "index out of range"
            raise IndexError(f"{key}[{index}]: {e}") from e

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        deleted = self.redis_client.delete(*keys)
        logger.debug(f"Deleted {deleted} of {len(keys)} keys: {keys}")
        return deleted


class MemoryBackend(StoreBackend):
    """In-process store for single-instance deployments and tests.

    Expiry timestamps are kept next to the values. Expired keys disappear
    lazily when touched and in bulk when `sweep()` runs.
    """

    native_ttl = False

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._data: Dict[str, object] = {}
        self._expires_at: Dict[str, float] = {}
        self._lock = threading.RLock()

    def _expired(self, key: str, now: float) -> bool:
        expires_at = self._expires_at.get(key)
        return expires_at is not None and expires_at <= now

    def _purge(self, key: str):
        self._data.pop(key, None)
        self._expires_at.pop(key, None)

    def _get(self, key: str, kind: type, create: bool = False):
        if self._expired(key, self.clock()):
            self._purge(key)
        value = self._data.get(key)
        if value is None:
            if not create:
                return None
            value = kind()
            self._data[key] = value
        elif not isinstance(value, kind):
            raise TypeError(f"Key {key} holds {type(value).__name__}, not {kind.__name__}")
        return value

    def sweep(self) -> int:
        """Remove every expired key, returns how many were removed."""
        with self._lock:
            now = self.clock()
            expired = [key for key in self._expires_at if self._expired(key, now)]
            for key in expired:
                self._purge(key)
        if expired:
            logger.debug(f"Expiry sweep removed {len(expired)} keys")
        return len(expired)

    def ping(self) -> bool:
        return True

    def exists(self, key: str) -> bool:
        with self._lock:
            if self._expired(key, self.clock()):
                self._purge(key)
            return key in self._data

    def set_hash(self, key: str, mapping: dict, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._get(key, dict, create=True).update(_stringify_mapping(mapping))
            if ttl:
                self._expires_at[key] = self.clock() + ttl

    def get_hash(self, key: str) -> Dict[str, str]:
        with self._lock:
            return dict(self._get(key, dict) or {})

    def set_ttl(self, key: str, seconds: int) -> bool:
        with self._lock:
            if not self.exists(key):
                return False
            if seconds <= 0:
                self._purge(key)
            else:
                self._expires_at[key] = self.clock() + seconds
            return True

    def get_ttl(self, key: str) -> int:
        with self._lock:
            if not self.exists(key):
                return TTL_MISSING
            expires_at = self._expires_at.get(key)
            if expires_at is None:
                return TTL_PERSISTENT
            return int(math.ceil(expires_at - self.clock()))

    def add_to_set(self, key: str, member: str) -> bool:
        with self._lock:
            members = self._get(key, set, create=True)
            if member in members:
                return False
            members.add(member)
            return True

    def is_set_member(self, key: str, member: str) -> bool:
        with self._lock:
            return member in (self._get(key, set) or ())

    def set_cardinality(self, key: str) -> int:
        with self._lock:
            return len(self._get(key, set) or ())

    def append_to_list(self, key: str, value: str) -> int:
        with self._lock:
            items = self._get(key, list, create=True)
            items.append(value)
            return len(items)

    def get_list_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        with self._lock:
            items = self._get(key, list) or []
            # Redis ranges are inclusive on both ends
            stop = None if end == -1 else end + 1
            return list(items[start:stop])

    def set_list_element(self, key: str, index: int, value: str) -> None:
        with self._lock:
            items = self._get(key, list)
            if items is None:
                raise IndexError(f"{key}: no such key")
            items[index] = value

    def delete(self, *keys: str) -> int:
        with self._lock:
            deleted = 0
            for key in keys:
                if self.exists(key):
                    self._purge(key)
                    deleted += 1
            return deleted


def build_store(backend: str = STORE_BACKEND) -> StoreBackend:
    logger.info(f"Using {backend} store backend")
    if backend == "redis":
        return RedisBackend()
    if backend == "memory":
        return MemoryBackend()
    raise ValueError(f"Unknown store backend: {backend}")


async def run_expiry_sweep(store: MemoryBackend, interval: float):
    """Background task for stores without native key expiry."""
    logger.info(f"Starting expiry sweep every {interval}s")
    try:
        while True:
            await asyncio.sleep(interval)
            try:
                store.sweep()
            except Exception as e:
                logger.error(f"Expiry sweep failed: {e}", exc_info=True)
    except asyncio.CancelledError:
        logger.info("Expiry sweep task cancelled")
        raise
