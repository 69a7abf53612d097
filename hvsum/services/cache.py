from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from hvsum.schemas import CacheEntry, QueriesPayload, SearchResultsPayload, TextPayload

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", TextPayload, QueriesPayload, SearchResultsPayload)
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ContentStore(ABC):
    """Keyed, TTL-expiring result cache with session-pending entries.

    Entries written with a session id stay pending until the session is
    committed (they become shared, permanent entries) or discarded (they are
    deleted). Every operation is best-effort: storage failures are logged at
    debug level and degrade to a miss or a no-op, never to an exception.

    Subclasses provide four storage primitives over serialized entries and
    list the exception types their storage raises in ``storage_errors``.
    """

    storage_errors: tuple[type[BaseException], ...] = ()

    def __init__(
        self,
        *,
        default_ttl_hours: int = 24,
        pending_grace_hours: float = 1.0,
        clock: Clock | None = None,
    ) -> None:
        self.default_ttl_hours = default_ttl_hours
        self.pending_grace_hours = pending_grace_hours
        self._clock = clock or _utcnow

    async def get(self, key: str, payload_type: type[PayloadT] | None = None) -> Any:
        raw = await self._safe_read(key)
        if raw is None:
            logger.debug("Cache miss key=%s", key)
            return None

        entry = self._decode(key, raw)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            logger.debug("Cache entry expired key=%s", key)
            await self._safe_delete(key)
            return None

        if payload_type is not None and not isinstance(entry.payload, payload_type):
            logger.debug(
                "Cache entry kind mismatch key=%s stored=%s requested=%s",
                key,
                entry.payload.kind,
                payload_type.__name__,
            )
            return None

        logger.debug("Cache hit key=%s", key)
        return entry.payload

    async def set(
        self,
        key: str,
        payload: BaseModel,
        ttl_hours: int | None = None,
        session_id: str = "",
    ) -> bool:
        try:
            entry = CacheEntry(
                key=key,
                payload=payload,
                created_at=self._clock(),
                ttl_hours=self.default_ttl_hours if ttl_hours is None else ttl_hours,
                session_id=session_id,
                pending=bool(session_id),
            )
        except ValidationError as exc:
            logger.debug("Refusing to cache invalid payload key=%s: %s", key, exc)
            return False
        return await self._safe_write(key, entry)

    async def commit(self, session_id: str) -> int:
        if not session_id:
            return 0

        committed = 0
        async for key, entry in self._entries():
            if entry.session_id != session_id or not entry.pending:
                continue
            updated = entry.model_copy(update={"pending": False, "session_id": ""})
            if await self._safe_write(key, updated):
                committed += 1

        logger.debug("Committed %s cache entries for session=%s", committed, session_id)
        return committed

    async def discard(self, session_id: str) -> int:
        if not session_id:
            return 0

        removed = 0
        async for key, entry in self._entries():
            if entry.session_id != session_id:
                continue
            if await self._safe_delete(key):
                removed += 1

        logger.debug("Discarded %s cache entries for session=%s", removed, session_id)
        return removed

    async def sweep_expired(self) -> int:
        now = self._clock()
        cleaned = 0
        async for key, entry in self._entries():
            if entry.is_expired(now) or entry.is_stale_pending(now, self.pending_grace_hours):
                if await self._safe_delete(key):
                    cleaned += 1

        logger.debug("Cleaned %s expired cache entries", cleaned)
        return cleaned

    async def clear(self) -> int:
        removed = 0
        for key in await self._safe_keys():
            if await self._safe_delete(key):
                removed += 1
        logger.debug("Cleared %s cache entries", removed)
        return removed

    async def close(self) -> None:
        return None

    @abstractmethod
    async def _read(self, key: str) -> str | bytes | None:
        raise NotImplementedError

    @abstractmethod
    async def _write(self, key: str, raw: str, expires_in: timedelta) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def _keys(self) -> list[str]:
        raise NotImplementedError

    async def _entries(self) -> AsyncIterator[tuple[str, CacheEntry]]:
        for key in await self._safe_keys():
            raw = await self._safe_read(key)
            if raw is None:
                continue
            entry = self._decode(key, raw)
            if entry is not None:
                yield key, entry

    def _decode(self, key: str, raw: str | bytes) -> CacheEntry | None:
        try:
            return CacheEntry.model_validate_json(raw)
        except ValueError:
            # Corrupt entries read as absent and stay on disk for inspection.
            logger.debug("Ignoring corrupt cache entry key=%s", key)
            return None

    async def _safe_read(self, key: str) -> str | bytes | None:
        try:
            return await self._read(key)
        except self.storage_errors as exc:
            logger.debug("Cache read failed key=%s: %s", key, exc)
            return None

    async def _safe_write(self, key: str, entry: CacheEntry) -> bool:
        try:
            expires_in = timedelta(hours=entry.ttl_hours) - entry.age(self._clock())
        except OverflowError:
            expires_in = timedelta.max
        try:
            await self._write(key, entry.model_dump_json(), expires_in)
        except self.storage_errors as exc:
            logger.debug("Cache write failed key=%s: %s", key, exc)
            return False
        return True

    async def _safe_delete(self, key: str) -> bool:
        try:
            await self._delete(key)
        except self.storage_errors as exc:
            logger.debug("Cache delete failed key=%s: %s", key, exc)
            return False
        return True

    async def _safe_keys(self) -> list[str]:
        try:
            return await self._keys()
        except self.storage_errors as exc:
            logger.debug("Cache listing failed: %s", exc)
            return []


class FileContentStore(ContentStore):
    """One ``<key>.json`` file per entry, replaced atomically on every write."""

    storage_errors = (OSError,)

    def __init__(self, cache_dir: str | Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._dir = Path(cache_dir)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.debug("Unable to create cache directory %s: %s", self._dir, exc)

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, key: str) -> Path:
        return self._dir / f"{key}.json"

    async def _read(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._read_sync, key)

    async def _write(self, key: str, raw: str, expires_in: timedelta) -> None:
        await asyncio.to_thread(self._write_sync, key, raw)

    async def _delete(self, key: str) -> None:
        await asyncio.to_thread(self.path_for(key).unlink, missing_ok=True)

    async def _keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys_sync)

    def _read_sync(self, key: str) -> bytes | None:
        try:
            return self.path_for(key).read_bytes()
        except FileNotFoundError:
            return None

    def _write_sync(self, key: str, raw: str) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(raw)
            os.replace(tmp_name, self.path_for(key))
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _keys_sync(self) -> list[str]:
        if not self._dir.is_dir():
            return []
        return sorted(path.stem for path in self._dir.glob("*.json") if path.is_file())


class MemoryContentStore(ContentStore):
    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._data: dict[str, str] = {}

    def raw(self, key: str) -> str | None:
        return self._data.get(key)

    def put_raw(self, key: str, raw: str) -> None:
        self._data[key] = raw

    async def _read(self, key: str) -> str | None:
        return self._data.get(key)

    async def _write(self, key: str, raw: str, expires_in: timedelta) -> None:
        self._data[key] = raw

    async def _delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def _keys(self) -> list[str]:
        return sorted(self._data)


class RedisContentStore(ContentStore):
    """Entries stored as JSON strings under ``<namespace>:<key>``.

    Redis expiry mirrors the entry TTL; the pending grace period is still
    enforced by ``sweep_expired``. An unreachable server behaves like an
    empty cache that refuses writes.
    """

    storage_errors = (RedisError, OSError, UnicodeDecodeError)

    def __init__(self, redis_url: str | None, namespace: str = "hvsum", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._redis_url = redis_url
        self._namespace = namespace
        self._redis: Redis | None = None
        self._connect_attempted = False
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._connect_attempted:
                return
            self._connect_attempted = True
            if not self._redis_url:
                return
            client = Redis.from_url(self._redis_url, decode_responses=True)
            try:
                await client.ping()
                self._redis = client
                logger.info("Redis cache connected")
            except (RedisError, OSError) as exc:
                logger.warning("Redis unavailable; continuing without cache: %s", exc)
                await client.aclose()
                self._redis = None

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    def _name(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def _client(self) -> Redis | None:
        if not self._connect_attempted:
            await self.connect()
        return self._redis

    async def _read(self, key: str) -> str | None:
        client = await self._client()
        if client is None:
            return None
        return await client.get(self._name(key))

    async def _write(self, key: str, raw: str, expires_in: timedelta) -> None:
        client = await self._client()
        if client is None:
            raise ConnectionError("redis cache unavailable")
        await client.set(self._name(key), raw, ex=max(1, int(expires_in.total_seconds())))

    async def _delete(self, key: str) -> None:
        client = await self._client()
        if client is None:
            return
        await client.delete(self._name(key))

    async def _keys(self) -> list[str]:
        client = await self._client()
        if client is None:
            return []
        prefix = f"{self._namespace}:"
        keys = [name[len(prefix) :] async for name in client.scan_iter(match=f"{prefix}*")]
        return sorted(keys)


class NullContentStore(ContentStore):
    """Store used when caching is disabled: every read misses."""

    async def get(self, key: str, payload_type: type[PayloadT] | None = None) -> Any:
        return None

    async def set(
        self,
        key: str,
        payload: BaseModel,
        ttl_hours: int | None = None,
        session_id: str = "",
    ) -> bool:
        return False

    async def commit(self, session_id: str) -> int:
        return 0

    async def discard(self, session_id: str) -> int:
        return 0

    async def sweep_expired(self) -> int:
        return 0

    async def clear(self) -> int:
        return 0

    async def _read(self, key: str) -> str | None:
        return None

    async def _write(self, key: str, raw: str, expires_in: timedelta) -> None:
        return None

    async def _delete(self, key: str) -> None:
        return None

    async def _keys(self) -> list[str]:
        return []


def build_content_store(settings: Any, clock: Clock | None = None) -> ContentStore:
    options = {
        "default_ttl_hours": settings.cache_ttl_hours,
        "pending_grace_hours": settings.pending_grace_hours,
        "clock": clock,
    }
    if not settings.cache_enabled:
        return NullContentStore(**options)
    if settings.cache_backend == "memory":
        return MemoryContentStore(**options)
    if settings.cache_backend == "redis":
        return RedisContentStore(settings.redis_url, **options)
    return FileContentStore(settings.cache_dir, **options)
