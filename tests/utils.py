from __future__ import annotations

import asyncio
import fnmatch
import math
from typing import Any

from redis.exceptions import WatchError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from formshield.deps import get_db, get_redis
from formshield.models import Base


def build_sqlite_sessionmaker() -> sessionmaker[Session]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


def install_inmemory_stores(app) -> tuple[sessionmaker[Session], "InMemoryRedis"]:
    """
    Attach an in-memory SQLite database and an in-memory Redis to the app.
    """

    SessionLocal = build_sqlite_sessionmaker()

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    redis = InMemoryRedis()

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_redis] = override_get_redis
    return SessionLocal, redis


class InMemoryRedis:
    """
    Async Redis double covering the commands the service issues.

    Keys expire against a manual clock (`advance`). Pipelines support
    WATCH/MULTI/EXEC: a watched key written by anyone else before EXEC makes
    the transaction raise WatchError, as on a real server. Every command
    yields to the event loop once so concurrent tasks interleave.

    Set `fail_with` to an exception instance to make every command raise it,
    or `delay` to make every command sleep first.
    """

    def __init__(self, *, now: float = 1_700_000_000.0) -> None:
        self.now = now
        self.fail_with: BaseException | None = None
        self.delay: float = 0.0
        self._data: dict[str, str] = {}
        self._expiry: dict[str, float] = {}
        self._versions: dict[str, int] = {}

    # -- test controls -------------------------------------------------

    def time(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def _io(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    # -- synchronous core ----------------------------------------------

    def _touch(self, key: str) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    def _purge(self, key: str) -> None:
        deadline = self._expiry.get(key)
        if deadline is not None and deadline <= self.now:
            self._data.pop(key, None)
            self._expiry.pop(key, None)
            self._touch(key)

    def _version(self, key: str) -> int:
        self._purge(key)
        return self._versions.get(key, 0)

    def _get(self, key: str) -> str | None:
        self._purge(key)
        return self._data.get(key)

    def _set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._data[key] = str(value)
        if ex is not None:
            self._expiry[key] = self.now + ex
        else:
            self._expiry.pop(key, None)
        self._touch(key)
        return True

    def _delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            self._purge(key)
            if key in self._data:
                del self._data[key]
                self._expiry.pop(key, None)
                self._touch(key)
                removed += 1
        return removed

    def _incr(self, key: str) -> int:
        self._purge(key)
        value = int(self._data.get(key, "0")) + 1
        self._data[key] = str(value)
        self._touch(key)
        return value

    def _expire(self, key: str, seconds: int, nx: bool = False) -> bool:
        self._purge(key)
        if key not in self._data:
            return False
        if nx and key in self._expiry:
            return False
        self._expiry[key] = self.now + seconds
        self._touch(key)
        return True

    def _ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self._data:
            return -2
        deadline = self._expiry.get(key)
        if deadline is None:
            return -1
        return max(0, math.ceil(deadline - self.now))

    # -- async command surface -----------------------------------------

    async def get(self, key: str):
        await self._io()
        return self._get(key)

    async def set(self, key: str, value: Any, ex: int | None = None):
        await self._io()
        return self._set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        await self._io()
        return self._delete(*keys)

    async def incr(self, key: str) -> int:
        await self._io()
        return self._incr(key)

    async def expire(self, key: str, seconds: int, nx: bool = False) -> bool:
        await self._io()
        return self._expire(key, seconds, nx=nx)

    async def ttl(self, key: str) -> int:
        await self._io()
        return self._ttl(key)

    async def scan_iter(self, match: str | None = None, count: int | None = None):
        await self._io()
        for key in list(self._data):
            self._purge(key)
        for key in list(self._data):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    def pipeline(self, transaction: bool = True) -> "InMemoryPipeline":
        return InMemoryPipeline(self, transaction=transaction)

    async def aclose(self) -> None:
        return None


class InMemoryPipeline:
    _COMMANDS = {"get", "set", "delete", "incr", "expire", "ttl"}

    def __init__(self, redis: InMemoryRedis, *, transaction: bool) -> None:
        self._redis = redis
        self.transaction = transaction
        self._watched: dict[str, int] = {}
        self._explicit_multi = False
        self._queue: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "InMemoryPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.reset()

    async def reset(self) -> None:
        self._watched.clear()
        self._explicit_multi = False
        self._queue.clear()

    async def watch(self, *keys: str) -> None:
        await self._redis._io()
        for key in keys:
            self._watched[key] = self._redis._version(key)

    def multi(self) -> None:
        self._explicit_multi = True

    def __getattr__(self, name: str):
        if name not in self._COMMANDS:
            raise AttributeError(name)

        def command(*args, **kwargs):
            if self._watched and not self._explicit_multi:
                # Immediate mode between WATCH and MULTI.
                return getattr(self._redis, name)(*args, **kwargs)
            self._queue.append((name, args, kwargs))
            return self

        return command

    async def execute(self) -> list[Any]:
        await self._redis._io()
        try:
            for key, version in self._watched.items():
                if self._redis._version(key) != version:
                    raise WatchError("Watched variable changed.")
            return [
                getattr(self._redis, f"_{name}")(*args, **kwargs)
                for name, args, kwargs in self._queue
            ]
        finally:
            await self.reset()
