from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from threading import Lock
from time import time

from sendkindle.models.content import NormalizedContent, SummaryResult

LOGGER = logging.getLogger("sendkindle.cache")

DEFAULT_TTL_SECONDS = 60 * 60


@dataclass(frozen=True)
class ArtifactBuild:
    normalized: NormalizedContent
    summary: SummaryResult | None
    filename: str
    buffer: bytes


@dataclass(frozen=True)
class CachedArtifact:
    key: str
    normalized: NormalizedContent
    summary: SummaryResult | None
    filename: str
    buffer: bytes
    created_at: float
    expires_at: float


@dataclass(frozen=True)
class _InFlightBuild:
    task: asyncio.Task[CachedArtifact]
    expires_at: float


ArtifactBuilder = Callable[[], Awaitable[ArtifactBuild]]


class ArtifactCache:
    """In-memory artifact cache with at most one concurrent build per key.

    The fresh-entry check, the in-flight check and the registration of a new build
    happen under one lock with no `await` in between, so two callers racing on a
    cold key always end up sharing the same task.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = Lock()
        self._artifacts: dict[str, CachedArtifact] = {}
        self._in_flight: dict[str, _InFlightBuild] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    async def get_or_build(self, key: str, builder: ArtifactBuilder) -> CachedArtifact:
        with self._lock:
            now = self._clock()
            existing = self._artifacts.get(key)
            if existing is not None and now < existing.expires_at:
                return existing

            in_flight = self._in_flight.get(key)
            if in_flight is None or now >= in_flight.expires_at:
                task = asyncio.get_running_loop().create_task(
                    self._run_build(key, builder),
                    name=f"artifact-build:{key}",
                )
                in_flight = _InFlightBuild(task=task, expires_at=now + self._ttl_seconds)
                self._in_flight[key] = in_flight
                LOGGER.debug("artifact build started key=%s", key)
            else:
                LOGGER.debug("joining in-flight artifact build key=%s", key)

        # Shielded: a disconnecting caller must not cancel a build others await.
        return await asyncio.shield(in_flight.task)

    def peek(self, key: str) -> CachedArtifact | None:
        with self._lock:
            existing = self._artifacts.get(key)
            if existing is None or self._clock() >= existing.expires_at:
                return None
            return existing

    def clear(self) -> None:
        with self._lock:
            self._artifacts.clear()
            self._in_flight.clear()

    async def _run_build(self, key: str, builder: ArtifactBuilder) -> CachedArtifact:
        try:
            built = await builder()
        except BaseException:
            self._release(key)
            raise

        created_at = self._clock()
        artifact = CachedArtifact(
            key=key,
            normalized=built.normalized,
            summary=built.summary,
            filename=built.filename,
            buffer=built.buffer,
            created_at=created_at,
            expires_at=created_at + self._ttl_seconds,
        )
        with self._lock:
            self._artifacts[key] = artifact
        self._release(key)
        LOGGER.debug("artifact stored key=%s bytes=%s", key, len(artifact.buffer))
        return artifact

    def _release(self, key: str) -> None:
        current_task = asyncio.current_task()
        with self._lock:
            entry = self._in_flight.get(key)
            # A stale entry may already have been replaced by a newer build.
            if entry is not None and entry.task is current_task:
                del self._in_flight[key]
