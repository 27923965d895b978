from __future__ import annotations

import asyncio

import pytest

from sendkindle.models.content import NormalizedContent
from sendkindle.services.artifact_cache import ArtifactBuild, ArtifactCache

KEY = "https://example.com/a"


class _FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _CountingBuilder:
    def __init__(self, *, delay: float = 0.0, fail: bool = False) -> None:
        self.calls = 0
        self.delay = delay
        self.fail = fail

    async def __call__(self) -> ArtifactBuild:
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("extraction exploded")
        return ArtifactBuild(
            normalized=NormalizedContent(
                title=f"Build {self.calls}",
                author=None,
                source_url=KEY,
                content_html="<p>x</p>",
            ),
            summary=None,
            filename="build.epub",
            buffer=f"epub-{self.calls}".encode(),
        )


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_build() -> None:
    cache = ArtifactCache(ttl_seconds=60)
    builder = _CountingBuilder(delay=0.01)

    results = await asyncio.gather(*(cache.get_or_build(KEY, builder) for _ in range(10)))

    assert builder.calls == 1
    assert all(result is results[0] for result in results)
    assert results[0].buffer == b"epub-1"


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_rebuilding() -> None:
    clock = _FakeClock()
    cache = ArtifactCache(ttl_seconds=60, clock=clock)
    builder = _CountingBuilder()

    first = await cache.get_or_build(KEY, builder)
    clock.now += 59
    second = await cache.get_or_build(KEY, builder)

    assert builder.calls == 1
    assert second is first
    assert first.created_at == 1_000.0
    assert first.expires_at == 1_060.0
    assert cache.peek(KEY) is first


@pytest.mark.asyncio
async def test_expired_entry_is_rebuilt_once_for_concurrent_callers() -> None:
    clock = _FakeClock()
    cache = ArtifactCache(ttl_seconds=60, clock=clock)
    builder = _CountingBuilder(delay=0.01)

    first = await cache.get_or_build(KEY, builder)
    clock.now += 60
    assert cache.peek(KEY) is None

    refreshed = await asyncio.gather(*(cache.get_or_build(KEY, builder) for _ in range(5)))

    assert builder.calls == 2
    assert all(result is refreshed[0] for result in refreshed)
    assert refreshed[0] is not first
    assert refreshed[0].buffer == b"epub-2"


@pytest.mark.asyncio
async def test_failed_build_propagates_to_every_waiter_and_is_not_cached() -> None:
    cache = ArtifactCache(ttl_seconds=60)
    failing = _CountingBuilder(delay=0.01, fail=True)

    outcomes = await asyncio.gather(
        *(cache.get_or_build(KEY, failing) for _ in range(3)),
        return_exceptions=True,
    )

    assert failing.calls == 1
    assert all(isinstance(outcome, RuntimeError) for outcome in outcomes)
    assert cache.peek(KEY) is None

    recovering = _CountingBuilder()
    artifact = await cache.get_or_build(KEY, recovering)
    assert recovering.calls == 1
    assert artifact.buffer == b"epub-1"


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_build() -> None:
    cache = ArtifactCache(ttl_seconds=60)
    builder = _CountingBuilder(delay=0.05)

    impatient = asyncio.create_task(cache.get_or_build(KEY, builder))
    patient = asyncio.create_task(cache.get_or_build(KEY, builder))
    await asyncio.sleep(0.01)
    impatient.cancel()

    artifact = await patient

    assert builder.calls == 1
    assert artifact.buffer == b"epub-1"
    assert impatient.cancelled()


@pytest.mark.asyncio
async def test_distinct_keys_build_independently() -> None:
    cache = ArtifactCache(ttl_seconds=60)
    builder = _CountingBuilder()

    await cache.get_or_build("https://example.com/a", builder)
    await cache.get_or_build("https://example.com/b", builder)

    assert builder.calls == 2
    cache.clear()
    assert cache.peek("https://example.com/a") is None
