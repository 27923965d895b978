from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from sendkindle.models.content import SummaryResult
from sendkindle.services.artifact_cache import ArtifactBuild, ArtifactCache, CachedArtifact
from sendkindle.services.content_extractor import ContentExtractor
from sendkindle.services.document_builder import DocumentBuilder
from sendkindle.services.summarizer import Summarizer, SummaryRequestError
from sendkindle.services.url_canonicalizer import canonicalize_url
from sendkindle.telemetry import TelemetryClient

LOGGER = logging.getLogger("sendkindle.conversion")


class ConversionError(RuntimeError):
    pass


@dataclass(frozen=True)
class ConversionResult:
    job_id: str
    artifact: CachedArtifact
    cache_hit: bool

    @property
    def summary_used(self) -> bool:
        return self.artifact.summary is not None


class ConversionService:
    """URL in, cached EPUB artifact out.

    Owns the pipeline order (canonicalize, cache lookup, extract, summarize, build);
    the artifact cache decides whether a build actually runs.
    """

    def __init__(
        self,
        *,
        extractor: ContentExtractor,
        summarizer: Summarizer | None,
        document_builder: DocumentBuilder,
        cache: ArtifactCache,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._extractor = extractor
        self._summarizer = summarizer
        self._document_builder = document_builder
        self._cache = cache
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    @property
    def cache(self) -> ArtifactCache:
        return self._cache

    async def aclose(self) -> None:
        await self._extractor.aclose()
        if self._summarizer is not None:
            await self._summarizer.aclose()

    async def convert(self, url: str) -> ConversionResult:
        """Raises `InvalidUrlError` for bad input and `ConversionError` for pipeline failures.

        Document build errors and anything else escaping the builder are reported as a
        generic processing failure with the original message preserved.
        """
        canonical_url = canonicalize_url(url)
        job_id = str(uuid4())
        context_tokens = bind_contextvars(conversion_job_id=job_id)
        started_at = perf_counter()
        built_here = False

        async def _build() -> ArtifactBuild:
            nonlocal built_here
            built_here = True
            return await self._build_artifact(job_id=job_id, canonical_url=canonical_url)

        self._telemetry.emit("conversion.job.start", job_id=job_id, url=canonical_url)
        try:
            artifact = await self._cache.get_or_build(canonical_url, _build)
        except Exception as exc:
            self._report_failure(job_id=job_id, started_at=started_at, exc=exc)
            raise ConversionError(str(exc) or "Processing failed.") from exc
        finally:
            reset_contextvars(**context_tokens)

        self._telemetry.emit_timed(
            "conversion.job.done",
            started_at=started_at,
            job_id=job_id,
            cache_hit=not built_here,
        )
        return ConversionResult(job_id=job_id, artifact=artifact, cache_hit=not built_here)

    async def _build_artifact(self, *, job_id: str, canonical_url: str) -> ArtifactBuild:
        extract_started_at = perf_counter()
        normalized = await self._extractor.extract(canonical_url)
        self._telemetry.emit_timed(
            "conversion.extract.done",
            started_at=extract_started_at,
            job_id=job_id,
        )

        summary_started_at = perf_counter()
        summary = await self._summarize(
            job_id=job_id,
            title=normalized.title,
            html=normalized.content_html,
        )
        self._telemetry.emit_timed(
            "conversion.summary.done",
            started_at=summary_started_at,
            job_id=job_id,
            used=summary is not None,
        )

        document_started_at = perf_counter()
        document = await self._document_builder.build(normalized, summary)
        self._telemetry.emit_timed(
            "conversion.document.done",
            started_at=document_started_at,
            job_id=job_id,
            size_bytes=len(document.buffer),
        )
        return ArtifactBuild(
            normalized=normalized,
            summary=summary,
            filename=document.filename,
            buffer=document.buffer,
        )

    async def _summarize(self, *, job_id: str, title: str, html: str) -> SummaryResult | None:
        if self._summarizer is None:
            return None
        try:
            return await self._summarizer.summarize(title=title, html=html)
        except SummaryRequestError as exc:
            LOGGER.warning("summary request failed job_id=%s error=%s", job_id, exc)
            self._telemetry.emit("conversion.summary.error", job_id=job_id, message=str(exc))
            return None

    def _report_failure(self, *, job_id: str, started_at: float, exc: Exception) -> None:
        LOGGER.error("conversion failed job_id=%s error=%s", job_id, exc, exc_info=exc)
        self._telemetry.emit_timed(
            "conversion.job.error",
            started_at=started_at,
            job_id=job_id,
            error_type=type(exc).__name__,
            message=str(exc),
        )
