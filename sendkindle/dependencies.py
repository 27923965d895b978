from __future__ import annotations

from functools import lru_cache

from sendkindle.config import AppSettings, load_settings
from sendkindle.services.artifact_cache import ArtifactCache
from sendkindle.services.content_extractor import ContentExtractor
from sendkindle.services.conversion_service import ConversionService
from sendkindle.services.document_builder import DocumentBuilder
from sendkindle.services.fetcher import PageFetcher
from sendkindle.services.summarizer import Summarizer
from sendkindle.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_conversion_service() -> ConversionService:
    return build_conversion_service(get_settings(), telemetry=get_telemetry())


def build_conversion_service(
    settings: AppSettings,
    *,
    telemetry: TelemetryClient | None = None,
    with_summary: bool = True,
) -> ConversionService:
    fetcher = PageFetcher(
        user_agent=settings.user_agent,
        proxy_base_url=settings.proxy_base_url,
    )
    summarizer: Summarizer | None = None
    if with_summary and settings.summary_enabled:
        summarizer = Summarizer(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            model=settings.summary_model,
            temperature=settings.summary_temperature,
            max_tokens=settings.summary_max_tokens,
            max_input_chars=settings.summary_max_input_chars,
            timeout_seconds=settings.summary_timeout_seconds,
            site_url=settings.openrouter_site_url,
            app_name=settings.openrouter_app_name,
        )
    return ConversionService(
        extractor=ContentExtractor(
            fetcher=fetcher,
            direct_timeout_seconds=settings.direct_fetch_timeout_seconds,
            proxy_timeout_seconds=settings.proxy_fetch_timeout_seconds,
        ),
        summarizer=summarizer,
        document_builder=DocumentBuilder(),
        cache=ArtifactCache(ttl_seconds=settings.cache_ttl_seconds),
        telemetry=telemetry,
    )


def reset_cached_dependencies() -> None:
    get_conversion_service.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
