from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from sendkindle.config import load_settings
from sendkindle.dependencies import build_conversion_service, get_settings


def test_load_settings_defaults(tmp_path: Path) -> None:
    settings = load_settings()

    assert settings.data_dir == (tmp_path / "runtime-data").resolve()
    assert settings.log_dir == settings.data_dir / "logs"
    assert settings.direct_fetch_timeout_seconds == 20.0
    assert settings.proxy_fetch_timeout_seconds == 15.0
    assert settings.proxy_base_url == "https://r.jina.ai"
    assert settings.cache_ttl_seconds == 3600.0
    assert settings.openrouter_api_key is None
    assert settings.summary_model == "xiaomi/mimo-v2-flash:free"
    assert settings.telemetry_sink == "none"


def test_load_settings_parses_env_overrides(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("SENDKINDLE_PROXY_BASE_URL", " https://proxy.example/ ")
    monkeypatch.setenv("SENDKINDLE_CACHE_TTL_SECONDS", "120")
    monkeypatch.setenv("SENDKINDLE_SUMMARY_ENABLED", "off")
    monkeypatch.setenv("SENDKINDLE_TELEMETRY_ENABLED", "not-a-bool")
    monkeypatch.setenv("SENDKINDLE_TELEMETRY_SINK", " LOG ")
    monkeypatch.setenv("SENDKINDLE_LOG_DIR", str(tmp_path / "elsewhere"))

    settings = load_settings()

    assert settings.proxy_base_url == "https://proxy.example"
    assert settings.cache_ttl_seconds == 120.0
    assert settings.summary_enabled is False
    assert settings.telemetry_enabled is True
    assert settings.telemetry_sink == "log"
    assert settings.log_dir == (tmp_path / "elsewhere").resolve()


def test_openrouter_credentials_accept_bare_names(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "  sk-bare  ")
    monkeypatch.setenv("OPENROUTER_APP_NAME", "Kindle Sender")
    monkeypatch.setenv("SENDKINDLE_OPENROUTER_SITE_URL", "   ")

    settings = load_settings()

    assert settings.openrouter_api_key == "sk-bare"
    assert settings.openrouter_app_name == "Kindle Sender"
    assert settings.openrouter_site_url is None


def test_invalid_telemetry_sink_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SENDKINDLE_TELEMETRY_SINK", "otlp")

    with pytest.raises(ValidationError):
        load_settings()


def test_build_conversion_service_honors_summary_switches(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    settings = get_settings()

    with_summary = build_conversion_service(settings)
    without_summary = build_conversion_service(settings, with_summary=False)

    assert with_summary._summarizer is not None  # pyright: ignore[reportPrivateUsage]
    assert with_summary._summarizer.enabled  # pyright: ignore[reportPrivateUsage]
    assert without_summary._summarizer is None  # pyright: ignore[reportPrivateUsage]
    assert with_summary.cache.ttl_seconds == settings.cache_ttl_seconds
