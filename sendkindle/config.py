from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".sendkindle"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36 SendToKindle/0.1"
)
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (("log_dir", Path("logs")),)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = (
    "telemetry_enabled",
    "summary_enabled",
)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `SENDKINDLE_*` environment variables (or `.env`).
    The summarizer credentials additionally accept the bare `OPENROUTER_*` names.
    """

    model_config = SettingsConfigDict(
        env_prefix="SENDKINDLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Core paths.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for logs and scratch files.",
    )

    # Fetching.
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="Browser-like User-Agent sent on direct and proxy fetches.",
    )
    direct_fetch_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Hard timeout for fetching the origin page directly.",
    )
    proxy_fetch_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Hard timeout for fetching page text through the extraction proxy.",
    )
    proxy_base_url: str = Field(
        default="https://r.jina.ai",
        description="Base URL of the text-extraction proxy used as fetch fallback.",
    )

    # Artifact cache.
    cache_ttl_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Lifetime of a built document before the next request rebuilds it.",
    )

    # Summarizer.
    summary_enabled: bool = Field(
        default=True,
        description="Attach an LLM summary when an API key is configured.",
    )
    openrouter_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SENDKINDLE_OPENROUTER_API_KEY", "OPENROUTER_API_KEY"),
        description="Bearer token for the chat-completion service. Absent disables summaries.",
    )
    openrouter_site_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SENDKINDLE_OPENROUTER_SITE_URL", "OPENROUTER_SITE_URL"),
        description="Optional attribution URL sent as `HTTP-Referer`.",
    )
    openrouter_app_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SENDKINDLE_OPENROUTER_APP_NAME", "OPENROUTER_APP_NAME"),
        description="Optional attribution name sent as `X-Title`.",
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Chat-completion API base URL.",
    )
    summary_model: str = Field(
        default="xiaomi/mimo-v2-flash:free",
        description="Model identifier used for summaries.",
    )
    summary_temperature: float = Field(
        default=0.2,
        ge=0,
        le=2,
        description="Sampling temperature for summaries.",
    )
    summary_max_tokens: int = Field(
        default=500,
        ge=1,
        description="Completion token budget for summaries.",
    )
    summary_max_input_chars: int = Field(
        default=12_000,
        ge=1,
        description="Character budget of article text sent to the model.",
    )
    summary_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for the chat-completion request.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description="Directory for log files. Defaults to `${SENDKINDLE_DATA_DIR}/logs`.",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("SENDKINDLE_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("SENDKINDLE_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("proxy_base_url", "openrouter_base_url", mode="before")
    @classmethod
    def _normalize_base_urls(cls, value: Any, info: ValidationInfo) -> str:
        label = f"SENDKINDLE_{(info.field_name or '').upper()}"
        if not isinstance(value, str):
            raise ValueError(f"{label} must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError(f"{label} must not be empty.")
        return normalized

    @field_validator("user_agent", "summary_model", mode="before")
    @classmethod
    def _normalize_required_text(cls, value: Any, info: ValidationInfo) -> str:
        normalized = _normalize_optional_text(value)
        if normalized is None:
            raise ValueError(f"SENDKINDLE_{(info.field_name or '').upper()} must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator(
        "openrouter_api_key",
        "openrouter_site_url",
        "openrouter_app_name",
        mode="before",
    )
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings() -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    return _resolve_path_fields(settings)
