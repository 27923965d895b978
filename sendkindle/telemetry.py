"""Pipeline telemetry: named events carrying flat, redacted attributes.

Events go to a sink; the only real sink writes them through structlog to the
telemetry logger, which `logging_config` routes to its own file.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_EVENT_LOGGER = "sendkindle.telemetry"
REDACTED = "[redacted]"

# Attribute names containing any of these never carry their value.
_REDACTED_KEY_TOKENS: tuple[str, ...] = (
    "api_key",
    "authorization",
    "buffer",
    "content",
    "cookie",
    "email",
    "html",
    "secret",
    "token",
)
_MAX_TEXT_LENGTH = 160

AttributeValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, AttributeValue]) -> None:
        ...


class DiscardingTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, AttributeValue]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_EVENT_LOGGER)

    def emit(self, *, event_name: str, attributes: Mapping[str, AttributeValue]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **attributes)


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=DiscardingTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=_flatten_attributes(attributes))

    def emit_timed(self, event_name: str, *, started_at: float, **attributes: Any) -> None:
        """Emit `event_name` with `duration_ms` measured from a `perf_counter()` mark."""
        self.emit(event_name, duration_ms=elapsed_ms(started_at), **attributes)


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if enabled and sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())
    return TelemetryClient.disabled()


def elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)


def _flatten_attributes(attributes: Mapping[str, Any]) -> dict[str, AttributeValue]:
    flattened: dict[str, AttributeValue] = {}
    for raw_key, raw_value in attributes.items():
        key = raw_key.strip().lower()
        if not key:
            continue
        if any(token in key for token in _REDACTED_KEY_TOKENS):
            flattened[key] = REDACTED
        else:
            flattened[key] = _flatten_value(raw_value)
    return flattened


def _flatten_value(value: Any) -> AttributeValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, bytes | bytearray):
        return f"<{len(value)} bytes>"
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) > _MAX_TEXT_LENGTH:
            return f"{compact[:_MAX_TEXT_LENGTH]}..."
        return compact
    # Containers and exceptions are reduced to their type.
    return type(value).__name__
