from __future__ import annotations

from dataclasses import dataclass

SUMMARY_DEFAULT_HEADING = "Summary"
SUMMARY_BULLET_PLACEHOLDER = "Key point missing."
SUMMARY_BULLET_COUNT = 3


@dataclass(frozen=True)
class NormalizedContent:
    title: str
    author: str | None
    source_url: str
    content_html: str


@dataclass(frozen=True)
class SummaryResult:
    heading: str
    summary: str
    bullets: tuple[str, ...]
    language: str | None = None

    def __post_init__(self) -> None:
        if len(self.bullets) != SUMMARY_BULLET_COUNT:
            raise ValueError(
                f"summary must carry exactly {SUMMARY_BULLET_COUNT} bullets, "
                f"got {len(self.bullets)}"
            )
