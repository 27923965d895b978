from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sendkindle.services.url_canonicalizer import validate_url


class ProcessRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str = Field(max_length=2048)

    @field_validator("url", mode="before")
    @classmethod
    def _validate_url(cls, value: object) -> str:
        if not isinstance(value, str):
            raise ValueError("Enter a URL to send.")
        normalized = value.strip()
        message = validate_url(normalized)
        if message is not None:
            raise ValueError(message)
        return normalized


class SummaryPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    heading: str
    summary: str
    bullets: list[str]
    language: str | None = None


class ProcessResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool = True
    message: str
    job_id: str
    title: str
    author: str | None
    source_url: str
    filename: str
    cache_hit: bool
    summary_used: bool
    summary: SummaryPayload | None = None
    epub_base64: str


class ProcessErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ok: bool = False
    message: str
