from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from typing import Any, cast

import httpx

from sendkindle.models.content import (
    SUMMARY_BULLET_COUNT,
    SUMMARY_BULLET_PLACEHOLDER,
    SUMMARY_DEFAULT_HEADING,
    SummaryResult,
)
from sendkindle.services.sanitizer import html_to_text

LOGGER = logging.getLogger("sendkindle.summarizer")

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "xiaomi/mimo-v2-flash:free"
DEFAULT_MAX_INPUT_CHARS = 12_000

SYSTEM_PROMPT = (
    "You summarize articles for Kindle. Use the same language as the input. "
    "Be specific and factual. Return ONLY valid JSON."
)
USER_PROMPT_TEMPLATE = (
    "Summarize the following content. Output JSON with keys: "
    "heading (localized title for the summary section), "
    "summary (2-3 sentences), bullets (array of exactly 3 bullet points), "
    "language (name of the language).\n\n"
    "Title: {title}\n"
    "Content: {content}"
)

_BULLET_MARKER_PATTERN = re.compile(r"^(?:[-*•‣◦]+|\d+[.)])[\s.)]*")


class SummaryRequestError(RuntimeError):
    pass


class SummaryParseError(ValueError):
    pass


class Summarizer:
    """Best-effort article summaries from an OpenAI-compatible chat-completion API."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.2,
        max_tokens: int = 500,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        timeout_seconds: float = 30.0,
        site_url: str | None = None,
        app_name: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = _normalize_optional_text(api_key)
        self._endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self._model = model
        self._temperature = temperature
        self._max_tokens = max(1, max_tokens)
        self._max_input_chars = max(1, max_input_chars)
        self._timeout_seconds = timeout_seconds
        self._site_url = _normalize_optional_text(site_url)
        self._app_name = _normalize_optional_text(app_name)
        self._client = client if client is not None else httpx.AsyncClient()
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return self._api_key is not None

    async def summarize(self, *, title: str, html: str) -> SummaryResult | None:
        """Summary of the article, or None when disabled, empty, or unparseable.

        Raises `SummaryRequestError` only for transport failures; callers treat that
        as "no summary" as well.
        """
        if self._api_key is None:
            return None
        text = html_to_text(html)
        if not text:
            return None

        content = await self._request_completion(
            title=title,
            prompt_text=text[: self._max_input_chars],
        )
        if content is None:
            LOGGER.warning("summary completion was empty model=%s", self._model)
            return None
        try:
            return parse_summary_payload(content)
        except SummaryParseError as exc:
            LOGGER.warning("summary response could not be parsed: %s", exc)
            return None

    async def _request_completion(self, *, title: str, prompt_text: str) -> str | None:
        payload = {
            "model": self._model,
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": USER_PROMPT_TEMPLATE.format(title=title, content=prompt_text),
                },
            ],
        }
        try:
            response = await self._client.post(
                self._endpoint,
                headers=self._build_headers(),
                json=payload,
                timeout=httpx.Timeout(self._timeout_seconds),
            )
        except httpx.HTTPError as exc:
            raise SummaryRequestError(
                f"Summary request failed: {type(exc).__name__}"
            ) from exc
        if not response.is_success:
            raise SummaryRequestError(f"Summary request failed: {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise SummaryRequestError("Summary response was not JSON") from exc
        return _extract_completion_text(data)

    def _build_headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if self._site_url is not None:
            headers["HTTP-Referer"] = self._site_url
        if self._app_name is not None:
            headers["X-Title"] = self._app_name
        return headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def extract_json_block(content: str) -> str | None:
    """First balanced `{...}` block in `content`, ignoring braces inside JSON strings."""
    start = content.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(content)):
        character = content[index]
        if in_string:
            if escaped:
                escaped = False
            elif character == "\\":
                escaped = True
            elif character == '"':
                in_string = False
            continue
        if character == '"':
            in_string = True
        elif character == "{":
            depth += 1
        elif character == "}":
            depth -= 1
            if depth == 0:
                return content[start : index + 1]
    return None


def parse_summary_payload(content: str) -> SummaryResult:
    block = extract_json_block(content)
    if block is None:
        raise SummaryParseError("no JSON object found in model output")
    try:
        parsed = json.loads(block)
    except json.JSONDecodeError as exc:
        raise SummaryParseError(f"invalid JSON in model output: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise SummaryParseError("model output JSON is not an object")
    return normalize_summary(cast(dict[str, Any], parsed))


def normalize_summary(payload: Mapping[str, Any]) -> SummaryResult:
    heading = _normalize_optional_text(payload.get("heading")) or SUMMARY_DEFAULT_HEADING
    summary = _normalize_optional_text(payload.get("summary")) or ""
    raw_bullets = payload.get("bullets")
    bullets: list[str] = []
    if isinstance(raw_bullets, list):
        for item in cast(list[object], raw_bullets):
            if not isinstance(item, str):
                continue
            cleaned = _BULLET_MARKER_PATTERN.sub("", item.strip()).strip()
            if cleaned:
                bullets.append(cleaned)
    bullets = bullets[:SUMMARY_BULLET_COUNT]
    while len(bullets) < SUMMARY_BULLET_COUNT:
        bullets.append(SUMMARY_BULLET_PLACEHOLDER)
    return SummaryResult(
        heading=heading,
        summary=summary,
        bullets=tuple(bullets),
        language=_normalize_optional_text(payload.get("language")),
    )


def _extract_completion_text(data: object) -> str | None:
    if not isinstance(data, dict):
        return None
    choices = cast(dict[str, object], data).get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = cast(list[object], choices)[0]
    if not isinstance(first, dict):
        return None
    message = cast(dict[str, object], first).get("message")
    if not isinstance(message, dict):
        return None
    return _normalize_optional_text(cast(dict[str, object], message).get("content"))


def _normalize_optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if not normalized:
        return None
    return normalized
