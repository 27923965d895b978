from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from html import escape

from readability import Document
from readability.readability import Unparseable

from sendkindle.models.content import NormalizedContent
from sendkindle.services.fetcher import FetchError, PageFetcher
from sendkindle.services.html_document import DocumentParser, HtmlDocument, parse_document
from sendkindle.services.sanitizer import html_to_text, sanitize_html
from sendkindle.services.site_classifier import SiteKind, classify_site, is_thread_url
from sendkindle.services.url_canonicalizer import hostname_of

LOGGER = logging.getLogger("sendkindle.extractor")

PLACEHOLDER_HTML = "<p>Unable to extract content.</p>"

# First match wins; later selectors are never tried once one matches.
NEWSLETTER_CONTAINER_SELECTORS: tuple[str, ...] = (
    "div.available-content div.body.markup",
    "div.body.markup",
    "div.available-content",
    '[data-testid="post-content"]',
    "article",
)
NEWSLETTER_STRIP_SELECTORS: tuple[str, ...] = (
    '[class*="subscribe"]',
    '[class*="subscription"]',
    '[class*="paywall"]',
    '[class*="button-wrapper"]',
    '[class*="share"]',
    '[class*="cta"]',
    '[class*="footer"]',
    '[class*="post-ufi"]',
    '[data-component-name*="Subscribe"]',
    '[data-component-name*="Subscription"]',
)
NEWSLETTER_TITLE_SELECTORS: tuple[str, ...] = ("h1.post-title", "h1")
NEWSLETTER_BYLINE_SELECTORS: tuple[str, ...] = (
    '[class*="byline"] a',
    '[class*="byline"]',
    ".profile-hover-card-target a",
)
AUTHOR_META_KEYS: tuple[str, ...] = (
    "author",
    "article:author",
    "parsely-author",
    "dc.creator",
)
TITLE_META_KEYS: tuple[str, ...] = ("og:title", "twitter:title")

_PARAGRAPH_BREAK_PATTERN = re.compile(r"\n{2,}")

StrategyHandler = Callable[[str, str, HtmlDocument, str], Awaitable[NormalizedContent | None]]


def wrap_plain_text(text: str) -> str:
    """Escape plain text into `<p>` chunks split on blank lines."""
    trimmed = text.strip()
    if not trimmed:
        return PLACEHOLDER_HTML
    paragraphs = [
        f"<p>{escape(chunk)}</p>"
        for chunk in (
            " ".join(raw_chunk.split()) for raw_chunk in _PARAGRAPH_BREAK_PATTERN.split(trimmed)
        )
        if chunk
    ]
    return "".join(paragraphs) or PLACEHOLDER_HTML


class ContentExtractor:
    """Turns a URL into `NormalizedContent`, degrading instead of raising.

    The chain is: direct fetch, then a site-specific strategy picked by the
    classifier, then plain-text fallbacks (proxy text, raw page text, placeholder).
    """

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        direct_timeout_seconds: float = 20.0,
        proxy_timeout_seconds: float = 15.0,
        document_parser: DocumentParser = parse_document,
    ) -> None:
        self._fetcher = fetcher
        self._direct_timeout_seconds = direct_timeout_seconds
        self._proxy_timeout_seconds = proxy_timeout_seconds
        self._parse = document_parser
        self._strategies: dict[SiteKind, StrategyHandler] = {
            SiteKind.NEWSLETTER: self._extract_newsletter,
            SiteKind.MICROBLOG_THREAD: self._extract_thread,
            SiteKind.GENERIC: self._extract_generic,
        }

    async def extract(self, source_url: str) -> NormalizedContent:
        hostname = hostname_of(source_url) or source_url
        try:
            html = await self._fetcher.fetch(source_url, timeout_seconds=self._direct_timeout_seconds)
        except FetchError as exc:
            LOGGER.info("direct fetch failed, trying proxy url=%s error=%s", source_url, exc)
            return NormalizedContent(
                title=hostname,
                author=None,
                source_url=source_url,
                content_html=wrap_plain_text(await self._proxy_text(source_url) or ""),
            )

        document = self._parse(html)
        fallback_title = document.title() or hostname
        kind = classify_site(source_url, html)
        LOGGER.debug("site classified url=%s kind=%s", source_url, kind)

        for candidate in _strategy_order(kind, source_url):
            result = await self._strategies[candidate](source_url, html, document, fallback_title)
            if result is not None:
                return result
        # Unreachable: the generic strategy always produces content.
        return NormalizedContent(
            title=fallback_title,
            author=None,
            source_url=source_url,
            content_html=PLACEHOLDER_HTML,
        )

    async def _extract_newsletter(
        self,
        source_url: str,
        html: str,
        document: HtmlDocument,
        fallback_title: str,
    ) -> NormalizedContent | None:
        _ = html
        fragment = document.clone_first(NEWSLETTER_CONTAINER_SELECTORS)
        if fragment is None:
            LOGGER.info("newsletter container not found url=%s", source_url)
            return None
        fragment.remove_matching(NEWSLETTER_STRIP_SELECTORS)
        fragment.promote_lazy_images()

        title = (
            _first_selected_text(document, NEWSLETTER_TITLE_SELECTORS)
            or document.meta(*TITLE_META_KEYS)
            or fallback_title
        )
        author = document.meta(*AUTHOR_META_KEYS) or _first_selected_text(
            document, NEWSLETTER_BYLINE_SELECTORS
        )
        return NormalizedContent(
            title=title,
            author=author,
            source_url=source_url,
            content_html=_sanitized_or_placeholder(fragment.html(), source_url),
        )

    async def _extract_thread(
        self,
        source_url: str,
        html: str,
        document: HtmlDocument,
        fallback_title: str,
    ) -> NormalizedContent | None:
        _ = html
        text = await self._proxy_text(source_url)
        if text is None:
            text = document.body_text()
        return NormalizedContent(
            title=fallback_title,
            author=None,
            source_url=source_url,
            content_html=wrap_plain_text(text),
        )

    async def _extract_generic(
        self,
        source_url: str,
        html: str,
        document: HtmlDocument,
        fallback_title: str,
    ) -> NormalizedContent | None:
        readable = _readability_extract(html, source_url)
        if readable is not None:
            readable_title, readable_html = readable
            return NormalizedContent(
                title=readable_title or fallback_title,
                author=document.meta(*AUTHOR_META_KEYS),
                source_url=source_url,
                content_html=sanitize_html(readable_html, source_url),
            )
        LOGGER.info("readability produced no content, using page text url=%s", source_url)
        return NormalizedContent(
            title=fallback_title,
            author=None,
            source_url=source_url,
            content_html=wrap_plain_text(document.body_text()),
        )

    async def aclose(self) -> None:
        await self._fetcher.aclose()

    async def _proxy_text(self, source_url: str) -> str | None:
        try:
            return await self._fetcher.fetch_via_proxy(
                source_url,
                timeout_seconds=self._proxy_timeout_seconds,
            )
        except FetchError as exc:
            LOGGER.info("proxy fetch failed url=%s error=%s", source_url, exc)
            return None


def _strategy_order(kind: SiteKind, source_url: str) -> tuple[SiteKind, ...]:
    if kind is SiteKind.NEWSLETTER and is_thread_url(source_url):
        return (SiteKind.NEWSLETTER, SiteKind.MICROBLOG_THREAD)
    if kind is SiteKind.GENERIC:
        return (SiteKind.GENERIC,)
    return (kind, SiteKind.GENERIC)


def _readability_extract(html: str, source_url: str) -> tuple[str | None, str] | None:
    try:
        readable = Document(html, url=source_url)
        content_html = readable.summary(html_partial=True)
        title = readable.short_title()
    except (Unparseable, ValueError) as exc:
        LOGGER.info("readability failed url=%s error=%s", source_url, exc)
        return None
    if not content_html or not html_to_text(content_html):
        return None
    normalized_title = " ".join((title or "").split())
    # readability reports "[no-title]" when the page has no <title>.
    if not normalized_title or normalized_title == "[no-title]":
        return None, content_html
    return normalized_title, content_html


def _first_selected_text(document: HtmlDocument, selectors: tuple[str, ...]) -> str | None:
    for selector in selectors:
        text = document.select_text(selector)
        if text is not None:
            return text
    return None


def _sanitized_or_placeholder(html: str, source_url: str) -> str:
    cleaned = sanitize_html(html, source_url)
    if not html_to_text(cleaned) and "<img" not in cleaned:
        return PLACEHOLDER_HTML
    return cleaned
