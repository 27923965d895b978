from __future__ import annotations

from enum import StrEnum

from sendkindle.services.url_canonicalizer import hostname_of

NEWSLETTER_HOST_SUFFIX = ".substack.com"
NEWSLETTER_ROOT_HOST = "substack.com"
# Custom-domain publications on the same platform still load its CDN assets.
NEWSLETTER_HTML_MARKERS: tuple[str, ...] = (
    "substackcdn.com",
    'content="Substack"',
    "substack-post-media",
)
NEWSLETTER_PRELOAD_MARKER = "window._preloads"
NEWSLETTER_PLATFORM_NAME = "substack"
MICROBLOG_THREAD_HOSTS: frozenset[str] = frozenset(
    {
        "twitter.com",
        "www.twitter.com",
        "mobile.twitter.com",
        "x.com",
        "www.x.com",
    }
)


class SiteKind(StrEnum):
    GENERIC = "generic"
    NEWSLETTER = "newsletter"
    MICROBLOG_THREAD = "microblog_thread"


def classify_site(url: str, html: str | None = None) -> SiteKind:
    host = hostname_of(url)
    if _is_newsletter_host(host) or _has_newsletter_marker(html):
        return SiteKind.NEWSLETTER
    if host in MICROBLOG_THREAD_HOSTS:
        return SiteKind.MICROBLOG_THREAD
    return SiteKind.GENERIC


def is_thread_url(url: str) -> bool:
    return hostname_of(url) in MICROBLOG_THREAD_HOSTS


def _is_newsletter_host(host: str) -> bool:
    return host == NEWSLETTER_ROOT_HOST or host.endswith(NEWSLETTER_HOST_SUFFIX)


def _has_newsletter_marker(html: str | None) -> bool:
    if not html:
        return False
    if any(marker in html for marker in NEWSLETTER_HTML_MARKERS):
        return True
    # Post pages bootstrap from an inline state blob that names the platform.
    return NEWSLETTER_PRELOAD_MARKER in html and NEWSLETTER_PLATFORM_NAME in html.lower()
