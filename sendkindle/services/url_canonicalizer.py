from __future__ import annotations

from urllib.parse import SplitResult, unquote_plus, urlsplit, urlunsplit

TRACKING_PARAM_PREFIX = "utm_"
TRACKING_QUERY_PARAMS: frozenset[str] = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "utm_id",
        "ref",
        "source",
        "fbclid",
        "gclid",
        "igshid",
        "mc_cid",
        "mc_eid",
        "r",
        "triedredirect",
        "publication_id",
        "post_id",
        "isfreemail",
    }
)
SUPPORTED_SCHEMES: frozenset[str] = frozenset({"http", "https"})


class InvalidUrlError(ValueError):
    pass


def canonicalize_url(raw_url: str) -> str:
    """Return the cache key form of `raw_url`: tracking parameters and fragment removed.

    Kept query parameters retain their original encoding and order, so the result
    is stable under repeated canonicalization.
    """
    parsed = _parse_http_url(raw_url)
    kept = [segment for segment in parsed.query.split("&") if _keep_query_segment(segment)]
    path = parsed.path or "/"
    return urlunsplit((parsed.scheme, parsed.netloc, path, "&".join(kept), ""))


def validate_url(value: str) -> str | None:
    """User-facing validation message for `value`, or None when it is acceptable."""
    trimmed = value.strip()
    if not trimmed:
        return "Enter a URL to send."
    try:
        _parse_http_url(trimmed)
    except InvalidUrlError as exc:
        return str(exc)
    return None


def hostname_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def _parse_http_url(raw_url: str) -> SplitResult:
    normalized = raw_url.strip()
    if not normalized:
        raise InvalidUrlError("Provide a valid URL.")
    if any(ord(character) < 32 for character in normalized):
        raise InvalidUrlError("Provide a valid URL.")
    try:
        parsed = urlsplit(normalized)
        port = parsed.port
    except ValueError as exc:
        raise InvalidUrlError("Provide a valid URL.") from exc

    scheme = parsed.scheme.lower()
    if scheme not in SUPPORTED_SCHEMES:
        raise InvalidUrlError("URL must start with http or https.")
    host = (parsed.hostname or "").lower()
    if not host:
        raise InvalidUrlError("Provide a valid URL.")

    netloc = host
    if ":" in host:
        netloc = f"[{host}]"
    is_default_port = (scheme == "http" and port == 80) or (scheme == "https" and port == 443)
    if port is not None and not is_default_port:
        netloc = f"{netloc}:{port}"
    userinfo, has_userinfo, _ = parsed.netloc.rpartition("@")
    if has_userinfo:
        netloc = f"{userinfo}@{netloc}"
    return SplitResult(scheme, netloc, parsed.path, parsed.query, parsed.fragment)


def _keep_query_segment(segment: str) -> bool:
    if not segment:
        return False
    name = unquote_plus(segment.split("=", 1)[0]).strip().lower()
    if name.startswith(TRACKING_PARAM_PREFIX):
        return False
    return name not in TRACKING_QUERY_PARAMS
