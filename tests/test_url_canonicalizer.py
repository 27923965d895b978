from __future__ import annotations

import pytest

from sendkindle.services.url_canonicalizer import (
    InvalidUrlError,
    canonicalize_url,
    hostname_of,
    validate_url,
)


def test_canonicalize_strips_tracking_params_and_fragment() -> None:
    assert (
        canonicalize_url("https://example.com/a?utm_source=x&id=5#frag")
        == "https://example.com/a?id=5"
    )


def test_canonicalize_preserves_order_of_kept_params() -> None:
    canonical = canonicalize_url(
        "https://example.com/post?z=1&fbclid=abc&a=2&UTM_Campaign=spring&m=3&ref=hn"
    )
    assert canonical == "https://example.com/post?z=1&a=2&m=3"


def test_canonicalize_matches_deny_set_case_insensitively() -> None:
    canonical = canonicalize_url(
        "https://news.example.com/p/story?triedRedirect=true&isFreemail=1&post_id=9&keep=yes"
    )
    assert canonical == "https://news.example.com/p/story?keep=yes"


def test_canonicalize_drops_query_entirely_when_only_tracking() -> None:
    assert (
        canonicalize_url("https://example.com/a?utm_medium=email&gclid=1")
        == "https://example.com/a"
    )


def test_canonicalize_normalizes_scheme_host_and_empty_path() -> None:
    assert canonicalize_url("HTTPS://Example.COM") == "https://example.com/"
    assert canonicalize_url("http://example.com:80/x") == "http://example.com/x"
    assert canonicalize_url("https://example.com:8443/x") == "https://example.com:8443/x"


@pytest.mark.parametrize(
    "raw_url",
    [
        "https://example.com/a?utm_source=x&id=5#frag",
        "https://example.com/search?q=hello+world&page=2",
        "https://example.com/path%20with%20spaces?x=%2F&flag",
        "http://Example.com/?r=1&r2=2",
        "https://example.com",
    ],
)
def test_canonicalize_is_idempotent(raw_url: str) -> None:
    once = canonicalize_url(raw_url)
    assert canonicalize_url(once) == once


def test_canonicalize_keeps_param_encoding() -> None:
    canonical = canonicalize_url("https://example.com/s?q=caf%C3%A9+au+lait&utm_term=x")
    assert canonical == "https://example.com/s?q=caf%C3%A9+au+lait"


@pytest.mark.parametrize(
    "raw_url",
    ["", "   ", "not a url", "ftp://example.com/file", "javascript:alert(1)", "https://"],
)
def test_canonicalize_rejects_invalid_urls(raw_url: str) -> None:
    with pytest.raises(InvalidUrlError):
        canonicalize_url(raw_url)


def test_validate_url_messages() -> None:
    assert validate_url("") == "Enter a URL to send."
    assert validate_url("ftp://example.com") == "URL must start with http or https."
    assert validate_url("https://") == "Provide a valid URL."
    assert validate_url(" https://example.com/a ") is None


def test_hostname_of_lowercases_and_tolerates_garbage() -> None:
    assert hostname_of("https://WWW.Example.com/a") == "www.example.com"
    assert hostname_of("http://[::1") == ""
