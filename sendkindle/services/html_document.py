from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Protocol

from bs4 import BeautifulSoup, Tag

HTML_PARSER = "html.parser"
META_KEY_ATTRIBUTES: tuple[str, ...] = ("property", "name", "itemprop")


class HtmlFragment(Protocol):
    """Detached, mutable subtree cloned out of a parsed page."""

    def remove_matching(self, selectors: Iterable[str]) -> int:
        ...

    def promote_lazy_images(self) -> int:
        ...

    def html(self) -> str:
        ...


class HtmlDocument(Protocol):
    """View over a parsed page, as consumed by the content extractor."""

    def title(self) -> str | None:
        ...

    def meta(self, *keys: str) -> str | None:
        ...

    def select_text(self, selector: str) -> str | None:
        ...

    def clone_first(self, selectors: Iterable[str]) -> HtmlFragment | None:
        ...

    def body_text(self) -> str:
        ...


DocumentParser = Callable[[str], HtmlDocument]


class SoupFragment:
    def __init__(self, soup: BeautifulSoup) -> None:
        self._soup = soup

    def remove_matching(self, selectors: Iterable[str]) -> int:
        removed = 0
        for selector in selectors:
            for node in self._soup.select(selector):
                if node.decomposed:
                    continue
                node.decompose()
                removed += 1
        return removed

    def promote_lazy_images(self) -> int:
        promoted = 0
        for image in self._soup.find_all("img"):
            lazy_source = _attribute_text(image, "data-src")
            if lazy_source is None or _attribute_text(image, "src") is not None:
                continue
            image["src"] = lazy_source
            promoted += 1
        return promoted

    def html(self) -> str:
        return str(self._soup)


class SoupDocument:
    def __init__(self, html: str) -> None:
        self._soup = BeautifulSoup(html, HTML_PARSER)

    def title(self) -> str | None:
        title_tag = self._soup.find("title")
        if title_tag is None:
            return None
        return _normalize_text(title_tag.get_text())

    def meta(self, *keys: str) -> str | None:
        """First non-empty `<meta>` content among `keys`, matched on name/property/itemprop."""
        wanted = [key.lower() for key in keys]
        values: dict[str, str] = {}
        for node in self._soup.find_all("meta"):
            content = _attribute_text(node, "content")
            if content is None:
                continue
            for attribute in META_KEY_ATTRIBUTES:
                key = _attribute_text(node, attribute)
                if key is not None:
                    values.setdefault(key.lower(), content)
        for key in wanted:
            if key in values:
                return values[key]
        return None

    def select_text(self, selector: str) -> str | None:
        node = self._soup.select_one(selector)
        if node is None:
            return None
        return _normalize_text(node.get_text(" ", strip=True))

    def clone_first(self, selectors: Iterable[str]) -> SoupFragment | None:
        for selector in selectors:
            node = self._soup.select_one(selector)
            if node is not None:
                # Work on a re-parsed copy so removals never touch the page tree.
                return SoupFragment(BeautifulSoup(str(node), HTML_PARSER))
        return None

    def body_text(self) -> str:
        root = self._soup.body or self._soup
        for node in root.find_all(["script", "style", "noscript", "template"]):
            node.decompose()
        return root.get_text("\n")


def parse_document(html: str) -> SoupDocument:
    return SoupDocument(html)


def _attribute_text(node: Tag, name: str) -> str | None:
    value = node.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return _normalize_text(value)


def _normalize_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = " ".join(value.split())
    if not normalized:
        return None
    return normalized
