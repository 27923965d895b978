from __future__ import annotations

from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup, Tag
from bs4.element import PreformattedString

from sendkindle.services.html_document import HTML_PARSER

ALLOWED_TAGS: frozenset[str] = frozenset(
    {
        "p",
        "br",
        "hr",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "ul",
        "ol",
        "li",
        "blockquote",
        "pre",
        "code",
        "strong",
        "em",
        "b",
        "i",
        "a",
        "img",
        "figure",
        "figcaption",
        "table",
        "thead",
        "tbody",
        "tr",
        "th",
        "td",
    }
)
ALLOWED_ATTRIBUTES: dict[str, frozenset[str]] = {
    "a": frozenset({"href", "rel", "target"}),
    "img": frozenset({"src", "alt"}),
}
# Dropped together with everything inside them.
NON_TEXT_TAGS: tuple[str, ...] = (
    "script",
    "style",
    "noscript",
    "iframe",
    "frame",
    "frameset",
    "object",
    "embed",
    "applet",
    "form",
    "input",
    "button",
    "select",
    "option",
    "textarea",
    "svg",
    "math",
    "template",
    "canvas",
    "video",
    "audio",
    "head",
    "title",
    "meta",
    "link",
    "base",
)
ALLOWED_URL_SCHEMES: frozenset[str] = frozenset({"http", "https"})
LINK_REL = "noopener noreferrer"
LINK_TARGET = "_blank"


def sanitize_html(html: str, base_url: str) -> str:
    """Allow-list clean `html`, resolving every link and image URL against `base_url`.

    Unknown tags are unwrapped so their text survives; `NON_TEXT_TAGS` disappear with
    their content. `href`/`src` end up absolute http(s) or empty, never relative.
    """
    soup = BeautifulSoup(html, HTML_PARSER)

    for node in soup.find_all(string=lambda value: isinstance(value, PreformattedString)):
        node.extract()

    for node in soup.find_all(NON_TEXT_TAGS):
        if node.decomposed:
            continue
        node.decompose()

    for node in soup.find_all(True):
        if node.name not in ALLOWED_TAGS:
            node.unwrap()
            continue
        _clean_attributes(node, base_url)

    return str(soup).strip()


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, HTML_PARSER)
    for node in soup.find_all(NON_TEXT_TAGS):
        if node.decomposed:
            continue
        node.decompose()
    return " ".join(soup.get_text(" ").split())


def absolutize_url(value: object, base_url: str) -> str | None:
    if not isinstance(value, str):
        return None
    candidate = value.strip()
    if not candidate:
        return None
    try:
        resolved = urljoin(base_url, candidate)
        parsed = urlsplit(resolved)
    except ValueError:
        return None
    if parsed.scheme.lower() not in ALLOWED_URL_SCHEMES or not parsed.netloc:
        return None
    return resolved


def _clean_attributes(node: Tag, base_url: str) -> None:
    allowed = ALLOWED_ATTRIBUTES.get(node.name, frozenset())
    original = dict(node.attrs)
    node.attrs = {name: value for name, value in original.items() if name in allowed}

    if node.name == "a":
        node.attrs = {
            "href": absolutize_url(original.get("href"), base_url) or "",
            "rel": LINK_REL,
            "target": LINK_TARGET,
        }
    elif node.name == "img":
        alt = original.get("alt")
        node.attrs = {
            "src": absolutize_url(original.get("src"), base_url) or "",
            "alt": alt if isinstance(alt, str) else "",
        }
