from __future__ import annotations

import asyncio
import io
import re
import zipfile
from dataclasses import dataclass
from datetime import UTC, datetime
from html import escape
from uuid import uuid4

from sendkindle.models.content import NormalizedContent, SummaryResult

DEFAULT_TITLE = "Kindle Export"
DEFAULT_AUTHOR = "Unknown"
DEFAULT_SLUG = "kindle"
DEFAULT_LANGUAGE = "en"
PUBLISHER = "Send to Kindle"
DOCUMENT_EXTENSION = ".epub"
MEDIA_TYPE = "application/epub+zip"
CHAPTER_FILE = "chapter-1.xhtml"
STYLESHEET_FILE = "style.css"

BASE_CSS = """
body { font-family: "Georgia", serif; line-height: 1.6; }
h1 { font-size: 1.8em; margin-bottom: 0.4em; }
img { max-width: 100%; height: auto; }
a { color: #b94a1f; text-decoration: underline; }
blockquote { margin: 1em 1.2em; padding-left: 1em; border-left: 3px solid #ddd; }
.summary { margin: 1.2em 0; padding: 0.8em 1em; border: 1px solid #ddd; background: #f7f4ef; }
.summary h2 { font-size: 1.2em; margin-top: 0; }
.source { font-size: 0.9em; color: #555; }
""".lstrip()

_SLUG_SEPARATOR_PATTERN = re.compile(r"[^a-z0-9]+")
_LANGUAGE_CODE_PATTERN = re.compile(r"^[a-z]{2}(?:-[A-Za-z]{2})?$")
# Control characters XML 1.0 forbids; tab, LF and CR are allowed.
_INVALID_XML_CHARS_PATTERN = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f]")


class DocumentBuildError(RuntimeError):
    pass


@dataclass(frozen=True)
class BuiltDocument:
    buffer: bytes
    filename: str


class DocumentBuilder:
    """Packages normalized content (plus optional summary) into a one-chapter EPUB."""

    def __init__(self, *, publisher: str = PUBLISHER) -> None:
        self._publisher = publisher

    async def build(
        self,
        content: NormalizedContent,
        summary: SummaryResult | None = None,
    ) -> BuiltDocument:
        # Zip compression is CPU-bound; keep it off the event loop.
        return await asyncio.to_thread(self.build_sync, content, summary)

    def build_sync(
        self,
        content: NormalizedContent,
        summary: SummaryResult | None = None,
    ) -> BuiltDocument:
        title = strip_invalid_xml_chars(content.title).strip() or DEFAULT_TITLE
        filename = f"{slugify(title)}{DOCUMENT_EXTENSION}"
        try:
            buffer = _package_epub(
                title=title,
                author=strip_invalid_xml_chars(content.author or "").strip() or DEFAULT_AUTHOR,
                publisher=self._publisher,
                language=_resolve_language(summary),
                chapter_html=render_chapter_html(content, summary),
            )
        except (OSError, ValueError, zipfile.BadZipFile) as exc:
            raise DocumentBuildError(f"Document packaging failed: {exc}") from exc
        return BuiltDocument(buffer=buffer, filename=filename)


def strip_invalid_xml_chars(value: str) -> str:
    return _INVALID_XML_CHARS_PATTERN.sub("", value)


def slugify(value: str) -> str:
    cleaned = _SLUG_SEPARATOR_PATTERN.sub("-", value.lower()).strip("-")
    return cleaned or DEFAULT_SLUG


def render_chapter_html(content: NormalizedContent, summary: SummaryResult | None) -> str:
    title = escape(content.title or DEFAULT_TITLE)
    parts = [f"<article><h1>{title}</h1>"]
    if content.author:
        parts.append(f"<p><strong>{escape(content.author)}</strong></p>")
    source_url = escape(content.source_url)
    parts.append(f'<p class="source">Source: <a href="{source_url}">{source_url}</a></p>')
    if summary is not None:
        parts.append(_render_summary(summary))
    parts.append(content.content_html)
    parts.append("</article>")
    return strip_invalid_xml_chars("".join(parts))


def _render_summary(summary: SummaryResult) -> str:
    parts = [f'<section class="summary"><h2>{escape(summary.heading)}</h2>']
    if summary.summary:
        parts.append(f"<p>{escape(summary.summary)}</p>")
    bullets = [bullet for bullet in summary.bullets[:3] if bullet]
    if bullets:
        items = "".join(f"<li>{escape(bullet)}</li>" for bullet in bullets)
        parts.append(f"<ul>{items}</ul>")
    parts.append("</section>")
    return "".join(parts)


def _resolve_language(summary: SummaryResult | None) -> str:
    if summary is None or summary.language is None:
        return DEFAULT_LANGUAGE
    candidate = summary.language.strip()
    if _LANGUAGE_CODE_PATTERN.match(candidate):
        return candidate
    return DEFAULT_LANGUAGE


def _package_epub(
    *,
    title: str,
    author: str,
    publisher: str,
    language: str,
    chapter_html: str,
) -> bytes:
    identifier = f"urn:uuid:{uuid4()}"
    output = io.BytesIO()
    with zipfile.ZipFile(output, "w") as archive:
        # OCF: `mimetype` must be the first entry, stored uncompressed.
        archive.writestr(
            zipfile.ZipInfo("mimetype"),
            MEDIA_TYPE,
            compress_type=zipfile.ZIP_STORED,
        )
        archive.writestr("META-INF/container.xml", _CONTAINER_XML, zipfile.ZIP_DEFLATED)
        archive.writestr(
            "OEBPS/content.opf",
            _render_opf(
                identifier=identifier,
                title=title,
                author=author,
                publisher=publisher,
                language=language,
            ),
            zipfile.ZIP_DEFLATED,
        )
        archive.writestr(
            "OEBPS/toc.ncx",
            _render_ncx(identifier=identifier, title=title),
            zipfile.ZIP_DEFLATED,
        )
        archive.writestr(f"OEBPS/{STYLESHEET_FILE}", BASE_CSS, zipfile.ZIP_DEFLATED)
        archive.writestr(
            f"OEBPS/{CHAPTER_FILE}",
            _render_xhtml(title=title, language=language, body=chapter_html),
            zipfile.ZIP_DEFLATED,
        )
    return output.getvalue()


_CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def _render_opf(
    *,
    identifier: str,
    title: str,
    author: str,
    publisher: str,
    language: str,
) -> str:
    modified = datetime.now(UTC).strftime("%Y-%m-%d")
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="BookId" version="2.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:identifier id="BookId">{escape(identifier)}</dc:identifier>
    <dc:title>{escape(title)}</dc:title>
    <dc:creator opf:role="aut">{escape(author)}</dc:creator>
    <dc:publisher>{escape(publisher)}</dc:publisher>
    <dc:language>{escape(language)}</dc:language>
    <dc:date>{modified}</dc:date>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="css" href="{STYLESHEET_FILE}" media-type="text/css"/>
    <item id="chapter-1" href="{CHAPTER_FILE}" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="chapter-1"/>
  </spine>
</package>
"""


def _render_ncx(*, identifier: str, title: str) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="{escape(identifier)}"/>
    <meta name="dtb:depth" content="1"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle><text>{escape(title)}</text></docTitle>
  <navMap>
    <navPoint id="navpoint-1" playOrder="1">
      <navLabel><text>{escape(title)}</text></navLabel>
      <content src="{CHAPTER_FILE}"/>
    </navPoint>
  </navMap>
</ncx>
"""


def _render_xhtml(*, title: str, language: str, body: str) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN" "http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">
<html xmlns="http://www.w3.org/1999/xhtml" xml:lang="{escape(language)}">
<head>
  <title>{escape(title)}</title>
  <link rel="stylesheet" type="text/css" href="{STYLESHEET_FILE}"/>
</head>
<body>
{body}
</body>
</html>
"""
