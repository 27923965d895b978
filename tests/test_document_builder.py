from __future__ import annotations

import io
import zipfile
from xml.etree import ElementTree

import pytest

from sendkindle.models.content import NormalizedContent, SummaryResult
from sendkindle.services import document_builder
from sendkindle.services.document_builder import (
    MEDIA_TYPE,
    DocumentBuilder,
    DocumentBuildError,
    render_chapter_html,
    slugify,
)
from sendkindle.services.sanitizer import sanitize_html


def _content(**overrides: object) -> NormalizedContent:
    values: dict[str, object] = {
        "title": "Deep Rivers & Shallow Seas",
        "author": "Ada <Lovelace>",
        "source_url": "https://example.com/a?x=1&y=2",
        "content_html": "<p>Body text.</p>",
    }
    values.update(overrides)
    return NormalizedContent(**values)  # type: ignore[arg-type]


def _summary(language: str | None = None) -> SummaryResult:
    return SummaryResult(
        heading="Key <ideas>",
        summary="Rivers shape land.",
        bullets=("Erosion", "Deposition", "Flooding"),
        language=language,
    )


def _open(buffer: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(buffer))


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Deep Rivers & Shallow Seas", "deep-rivers-shallow-seas"),
        ("  --Hello, World!--  ", "hello-world"),
        ("Ünïcödé only", "n-c-d-only"),
        ("!!!", "kindle"),
        ("", "kindle"),
    ],
)
def test_slugify(title: str, expected: str) -> None:
    assert slugify(title) == expected


def test_build_writes_epub_container_with_mimetype_first() -> None:
    built = DocumentBuilder().build_sync(_content())

    assert built.filename == "deep-rivers-shallow-seas.epub"
    with _open(built.buffer) as archive:
        infos = archive.infolist()
        assert infos[0].filename == "mimetype"
        assert infos[0].compress_type == zipfile.ZIP_STORED
        assert archive.read("mimetype").decode("ascii") == MEDIA_TYPE
        names = set(archive.namelist())
        assert {
            "META-INF/container.xml",
            "OEBPS/content.opf",
            "OEBPS/toc.ncx",
            "OEBPS/style.css",
            "OEBPS/chapter-1.xhtml",
        } <= names
        opf = archive.read("OEBPS/content.opf").decode("utf-8")

    assert "<dc:title>Deep Rivers &amp; Shallow Seas</dc:title>" in opf
    assert "Ada &lt;Lovelace&gt;" in opf
    assert "<dc:publisher>Send to Kindle</dc:publisher>" in opf
    assert "<dc:language>en</dc:language>" in opf


def test_build_defaults_blank_title_and_author() -> None:
    built = DocumentBuilder().build_sync(_content(title="   ", author=None))

    assert built.filename == "kindle-export.epub"
    with _open(built.buffer) as archive:
        opf = archive.read("OEBPS/content.opf").decode("utf-8")
    assert "<dc:title>Kindle Export</dc:title>" in opf
    assert 'opf:role="aut">Unknown</dc:creator>' in opf


def test_render_chapter_escapes_metadata_and_places_summary_first() -> None:
    chapter = render_chapter_html(_content(), _summary())

    assert chapter.startswith("<article><h1>Deep Rivers &amp; Shallow Seas</h1>")
    assert "<p><strong>Ada &lt;Lovelace&gt;</strong></p>" in chapter
    assert (
        '<p class="source">Source: <a href="https://example.com/a?x=1&amp;y=2">'
        "https://example.com/a?x=1&amp;y=2</a></p>"
    ) in chapter
    assert (
        '<section class="summary"><h2>Key &lt;ideas&gt;</h2><p>Rivers shape land.</p>'
        "<ul><li>Erosion</li><li>Deposition</li><li>Flooding</li></ul></section>"
    ) in chapter
    assert chapter.index("summary") < chapter.index("<p>Body text.</p>")
    assert chapter.endswith("<p>Body text.</p></article>")


def test_render_chapter_without_summary_or_author() -> None:
    chapter = render_chapter_html(_content(author=None), None)

    assert "<strong>" not in chapter
    assert "summary" not in chapter


def test_build_uses_language_code_from_summary() -> None:
    builder = DocumentBuilder()

    with _open(builder.build_sync(_content(), _summary("es")).buffer) as archive:
        assert "<dc:language>es</dc:language>" in archive.read("OEBPS/content.opf").decode()
    with _open(builder.build_sync(_content(), _summary("Spanish")).buffer) as archive:
        assert "<dc:language>en</dc:language>" in archive.read("OEBPS/content.opf").decode()


@pytest.mark.asyncio
async def test_async_build_matches_sync_output_shape() -> None:
    built = await DocumentBuilder().build(_content(), _summary())

    with _open(built.buffer) as archive:
        chapter = archive.read("OEBPS/chapter-1.xhtml").decode("utf-8")
    assert '<section class="summary">' in chapter
    assert "<p>Body text.</p>" in chapter


def test_packaging_failure_becomes_document_build_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _explode(**_: object) -> bytes:
        raise OSError("disk full")

    monkeypatch.setattr(document_builder, "_package_epub", _explode)

    with pytest.raises(DocumentBuildError, match="disk full"):
        DocumentBuilder().build_sync(_content())


def test_chapter_is_well_formed_xml_despite_control_characters() -> None:
    body = sanitize_html(
        "<p>bell\x08here&nbsp;and<br>there</p><img src='/a.png'><p>form\x0cfeed\x00</p>",
        "https://example.com/a?x=1&y=2",
    )
    content = _content(title="Ti\x07tle", author="Ada\x1b", content_html=body)

    built = DocumentBuilder().build_sync(content, _summary())

    with _open(built.buffer) as archive:
        chapter = archive.read("OEBPS/chapter-1.xhtml")
        opf = archive.read("OEBPS/content.opf")
    root = ElementTree.fromstring(chapter)
    ElementTree.fromstring(opf)
    text = "".join(root.itertext())
    assert "bellhere" in text
    assert "formfeed" in text
    assert built.filename == "title.epub"
