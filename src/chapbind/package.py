from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass, field
from html import escape
from pathlib import PurePosixPath
from typing import Iterable

from .config import BookMetadata
from .ids import IdRegistry, normalize_identifier
from .images import ImageRecord, is_remote_source
from .index import Chapter
from .links import DOCUMENT_EXT
from .render import DEFAULT_STYLESHEET_HREF, render_chapter, xhtml_document
from .styles import STYLE_CSS, STYLESHEET_NAME

MIMETYPE = "application/epub+zip"
CONTAINER_PATH = "META-INF/container.xml"
CONTENT_DIR = "OEBPS"
OPF_NAME = "content.opf"
NCX_NAME = "toc.ncx"
TEXT_DIR = "text"
TOC_TITLE = "Table of Contents"
COVER_TITLE = "Cover"
# Fixed entry timestamps keep the archive byte-identical across runs.
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)

OPF_NS = "http://www.idpf.org/2007/opf"
DC_NS = "http://purl.org/dc/elements/1.1/"
NCX_NS = "http://www.daisy.org/z3986/2005/ncx/"

STYLESHEET_ID = "style"
COVER_IMAGE_ID = "cover-image"
COVER_PAGE_ID = "cover"
TOC_ID = "toc"
NCX_ID = "ncx"

CONTAINER_XML = f"""<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="{CONTENT_DIR}/{OPF_NAME}" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


class PackageError(RuntimeError):
    """Raised when the assembled package would violate EPUB structure."""


@dataclass
class ManifestEntry:
    item_id: str
    href: str
    media_type: str
    properties: str | None = None

    @property
    def path(self) -> str:
        return f"{CONTENT_DIR}/{self.href}"


@dataclass
class SpineEntry:
    idref: str
    linear: bool = True


@dataclass
class CoverImage:
    data: bytes
    media_type: str
    extension: str

    @property
    def href(self) -> str:
        return f"images/cover{self.extension}"


@dataclass
class EpubPackage:
    manifest: list[ManifestEntry] = field(default_factory=list)
    spine: list[SpineEntry] = field(default_factory=list)
    files: dict[str, bytes] = field(default_factory=dict)

    def entry(self, item_id: str) -> ManifestEntry | None:
        for item in self.manifest:
            if item.item_id == item_id:
                return item
        return None

    def text(self, path: str) -> str:
        return self.files[path].decode("utf-8")


def sniff_image_type(data: bytes) -> tuple[str, str]:
    """Return ``(media_type, extension)`` from the leading bytes of an image."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png", ".png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg", ".jpg"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif", ".gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp", ".webp"
    head = data[:256].lstrip().lower()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return "image/svg+xml", ".svg"
    return "image/jpeg", ".jpg"


def chapter_href(chapter: Chapter, document_ext: str = DOCUMENT_EXT) -> str:
    return f"{chapter.clean_id}.{document_ext}"


def _has_remote_images(chapter: Chapter) -> bool:
    return any(is_remote_source(img.get("src")) for img in chapter.content.find_all("img"))


def build_toc_document(
    chapters: Iterable[Chapter],
    *,
    document_ext: str = DOCUMENT_EXT,
    language: str = "en",
) -> str:
    items = "\n".join(
        f'      <li><a href="{escape(chapter_href(chapter, document_ext), quote=True)}">'
        f"{escape(chapter.toc_title, quote=False)}</a></li>"
        for chapter in chapters
    )
    body = (
        '<div class="table-of-contents">\n'
        f"  <h1>{TOC_TITLE}</h1>\n"
        '  <nav epub:type="toc" id="toc">\n'
        "    <ol>\n"
        f"{items}\n"
        "    </ol>\n"
        "  </nav>\n"
        "</div>"
    )
    return xhtml_document(TOC_TITLE, body, stylesheet_href=DEFAULT_STYLESHEET_HREF, language=language)


def build_cover_page(cover: CoverImage, *, language: str = "en") -> str:
    body = (
        '<div class="cover">\n'
        f'  <img src="../{escape(cover.href, quote=True)}" alt="{COVER_TITLE}"/>\n'
        "</div>"
    )
    return xhtml_document(COVER_TITLE, body, stylesheet_href=DEFAULT_STYLESHEET_HREF, language=language)


def build_opf(
    manifest: list[ManifestEntry],
    spine: list[SpineEntry],
    metadata: BookMetadata,
    *,
    modified: str,
    cover_id: str | None = None,
) -> str:
    language = escape(metadata.language, quote=True)
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<package xmlns="{OPF_NS}" version="3.0" unique-identifier="book-id" xml:lang="{language}">',
        f'  <metadata xmlns:dc="{DC_NS}">',
        f'    <dc:identifier id="book-id">{escape(metadata.book_identifier, quote=False)}</dc:identifier>',
        f"    <dc:title>{escape(metadata.title, quote=False)}</dc:title>",
        f"    <dc:language>{escape(metadata.language, quote=False)}</dc:language>",
    ]
    if metadata.creator:
        lines.append(f"    <dc:creator>{escape(metadata.creator, quote=False)}</dc:creator>")
    if metadata.publisher:
        lines.append(f"    <dc:publisher>{escape(metadata.publisher, quote=False)}</dc:publisher>")
    lines.append(f'    <meta property="dcterms:modified">{escape(modified, quote=False)}</meta>')
    if cover_id:
        lines.append(f'    <meta name="cover" content="{escape(cover_id, quote=True)}"/>')
    lines.append("  </metadata>")
    lines.append("  <manifest>")
    for item in manifest:
        properties = f' properties="{escape(item.properties, quote=True)}"' if item.properties else ""
        lines.append(
            f'    <item id="{escape(item.item_id, quote=True)}" href="{escape(item.href, quote=True)}"'
            f' media-type="{escape(item.media_type, quote=True)}"{properties}/>'
        )
    lines.append("  </manifest>")
    lines.append(f'  <spine toc="{NCX_ID}">')
    for ref in spine:
        linear = "" if ref.linear else ' linear="no"'
        lines.append(f'    <itemref idref="{escape(ref.idref, quote=True)}"{linear}/>')
    lines.append("  </spine>")
    lines.append("</package>")
    return "\n".join(lines) + "\n"


def build_ncx(
    chapters: Iterable[Chapter],
    metadata: BookMetadata,
    *,
    document_ext: str = DOCUMENT_EXT,
) -> str:
    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<ncx xmlns="{NCX_NS}" version="2005-1">',
        "  <head>",
        f'    <meta name="dtb:uid" content="{escape(metadata.book_identifier, quote=True)}"/>',
        '    <meta name="dtb:depth" content="1"/>',
        '    <meta name="dtb:totalPageCount" content="0"/>',
        '    <meta name="dtb:maxPageNumber" content="0"/>',
        "  </head>",
        f"  <docTitle><text>{escape(metadata.title, quote=False)}</text></docTitle>",
        "  <navMap>",
    ]
    for order, chapter in enumerate(chapters, start=1):
        src = f"{TEXT_DIR}/{chapter_href(chapter, document_ext)}"
        lines.extend(
            [
                f'    <navPoint id="navpoint-{order}" playOrder="{order}">',
                f"      <navLabel><text>{escape(chapter.toc_title, quote=False)}</text></navLabel>",
                f'      <content src="{escape(src, quote=True)}"/>',
                "    </navPoint>",
            ]
        )
    lines.append("  </navMap>")
    lines.append("</ncx>")
    return "\n".join(lines) + "\n"


class _PackageBuilder:
    def __init__(self) -> None:
        self.package = EpubPackage()
        self._item_ids = IdRegistry([STYLESHEET_ID, COVER_IMAGE_ID, COVER_PAGE_ID, TOC_ID, NCX_ID])

    def item_id(self, base: str) -> str:
        return self._item_ids.claim(base)

    def add(
        self,
        item_id: str,
        href: str,
        media_type: str,
        data: bytes | str,
        *,
        properties: str | None = None,
        spine: bool = False,
    ) -> ManifestEntry:
        entry = ManifestEntry(item_id=item_id, href=href, media_type=media_type, properties=properties)
        if entry.path in self.package.files:
            raise PackageError(f"Duplicate package path: {entry.path}")
        payload = data.encode("utf-8") if isinstance(data, str) else data
        self.package.manifest.append(entry)
        self.package.files[entry.path] = payload
        if spine:
            self.package.spine.append(SpineEntry(idref=item_id))
        return entry


def assemble_package(
    chapters: list[Chapter],
    *,
    rendered: dict[str, str] | None = None,
    images: Iterable[ImageRecord] = (),
    cover_image: bytes | None = None,
    metadata: BookMetadata | None = None,
    stylesheet: str = STYLE_CSS,
    document_ext: str = DOCUMENT_EXT,
) -> EpubPackage:
    """
    Lay out every package document and build the manifest and spine.

    ``rendered`` maps a chapter's clean id to its XHTML; chapters missing from
    it are rendered here. Spine order is cover, table of contents, then the
    chapters in document order.
    """
    metadata = metadata or BookMetadata()
    rendered = rendered or {}
    builder = _PackageBuilder()
    builder.package.files[CONTAINER_PATH] = CONTAINER_XML.encode("utf-8")
    opf_path = f"{CONTENT_DIR}/{OPF_NAME}"
    # Reserve the slot so the OPF is written right after the container.
    builder.package.files[opf_path] = b""

    builder.add(STYLESHEET_ID, f"styles/{STYLESHEET_NAME}", "text/css", stylesheet)

    cover_id: str | None = None
    if cover_image:
        media_type, extension = sniff_image_type(cover_image)
        cover = CoverImage(data=cover_image, media_type=media_type, extension=extension)
        builder.add(COVER_IMAGE_ID, cover.href, cover.media_type, cover.data, properties="cover-image")
        builder.add(
            COVER_PAGE_ID,
            f"{TEXT_DIR}/cover.xhtml",
            "application/xhtml+xml",
            build_cover_page(cover, language=metadata.language),
            spine=True,
        )
        cover_id = COVER_IMAGE_ID

    builder.add(
        TOC_ID,
        f"{TEXT_DIR}/toc.xhtml",
        "application/xhtml+xml",
        build_toc_document(chapters, document_ext=document_ext, language=metadata.language),
        properties="nav",
        spine=True,
    )

    for chapter in chapters:
        xhtml = rendered.get(chapter.clean_id)
        if xhtml is None:
            xhtml = render_chapter(chapter, language=metadata.language)
        builder.add(
            builder.item_id(chapter.clean_id),
            f"{TEXT_DIR}/{chapter_href(chapter, document_ext)}",
            "application/xhtml+xml",
            xhtml,
            properties="remote-resources" if _has_remote_images(chapter) else None,
            spine=True,
        )

    for record in images:
        stem = PurePosixPath(record.filename).stem
        builder.add(
            builder.item_id(normalize_identifier(stem, prefix="image-")),
            record.local_path,
            record.media_type,
            record.data,
        )

    builder.add(
        NCX_ID,
        NCX_NAME,
        "application/x-dtbncx+xml",
        build_ncx(chapters, metadata, document_ext=document_ext),
    )

    package = builder.package
    package.files[opf_path] = build_opf(
        package.manifest,
        package.spine,
        metadata,
        modified=metadata.modified_timestamp(),
        cover_id=cover_id,
    ).encode("utf-8")
    return package


def _zip_info(name: str, compress_type: int) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ZIP_DATE_TIME)
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    return info


def write_epub(package: EpubPackage) -> bytes:
    """Serialize ``package`` as an EPUB container: ``mimetype`` first and uncompressed."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr(_zip_info("mimetype", zipfile.ZIP_STORED), MIMETYPE)
        for path, data in package.files.items():
            zf.writestr(_zip_info(path, zipfile.ZIP_DEFLATED), data)
    return buffer.getvalue()


__all__ = [
    "CONTAINER_PATH",
    "CoverImage",
    "EpubPackage",
    "MIMETYPE",
    "ManifestEntry",
    "PackageError",
    "SpineEntry",
    "assemble_package",
    "build_cover_page",
    "build_ncx",
    "build_opf",
    "build_toc_document",
    "chapter_href",
    "sniff_image_type",
    "write_epub",
]
