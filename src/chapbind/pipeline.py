from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup, Tag  # type: ignore

from .config import BookMetadata, ConversionConfig
from .dom import parse_html
from .images import ImageFetcher, ImageRecord, ImageSource, ImageStore, ProgressCallback, process_images
from .index import Chapter, FragmentIndex, build_fragment_index, segment_chapters
from .links import LinkReport, resolve_links
from .logging_utils import debug_log
from .package import EpubPackage, assemble_package, chapter_href, write_epub
from .render import render_chapter
from .sanitize import sanitize_chapter


@dataclass
class ConversionContext:
    """State shared by every stage of one conversion run."""

    index: FragmentIndex
    store: ImageStore
    config: ConversionConfig


@dataclass
class ConversionResult:
    epub_bytes: bytes
    chapters: list[Chapter]
    images: list[ImageRecord]
    failed_images: dict[str, str]
    package: EpubPackage
    link_reports: dict[str, LinkReport] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.chapters


def _as_tree(document: BeautifulSoup | Tag | str | bytes) -> BeautifulSoup | Tag:
    if isinstance(document, (str, bytes)):
        return parse_html(document)
    return document


def convert_document(
    document: BeautifulSoup | Tag | str | bytes,
    *,
    cover_image: bytes | None = None,
    metadata: BookMetadata | None = None,
    config: ConversionConfig | None = None,
    fetcher: ImageSource | None = None,
    progress: ProgressCallback | None = None,
) -> ConversionResult:
    """
    Turn one aggregated multi-chapter HTML document into EPUB bytes.

    The input tree is only read; chapters are worked on as detached copies.
    Given the same input, cover and a fixed ``metadata.modified`` the output
    bytes are identical between runs.
    """
    metadata = metadata or BookMetadata()
    config = config or ConversionConfig()
    tree = _as_tree(document)

    chapters = segment_chapters(tree)
    if not chapters:
        warnings.warn("No chapter containers found in the input document.", RuntimeWarning, stacklevel=2)
    context = ConversionContext(
        index=build_fragment_index(chapters),
        store=ImageStore(),
        config=config,
    )
    debug_log(f"indexed {len(chapters)} chapters, {len(context.index.fragments)} fragments")

    for chapter in chapters:
        sanitize_chapter(chapter, context.index.chapters[chapter.clean_id])

    owned_fetcher: ImageFetcher | None = None
    if fetcher is None:
        owned_fetcher = ImageFetcher(timeout=config.timeout, user_agent=config.user_agent)
        fetcher = owned_fetcher
    try:
        images = process_images(
            chapters,
            context.store,
            fetcher,
            max_workers=config.max_workers,
            image_dir=config.image_dir,
            progress=progress,
        )
    finally:
        if owned_fetcher is not None:
            owned_fetcher.close()

    first_href = chapter_href(chapters[0], config.document_ext) if chapters else None
    link_reports: dict[str, LinkReport] = {}
    rendered: dict[str, str] = {}
    for chapter in chapters:
        report = resolve_links(
            chapter,
            context.index,
            document_ext=config.document_ext,
            first_chapter_href=first_href,
        )
        link_reports[chapter.clean_id] = report
        if report.total:
            summary = ", ".join(f"{kind}={count}" for kind, count in sorted(report.counts.items()))
            debug_log(f"{chapter.clean_id}: links {summary}")
        rendered[chapter.clean_id] = render_chapter(chapter, language=metadata.language)
        if progress:
            progress({"event": "chapter_done", "chapter": chapter.clean_id})

    package = assemble_package(
        chapters,
        rendered=rendered,
        images=images,
        cover_image=cover_image,
        metadata=metadata,
        document_ext=config.document_ext,
    )
    return ConversionResult(
        epub_bytes=write_epub(package),
        chapters=chapters,
        images=images,
        failed_images=context.store.failed,
        package=package,
        link_reports=link_reports,
    )


def convert_file(
    input_path: Path,
    output_path: Path,
    *,
    cover_path: Path | None = None,
    metadata: BookMetadata | None = None,
    config: ConversionConfig | None = None,
    fetcher: ImageSource | None = None,
    progress: ProgressCallback | None = None,
) -> ConversionResult:
    if not input_path.exists():
        raise FileNotFoundError(f"Input path not found: {input_path}")
    cover_image = None
    if cover_path is not None:
        if not cover_path.exists():
            raise FileNotFoundError(f"Cover image not found: {cover_path}")
        cover_image = cover_path.read_bytes()
    result = convert_document(
        input_path.read_bytes(),
        cover_image=cover_image,
        metadata=metadata,
        config=config,
        fetcher=fetcher,
        progress=progress,
    )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.epub_bytes)
    return result


__all__ = [
    "ConversionContext",
    "ConversionResult",
    "convert_document",
    "convert_file",
]
