from .config import BookMetadata, ConversionConfig, load_book_metadata
from .images import ImageFetchError, ImageFetcher, ImageRecord, ImageStore
from .index import Chapter, FragmentIndex, build_fragment_index, segment_chapters
from .links import LinkReport, resolve_links
from .package import EpubPackage, PackageError, assemble_package, write_epub
from .pipeline import ConversionResult, convert_document, convert_file
from .render import render_chapter
from .sanitize import sanitize_chapter

__all__ = [
    "BookMetadata",
    "ConversionConfig",
    "load_book_metadata",
    "Chapter",
    "FragmentIndex",
    "segment_chapters",
    "build_fragment_index",
    "sanitize_chapter",
    "ImageFetcher",
    "ImageFetchError",
    "ImageRecord",
    "ImageStore",
    "LinkReport",
    "resolve_links",
    "render_chapter",
    "EpubPackage",
    "PackageError",
    "assemble_package",
    "write_epub",
    "ConversionResult",
    "convert_document",
    "convert_file",
]
