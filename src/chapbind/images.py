from __future__ import annotations

import mimetypes
import threading
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable, Protocol
from urllib.parse import urlparse

import requests

from .index import Chapter
from .logging_utils import debug_log

IMAGE_DIR_NAME = "images"
DEFAULT_ALT = "Image"
DEFAULT_EXTENSION = ".jpg"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.114 Safari/537.36"
)
_CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/pjpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/webp": ".webp",
}
_EXTENSION_MEDIA_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
}

ProgressCallback = Callable[[dict[str, object]], None]


class ImageFetchError(RuntimeError):
    """Raised when a remote image cannot be downloaded."""


@dataclass
class FetchedImage:
    data: bytes
    content_type: str | None


class ImageSource(Protocol):
    def fetch(self, url: str) -> FetchedImage: ...


@dataclass
class ImageRecord:
    source_url: str
    local_path: str
    media_type: str
    data: bytes = field(repr=False)

    @property
    def filename(self) -> str:
        return PurePosixPath(self.local_path).name

    @property
    def src(self) -> str:
        return f"../{self.local_path}"


class ImageFetcher:
    """Downloads images over HTTP with a shared requests session."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: requests.Session | None = None,
    ) -> None:
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", user_agent)

    def fetch(self, url: str) -> FetchedImage:
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ImageFetchError(f"Failed to download image from {url}: {exc}") from exc
        return FetchedImage(data=response.content, content_type=response.headers.get("Content-Type"))

    def close(self) -> None:
        self._session.close()


def _declared_media_type(content_type: str | None) -> str | None:
    if not content_type:
        return None
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type or None


def image_extension(url: str, content_type: str | None) -> str:
    media_type = _declared_media_type(content_type)
    if media_type in _CONTENT_TYPE_EXTENSIONS:
        return _CONTENT_TYPE_EXTENSIONS[media_type]
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix == ".jpeg":
        return ".jpg"
    if suffix:
        return suffix
    return DEFAULT_EXTENSION


def image_media_type(extension: str, content_type: str | None) -> str:
    media_type = _declared_media_type(content_type)
    if media_type and media_type.startswith("image/"):
        return "image/jpeg" if media_type in {"image/jpg", "image/pjpeg"} else media_type
    if extension in _EXTENSION_MEDIA_TYPES:
        return _EXTENSION_MEDIA_TYPES[extension]
    guessed, _ = mimetypes.guess_type(f"image{extension}")
    return guessed or "application/octet-stream"


class ImageStore:
    """Dedup map from source URL to the single packaged copy of that image."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ImageRecord] = {}
        self._failed: dict[str, str] = {}

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._records

    def get(self, url: str) -> ImageRecord | None:
        with self._lock:
            return self._records.get(url)

    def register(self, url: str, image: FetchedImage) -> ImageRecord:
        with self._lock:
            existing = self._records.get(url)
            if existing is not None:
                return existing
            extension = image_extension(url, image.content_type)
            filename = f"image_{len(self._records) + 1}{extension}"
            record = ImageRecord(
                source_url=url,
                local_path=f"{IMAGE_DIR_NAME}/{filename}",
                media_type=image_media_type(extension, image.content_type),
                data=image.data,
            )
            self._records[url] = record
            self._failed.pop(url, None)
            return record

    def mark_failed(self, url: str, reason: str) -> None:
        with self._lock:
            self._failed[url] = reason

    @property
    def records(self) -> list[ImageRecord]:
        with self._lock:
            return list(self._records.values())

    @property
    def failed(self) -> dict[str, str]:
        with self._lock:
            return dict(self._failed)


def is_remote_source(src: str | None) -> bool:
    return bool(src) and str(src).lower().startswith("http")


def collect_image_sources(chapters: Iterable[Chapter]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for chapter in chapters:
        for img in chapter.content.find_all("img"):
            src = img.get("src")
            if not is_remote_source(src):
                continue
            src = str(src)
            if src in seen:
                continue
            seen.add(src)
            ordered.append(src)
    return ordered


def _fetch_all(
    urls: list[str],
    fetcher: ImageSource,
    *,
    max_workers: int,
    progress: ProgressCallback | None,
) -> list[FetchedImage | ImageFetchError]:
    results: list[FetchedImage | ImageFetchError | None] = [None] * len(urls)

    def _worker(payload: tuple[int, str]) -> tuple[int, FetchedImage | ImageFetchError]:
        idx, url = payload
        try:
            return idx, fetcher.fetch(url)
        except ImageFetchError as exc:
            return idx, exc

    effective_workers = max(1, min(max_workers, len(urls)))
    with ThreadPoolExecutor(max_workers=effective_workers) as executor:
        futures = [executor.submit(_worker, (idx, url)) for idx, url in enumerate(urls)]
        for future in futures:
            order, outcome = future.result()
            results[order] = outcome
            if progress:
                progress({"event": "image_done", "url": urls[order], "ok": isinstance(outcome, FetchedImage)})
    return [outcome for outcome in results if outcome is not None]


def process_images(
    chapters: list[Chapter],
    store: ImageStore,
    fetcher: ImageSource,
    *,
    max_workers: int = 4,
    image_dir: Path | None = None,
    progress: ProgressCallback | None = None,
) -> list[ImageRecord]:
    """
    Download every distinct remote image once and point all references at it.

    Downloads run concurrently but filenames are assigned afterwards in
    first-encountered document order, so numbering never depends on which
    request finishes first. Failed downloads leave the remote URL in place.
    """
    pending = [url for url in collect_image_sources(chapters) if url not in store]
    if progress:
        progress({"event": "images_start", "total": len(pending)})
    if pending:
        outcomes = _fetch_all(pending, fetcher, max_workers=max_workers, progress=progress)
        for url, outcome in zip(pending, outcomes):
            if isinstance(outcome, ImageFetchError):
                store.mark_failed(url, str(outcome))
                warnings.warn(str(outcome), RuntimeWarning, stacklevel=2)
                continue
            record = store.register(url, outcome)
            debug_log(f"image {url} -> {record.local_path}")
            if image_dir is not None:
                image_dir.mkdir(parents=True, exist_ok=True)
                (image_dir / record.filename).write_bytes(record.data)

    for chapter in chapters:
        for img in chapter.content.find_all("img"):
            src = img.get("src")
            if not is_remote_source(src):
                continue
            record = store.get(str(src))
            if record is None:
                continue
            img["src"] = record.src
            if "alt" not in img.attrs:
                img["alt"] = DEFAULT_ALT
    return store.records


__all__ = [
    "DEFAULT_ALT",
    "FetchedImage",
    "IMAGE_DIR_NAME",
    "ImageFetchError",
    "ImageFetcher",
    "ImageRecord",
    "ImageSource",
    "ImageStore",
    "collect_image_sources",
    "image_extension",
    "image_media_type",
    "is_remote_source",
    "process_images",
]
