from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .ids import normalize_identifier
from .images import DEFAULT_USER_AGENT
from .links import DOCUMENT_EXT

MODIFIED_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DEFAULT_TITLE = "Untitled"


@dataclass
class BookMetadata:
    title: str = DEFAULT_TITLE
    creator: str | None = None
    publisher: str | None = None
    language: str = "en"
    identifier: str | None = None
    # Kept apart from content so two runs differ only here, if at all.
    modified: str | None = None

    @property
    def book_identifier(self) -> str:
        if self.identifier:
            return self.identifier
        return f"urn:chapbind:{normalize_identifier(self.title, prefix='book-')}"

    def modified_timestamp(self) -> str:
        if self.modified:
            return self.modified
        return datetime.now(timezone.utc).strftime(MODIFIED_FORMAT)


@dataclass
class ConversionConfig:
    document_ext: str = DOCUMENT_EXT
    image_dir: Path | None = None
    max_workers: int = 4
    timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT


_METADATA_STRING_KEYS = ("title", "creator", "publisher", "language", "identifier", "modified")
_METADATA_ALIASES = {"author": "creator", "date": "modified"}


def load_book_metadata(path: Path, base: BookMetadata | None = None) -> BookMetadata:
    """
    Read book metadata from a JSON object file.

    Unknown keys and values of the wrong type are ignored; values found in the
    file override ``base``.
    """
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ValueError(f"Failed to parse metadata file: {path}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"{path.name} must contain a JSON object.")
    metadata = base or BookMetadata()
    values: dict[str, str] = {}
    for key, value in raw.items():
        key = _METADATA_ALIASES.get(key, key)
        if key not in _METADATA_STRING_KEYS:
            continue
        if not isinstance(value, str) or not value.strip():
            continue
        values[key] = value.strip()
    return BookMetadata(
        title=values.get("title", metadata.title),
        creator=values.get("creator", metadata.creator),
        publisher=values.get("publisher", metadata.publisher),
        language=values.get("language", metadata.language),
        identifier=values.get("identifier", metadata.identifier),
        modified=values.get("modified", metadata.modified),
    )


__all__ = [
    "BookMetadata",
    "ConversionConfig",
    "MODIFIED_FORMAT",
    "load_book_metadata",
]
