from __future__ import annotations

import re
import unicodedata
from typing import Iterable

HEADING_PREFIX = "heading-"
PARAGRAPH_PREFIX = "para-"
CHAPTER_PREFIX = "chapter-"
FRAGMENT_PREFIX = "id-"
PARAGRAPH_ID_WORDS = 5

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_UNSAFE_ID_RE = re.compile(r"[^A-Za-z0-9_-]+")
SAFE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _fold_ascii(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def normalize_identifier(text: str | None, prefix: str = HEADING_PREFIX) -> str:
    """
    Map free text or a URL path segment to a token made of ``[a-z0-9-]``.

    Tokens that would not start with a letter get ``prefix`` so they can never
    be mistaken for numeric chapter tokens.
    """
    token = _NON_ALNUM_RE.sub("-", _fold_ascii(text or "").lower()).strip("-")
    if not token:
        return prefix.rstrip("-_") or "id"
    if not token[0].isalpha():
        token = f"{prefix}{token}"
    return token


def clean_chapter_id(original_id: str) -> str:
    return normalize_identifier(original_id, prefix=CHAPTER_PREFIX)


def paragraph_identifier(text: str | None) -> str:
    words = (text or "").split()[:PARAGRAPH_ID_WORDS]
    return normalize_identifier(" ".join(words), prefix=PARAGRAPH_PREFIX)


def safe_fragment_id(value: str | None) -> str:
    # Existing ids keep their spelling; only characters outside the safe set go.
    token = _UNSAFE_ID_RE.sub("", value or "")
    if not token:
        return FRAGMENT_PREFIX.rstrip("-")
    if not token[0].isalpha():
        token = f"{FRAGMENT_PREFIX}{token}"
    return token


class IdRegistry:
    """Set of identifiers already in use, handing out collision-free tokens."""

    def __init__(self, used: Iterable[str] = ()) -> None:
        self._used: set[str] = set(used)

    def __contains__(self, token: object) -> bool:
        return token in self._used

    def __len__(self) -> int:
        return len(self._used)

    def reserve(self, token: str) -> None:
        self._used.add(token)

    def claim(self, base: str) -> str:
        if base not in self._used:
            self._used.add(base)
            return base
        suffix = 1
        candidate = f"{base}-{suffix}"
        while candidate in self._used:
            suffix += 1
            candidate = f"{base}-{suffix}"
        self._used.add(candidate)
        return candidate


__all__ = [
    "CHAPTER_PREFIX",
    "FRAGMENT_PREFIX",
    "HEADING_PREFIX",
    "IdRegistry",
    "PARAGRAPH_PREFIX",
    "SAFE_ID_RE",
    "clean_chapter_id",
    "normalize_identifier",
    "paragraph_identifier",
    "safe_fragment_id",
]
