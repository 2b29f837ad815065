from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup, Tag  # type: ignore

from .dom import (
    CHAPTER_CLASS,
    find_title_wrapper,
    is_heading,
    normalize_text,
    tag_text,
)
from .ids import (
    IdRegistry,
    clean_chapter_id,
    normalize_identifier,
    safe_fragment_id,
)
from .sanitize import is_chrome, within_chrome

CHAPTER_ID_RE = re.compile(r"(?P<major>\d+)\.(?P<minor>\d+)-chapter-(?P<number>\d+)")
APPENDIX_ID_RE = re.compile(r"(?P<major>\d+)\.(?P<minor>\d+)-appendix-(?P<number>\d+)")
CONCLUSION_ID_RE = re.compile(r"conclusion")
SECONDARY_ID_RE = re.compile(r"appendix|glossary|about")
# Generated package documents live beside the chapters under these names.
RESERVED_DOCUMENT_IDS = ("cover", "toc")


def chapter_number_label(original_id: str) -> str | None:
    match = CHAPTER_ID_RE.search(original_id)
    if match:
        return f"Chapter {int(match.group('number'))}"
    match = APPENDIX_ID_RE.search(original_id)
    if match:
        return f"Appendix {int(match.group('number'))}"
    return None


def _appendix_title(original_id: str) -> str | None:
    match = APPENDIX_ID_RE.search(original_id)
    if match is None:
        return None
    label = f"Appendix {int(match.group('number'))}"
    words = [word for word in re.split(r"[-_.\s]+", original_id[match.end():]) if word]
    if not words:
        return label
    return f"{label}: {' '.join(words).capitalize()}"


def derive_chapter_title(original_id: str, ordinal: int) -> str:
    if CONCLUSION_ID_RE.search(original_id):
        return "Conclusion"
    appendix = _appendix_title(original_id)
    if appendix:
        return appendix
    if "glossary" in original_id:
        return "Glossary"
    if "about" in original_id:
        return "About"
    label = chapter_number_label(original_id)
    if label:
        return label
    return f"Chapter {ordinal + 1}"


def is_primary_chapter(original_id: str) -> bool:
    return SECONDARY_ID_RE.search(original_id) is None


@dataclass
class Chapter:
    original_id: str
    clean_id: str
    ordinal: int
    content: Tag
    title: str | None = None
    display_label: str | None = None
    title_heading: Tag | None = None

    @property
    def toc_title(self) -> str:
        return self.title or derive_chapter_title(self.original_id, self.ordinal)

    @property
    def is_primary(self) -> bool:
        return is_primary_chapter(self.original_id)


@dataclass(frozen=True)
class FragmentRecord:
    fragment_id: str
    owning_chapter_id: str


@dataclass
class ChapterIds:
    """Per-chapter id plan: uniqueness set plus the ids each element will carry."""

    chapter_id: str
    registry: IdRegistry
    element_ids: dict[int, tuple[Tag, str]] = field(default_factory=dict)
    local: dict[str, str] = field(default_factory=dict)

    def plan(self, element: Tag, emitted: str) -> None:
        self.element_ids[id(element)] = (element, emitted)

    def planned_id(self, element: Tag) -> str | None:
        entry = self.element_ids.get(id(element))
        # Decomposed tags free their id() for reuse; only trust the same object.
        if entry is None or entry[0] is not element:
            return None
        return entry[1]


@dataclass
class FragmentIndex:
    chapter_ids: dict[str, str] = field(default_factory=dict)
    fragments: dict[str, FragmentRecord] = field(default_factory=dict)
    section_titles: dict[str, str] = field(default_factory=dict)
    chapters: dict[str, ChapterIds] = field(default_factory=dict)

    def lookup(self, fragment: str) -> FragmentRecord | None:
        record = self.fragments.get(fragment)
        if record is None:
            record = self.fragments.get(safe_fragment_id(fragment))
        return record

    def lookup_local(self, chapter_id: str, fragment: str) -> str | None:
        plan = self.chapters.get(chapter_id)
        if plan is None:
            return None
        found = plan.local.get(fragment)
        if found is None:
            found = plan.local.get(safe_fragment_id(fragment))
        return found

    def chapter_for_title(self, text: str) -> str | None:
        key = normalize_text(text)
        if not key:
            return None
        return self.section_titles.get(key)


def _top_level_chapters(tree: Tag) -> list[Tag]:
    found: list[Tag] = []
    for tag in tree.find_all(class_=CHAPTER_CLASS):
        if tag.find_parent(class_=CHAPTER_CLASS) is not None:
            continue
        found.append(tag)
    return found


def segment_chapters(tree: BeautifulSoup | Tag) -> list[Chapter]:
    """
    Split the aggregated document into chapters in document order.

    Each chapter owns a detached deep copy of its container, so the caller's
    tree is never mutated and repeated runs see identical input.
    """
    chapters: list[Chapter] = []
    used = IdRegistry(RESERVED_DOCUMENT_IDS)
    for ordinal, container in enumerate(_top_level_chapters(tree)):
        original_id = str(container.get("id") or "").strip() or f"chapter-{ordinal + 1}"
        clean_id = used.claim(clean_chapter_id(original_id))
        content = copy.copy(container)
        title_wrapper = find_title_wrapper(content)
        title = tag_text(title_wrapper) if title_wrapper is not None else None
        chapters.append(
            Chapter(
                original_id=original_id,
                clean_id=clean_id,
                ordinal=ordinal,
                content=content,
                title=title or None,
                display_label=chapter_number_label(original_id),
            )
        )
    return chapters


def _record_fragment(
    index: FragmentIndex,
    plan: ChapterIds,
    key: str,
    emitted: str,
) -> None:
    plan.local.setdefault(key, emitted)
    if key not in index.fragments:
        index.fragments[key] = FragmentRecord(fragment_id=emitted, owning_chapter_id=plan.chapter_id)


def _indexable_elements(chapter: Chapter) -> list[Tag]:
    return [
        tag
        for tag in chapter.content.find_all(True)
        if not is_chrome(tag) and not within_chrome(tag, chapter.content)
    ]


def _index_explicit_ids(index: FragmentIndex, plan: ChapterIds, elements: list[Tag]) -> None:
    for tag in elements:
        raw = tag.get("id")
        if not raw:
            continue
        raw = str(raw)
        emitted = plan.registry.claim(safe_fragment_id(raw))
        plan.plan(tag, emitted)
        _record_fragment(index, plan, raw, emitted)
        if emitted != raw:
            _record_fragment(index, plan, emitted, emitted)


def _index_headings(index: FragmentIndex, plan: ChapterIds, elements: list[Tag]) -> None:
    for tag in elements:
        if not is_heading(tag):
            continue
        text = tag_text(tag)
        if not tag.get("id"):
            base = normalize_identifier(text)
            emitted = plan.registry.claim(base)
            plan.plan(tag, emitted)
            _record_fragment(index, plan, base, emitted)
        key = normalize_text(text)
        if key:
            # Later chapters overwrite earlier ones on duplicate titles.
            index.section_titles[key] = plan.chapter_id


def build_fragment_index(chapters: list[Chapter]) -> FragmentIndex:
    """
    Plan every id the output will carry, without touching the chapters.

    Explicit ids from all chapters are recorded before any synthesized
    heading id, so a heading in one chapter never takes a key that another
    chapter's markup names directly.
    """
    index = FragmentIndex()
    for chapter in chapters:
        index.chapter_ids.setdefault(chapter.original_id, chapter.clean_id)
    elements: dict[str, list[Tag]] = {}
    for chapter in chapters:
        plan = ChapterIds(chapter_id=chapter.clean_id, registry=IdRegistry([chapter.clean_id]))
        index.chapters[chapter.clean_id] = plan
        elements[chapter.clean_id] = _indexable_elements(chapter)
        _index_explicit_ids(index, plan, elements[chapter.clean_id])
    for chapter in chapters:
        _index_headings(index, index.chapters[chapter.clean_id], elements[chapter.clean_id])
    return index


__all__ = [
    "Chapter",
    "ChapterIds",
    "FragmentIndex",
    "FragmentRecord",
    "RESERVED_DOCUMENT_IDS",
    "build_fragment_index",
    "chapter_number_label",
    "derive_chapter_title",
    "is_primary_chapter",
    "segment_chapters",
]
