from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Sequence
from urllib.parse import unquote, urlparse

from bs4 import NavigableString, Tag  # type: ignore

from .dom import (
    ANCHORABLE_BLOCK_TAGS,
    HEADING_TAGS,
    alnum_only,
    first_words,
    is_within,
    iter_text_nodes,
    new_tag,
    normalize_text,
    tag_text,
    unwrap_link,
)
from .ids import normalize_identifier
from .index import Chapter, ChapterIds, FragmentIndex
from .logging_utils import debug_log

DOCUMENT_EXT = "xhtml"
# Reverse containment (text inside the fragment) ignores very short text nodes.
MIN_REVERSE_MATCH_LEN = 3

_EXTERNAL_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")
_PAGE_EXT_RE = re.compile(r"\.(?:x?html?)$", re.IGNORECASE)


@dataclass(frozen=True)
class TextCandidate:
    node: NavigableString
    text: str


Matcher = Callable[[str, Sequence[TextCandidate]], "TextCandidate | None"]


def match_exact(needle: str, candidates: Sequence[TextCandidate]) -> TextCandidate | None:
    for candidate in candidates:
        if candidate.text == needle:
            return candidate
    return None


def match_containment(needle: str, candidates: Sequence[TextCandidate]) -> TextCandidate | None:
    for candidate in candidates:
        if needle in candidate.text:
            return candidate
        if len(candidate.text) >= MIN_REVERSE_MATCH_LEN and candidate.text in needle:
            return candidate
    return None


def match_first_words(needle: str, candidates: Sequence[TextCandidate]) -> TextCandidate | None:
    head = first_words(needle)
    for candidate in candidates:
        if first_words(candidate.text) == head:
            return candidate
    return None


def match_alnum(needle: str, candidates: Sequence[TextCandidate]) -> TextCandidate | None:
    squeezed = alnum_only(needle)
    for candidate in candidates:
        if alnum_only(candidate.text) == squeezed:
            return candidate
    return None


FUZZY_MATCHERS: tuple[Matcher, ...] = (
    match_exact,
    match_containment,
    match_first_words,
    match_alnum,
)


def find_text_match(
    needle: str,
    candidates: Sequence[TextCandidate],
    matchers: Sequence[Matcher] = FUZZY_MATCHERS,
) -> TextCandidate | None:
    if not needle:
        return None
    for matcher in matchers:
        found = matcher(needle, candidates)
        if found is not None:
            return found
    return None


def split_href(href: str) -> tuple[str, list[str]]:
    """Split ``href`` into its base and every ``#`` fragment it carries."""
    base, sep, rest = href.partition("#")
    if not sep:
        return base, []
    return base, [unquote(part) for part in rest.split("#")]


def is_external(href: str) -> bool:
    return bool(_EXTERNAL_RE.match(href)) or href.startswith("//")


@dataclass
class LinkReport:
    counts: Counter[str] = field(default_factory=Counter)

    def add(self, kind: str) -> None:
        self.counts[kind] += 1

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass
class _LinkAction:
    anchor: Tag
    href: str | None  # None means unwrap


class _ChapterLinkResolver:
    def __init__(
        self,
        chapter: Chapter,
        index: FragmentIndex,
        *,
        document_ext: str,
        first_chapter_href: str | None,
    ) -> None:
        self.chapter = chapter
        self.index = index
        self.plan: ChapterIds = index.chapters[chapter.clean_id]
        self.document_ext = document_ext
        self.first_chapter_href = first_chapter_href
        self.report = LinkReport()
        self._candidates: list[TextCandidate] | None = None
        self._pending_wraps: dict[int, tuple[NavigableString, str]] = {}

    # -- helpers ---------------------------------------------------------

    def _doc(self, chapter_id: str) -> str:
        return f"{chapter_id}.{self.document_ext}"

    def _candidate_list(self) -> list[TextCandidate]:
        if self._candidates is None:
            roots: list[Tag] = []
            if self.chapter.title_heading is not None:
                roots.append(self.chapter.title_heading)
            roots.append(self.chapter.content)
            candidates: list[TextCandidate] = []
            for root in roots:
                for node in iter_text_nodes(root):
                    text = normalize_text(node)
                    if text:
                        candidates.append(TextCandidate(node=node, text=text))
            self._candidates = candidates
        return self._candidates

    def _ensure_id(self, tag: Tag, fragment: str) -> str:
        existing = tag.get("id")
        if existing:
            return str(existing)
        new_id = self.plan.registry.claim(normalize_identifier(fragment))
        tag["id"] = new_id
        return new_id

    def _block_ancestor(self, node: NavigableString) -> Tag | None:
        parent = node.parent
        while parent is not None and parent is not self.chapter.content:
            if parent.name in ANCHORABLE_BLOCK_TAGS:
                return parent
            parent = parent.parent
        return None

    def _chapter_target(self, base: str, fragments: list[str]) -> str | None:
        chapter_ids = self.index.chapter_ids
        if base:
            segment = urlparse(base).path.rstrip("/").rsplit("/", 1)[-1]
            segment = _PAGE_EXT_RE.sub("", unquote(segment))
            return chapter_ids.get(segment)
        if len(fragments) == 1:
            return chapter_ids.get(fragments[0])
        return None

    # -- resolution tiers -----------------------------------------------

    def _known_fragment(self, fragment: str, hint: str | None) -> str | None:
        current = self.chapter.clean_id
        local = self.index.lookup_local(current, fragment)
        if local is not None:
            return f"#{local}"
        if hint is not None and hint != current:
            hinted = self.index.lookup_local(hint, fragment)
            if hinted is not None:
                return f"{self._doc(hint)}#{hinted}"
        record = self.index.lookup(fragment)
        if record is None:
            return None
        if record.owning_chapter_id == current:
            return f"#{record.fragment_id}"
        return f"{self._doc(record.owning_chapter_id)}#{record.fragment_id}"

    def _fuzzy(self, fragment: str) -> str | None:
        found = find_text_match(normalize_text(fragment), self._candidate_list())
        if found is None:
            return None
        block = self._block_ancestor(found.node)
        if block is not None:
            return f"#{self._ensure_id(block, fragment)}"
        pending = self._pending_wraps.get(id(found.node))
        if pending is None:
            new_id = self.plan.registry.claim(normalize_identifier(fragment))
            pending = (found.node, new_id)
            self._pending_wraps[id(found.node)] = pending
        return f"#{pending[1]}"

    def _fallback(self, anchor: Tag, fragment: str) -> tuple[str, str]:
        content = self.chapter.content
        section = anchor.find_parent("section") or content
        needle = normalize_text(fragment)
        headings: list[Tag] = []
        if section is content and self.chapter.title_heading is not None:
            headings.append(self.chapter.title_heading)
        headings.extend(section.find_all(HEADING_TAGS))
        if needle:
            for heading in headings:
                text = normalize_text(tag_text(heading))
                if text and (needle in text or text in needle):
                    return "fallback-heading", f"#{self._ensure_id(heading, fragment)}"
        paragraph = anchor.find_parent("p")
        if paragraph is None:
            previous = anchor.find_previous("p")
            if previous is not None and is_within(previous, section):
                paragraph = previous
        if paragraph is None:
            paragraph = section.find("p")
        if paragraph is not None:
            return "fallback-paragraph", f"#{self._ensure_id(paragraph, fragment)}"
        return "self", f"#{self._ensure_id(anchor, fragment)}"

    def _resolve(self, anchor: Tag) -> _LinkAction | None:
        href = str(anchor.get("href") or "").strip()
        if not href:
            return None
        base, fragments = split_href(href)
        fragment = fragments[-1] if fragments else None
        hint = self.index.chapter_ids.get(fragments[0]) if len(fragments) > 1 else None

        target = self._chapter_target(base, fragments)
        if target is not None:
            new_href = self._doc(target)
            if base and fragment:
                emitted = self.index.lookup_local(target, fragment)
                if emitted is not None:
                    new_href = f"{new_href}#{emitted}"
            self.report.add("chapter")
            return _LinkAction(anchor, new_href)

        if is_external(href):
            self.report.add("external")
            return None

        if base == "/":
            self.report.add("root")
            if not self.chapter.is_primary or self.first_chapter_href is None:
                return _LinkAction(anchor, None)
            return _LinkAction(anchor, self.first_chapter_href)

        titled = self.index.chapter_for_title(tag_text(anchor))
        if titled is not None:
            self.report.add("title")
            return _LinkAction(anchor, self._doc(titled))

        if not fragment:
            if base:
                # Relative page outside the package.
                self.report.add("unwrapped")
                return _LinkAction(anchor, None)
            return None

        known = self._known_fragment(fragment, hint)
        if known is not None:
            self.report.add("fragment")
            return _LinkAction(anchor, known)

        fuzzy = self._fuzzy(fragment)
        if fuzzy is not None:
            debug_log(f"{self.chapter.clean_id}: '#{fragment}' matched text -> {fuzzy}")
            self.report.add("fuzzy")
            return _LinkAction(anchor, fuzzy)

        kind, fallback = self._fallback(anchor, fragment)
        debug_log(f"{self.chapter.clean_id}: '#{fragment}' fell back ({kind}) -> {fallback}")
        self.report.add(kind)
        return _LinkAction(anchor, fallback)

    def run(self) -> LinkReport:
        anchors = self.chapter.content.find_all("a", href=True)
        actions: list[_LinkAction] = []
        for anchor in anchors:
            action = self._resolve(anchor)
            if action is not None:
                actions.append(action)
        for action in actions:
            if action.href is None:
                unwrap_link(action.anchor)
            else:
                action.anchor["href"] = action.href
        for node, new_id in self._pending_wraps.values():
            node.wrap(new_tag("span", id=new_id))
        return self.report


def resolve_links(
    chapter: Chapter,
    index: FragmentIndex,
    *,
    document_ext: str = DOCUMENT_EXT,
    first_chapter_href: str | None = None,
) -> LinkReport:
    """
    Rewrite every anchor in ``chapter`` against the global fragment index.

    Resolution order: chapter-id match, root link handling, section title,
    known fragment, fuzzy text match, then heading/paragraph fallback. The
    fragment index must already cover every chapter.
    """
    resolver = _ChapterLinkResolver(
        chapter,
        index,
        document_ext=document_ext,
        first_chapter_href=first_chapter_href,
    )
    return resolver.run()


__all__ = [
    "DOCUMENT_EXT",
    "FUZZY_MATCHERS",
    "LinkReport",
    "TextCandidate",
    "find_text_match",
    "is_external",
    "match_alnum",
    "match_containment",
    "match_exact",
    "match_first_words",
    "resolve_links",
    "split_href",
]
