from __future__ import annotations

import re
from typing import TYPE_CHECKING

from bs4 import Comment, Declaration, Doctype, ProcessingInstruction, Tag  # type: ignore

from .dom import (
    HEADING_TAGS,
    class_tokens,
    find_title_wrapper,
    has_class,
    is_heading,
    new_tag,
    tag_text,
    unwrap_link,
)
from .ids import normalize_identifier, paragraph_identifier, safe_fragment_id

if TYPE_CHECKING:
    from .index import Chapter, ChapterIds

CHROME_TAGS = {"nav", "header", "footer", "script", "style", "noscript", "button"}
CHROME_CLASSES = {
    "toc",
    "copyright",
    "intro__sections",
    "intro__next",
    "intro__book-title",
}
CHROME_CLASS_RE = re.compile(
    r"(?:^|[-_])(?:header|masthead|nav|navigation|menu|hamburger)(?:$|[-_])"
)
_XML_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.:-]*$")
_ALLOWED_ATTR_PREFIXES = {"xml", "xmlns", "epub"}
# Title markup gets flattened to inline content inside the promoted h1.
_TITLE_INNER_BLOCKS = set(HEADING_TAGS) | {"p", "div", "section", "header"}


def is_chrome(tag: Tag) -> bool:
    """True for navigation, site chrome and script/style blocks that never belong in a chapter."""
    if tag.name in CHROME_TAGS:
        return True
    action = tag.get("data-action")
    if action and "sidebar" in str(action):
        return True
    for token in class_tokens(tag):
        if token in CHROME_CLASSES or CHROME_CLASS_RE.search(token):
            return True
    return False


def within_chrome(tag: Tag, root: Tag) -> bool:
    parent = tag.parent
    while parent is not None and parent is not root:
        if is_chrome(parent):
            return True
        parent = parent.parent
    return False


def _remove_chrome(root: Tag) -> int:
    targets = [
        tag for tag in root.find_all(True) if is_chrome(tag) and not within_chrome(tag, root)
    ]
    for tag in targets:
        tag.decompose()
    return len(targets)


def _remove_markup_nodes(root: Tag) -> None:
    # Comments may contain "--" and doctypes never belong inside a body.
    nodes = root.find_all(
        string=lambda node: isinstance(node, (Comment, Declaration, Doctype, ProcessingInstruction))
    )
    for node in nodes:
        node.extract()


def _promote_title(chapter: "Chapter") -> None:
    wrapper = find_title_wrapper(chapter.content)
    if wrapper is None:
        return
    wrapper.extract()
    wrapper.name = "h1"
    if "class" in wrapper.attrs:
        del wrapper["class"]
    for link in wrapper.find_all("a"):
        unwrap_link(link)
    # Inner blocks become spans so ids on them stay addressable.
    for inner in wrapper.find_all(_TITLE_INNER_BLOCKS):
        inner.name = "span"
    chapter.title_heading = wrapper
    if not chapter.title:
        chapter.title = tag_text(wrapper) or None


def _demote_body_titles(root: Tag) -> None:
    for heading in root.find_all("h1"):
        heading.name = "h2"


def _restructure_glossary(root: Tag) -> None:
    pairs: list[tuple[Tag, Tag | None]] = []
    for term in root.find_all(class_="term"):
        definition = term.find_next_sibling(True)
        if definition is not None and has_class(definition, "term"):
            definition = None
        pairs.append((term, definition))
    for term, definition in pairs:
        wrapper = new_tag("dl")
        term.insert_before(wrapper)
        term.name = "dt"
        wrapper.append(term)
        if definition is not None:
            definition.name = "dd"
            wrapper.append(definition)


def _restructure_author_bio(root: Tag) -> None:
    for bio in root.find_all(class_="author-bio"):
        bio.name = "div"
        bio["class"] = ["author-biography"]


def _assign_ids(elements: list[Tag], plan: "ChapterIds") -> None:
    for tag in elements:
        planned = plan.planned_id(tag)
        if planned:
            tag["id"] = planned
            continue
        existing = tag.get("id")
        if existing:
            tag["id"] = plan.registry.claim(safe_fragment_id(str(existing)))
        elif is_heading(tag):
            tag["id"] = plan.registry.claim(normalize_identifier(tag_text(tag)))
        elif tag.name == "p":
            tag["id"] = plan.registry.claim(paragraph_identifier(tag_text(tag)))


def _strip_invalid_attributes(elements: list[Tag]) -> None:
    for tag in elements:
        for name in list(tag.attrs):
            prefix = name.split(":", 1)[0] if ":" in name else None
            if not _XML_NAME_RE.match(name) or (
                prefix is not None and prefix not in _ALLOWED_ATTR_PREFIXES
            ):
                del tag[name]


def sanitize_chapter(chapter: "Chapter", plan: "ChapterIds") -> None:
    """
    Clean one chapter in place.

    Chrome goes first, then the title wrapper is detached and promoted to the
    chapter heading, legacy glossary/about markup is restructured, and every
    heading and paragraph ends up with an id consistent with the fragment
    index plan.
    """
    content = chapter.content
    _remove_chrome(content)
    _remove_markup_nodes(content)
    _promote_title(chapter)
    _demote_body_titles(content)
    if "glossary" in chapter.original_id:
        _restructure_glossary(content)
    if "about" in chapter.original_id:
        _restructure_author_bio(content)
    elements = list(content.find_all(True))
    if chapter.title_heading is not None:
        elements.insert(0, chapter.title_heading)
        elements[1:1] = chapter.title_heading.find_all(True)
    _assign_ids(elements, plan)
    _strip_invalid_attributes(elements)
    if chapter.title_heading is None:
        heading = new_tag("h1", id=plan.registry.claim(f"{chapter.clean_id}-title"))
        heading.string = chapter.toc_title
        chapter.title_heading = heading


__all__ = [
    "CHROME_CLASS_RE",
    "CHROME_TAGS",
    "is_chrome",
    "sanitize_chapter",
    "within_chrome",
]
