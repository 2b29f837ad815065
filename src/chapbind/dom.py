from __future__ import annotations

import re
import unicodedata
import warnings
from typing import Iterator

from bs4 import (
    BeautifulSoup,
    FeatureNotFound,
    NavigableString,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore
from bs4.element import PreformattedString  # type: ignore

HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
# Ancestors a fuzzy text match may be anchored to.
ANCHORABLE_BLOCK_TAGS = {
    "p",
    "h1",
    "h2",
    "h3",
    "h4",
    "h5",
    "h6",
    "section",
    "div",
    "article",
    "li",
    "blockquote",
}
CHAPTER_CLASS = "chapter"
TITLE_WRAPPER_CLASS = "chapter-title"

_WORD_SEP_RE = re.compile(r"[^a-z0-9]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")
_WS_RE = re.compile(r"\s+")

_TAG_FACTORY = BeautifulSoup("", "html.parser")


def parse_html(html: str | bytes) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    # html.parser ships with Python, so this only runs on a broken install.
    return BeautifulSoup(html, "html.parser")


def new_tag(name: str, **attrs: str) -> Tag:
    return _TAG_FACTORY.new_tag(name, attrs=attrs)


def collapse_ws(text: str | None) -> str:
    return _WS_RE.sub(" ", text or "").strip()


def normalize_text(text: str | None) -> str:
    """Lower-case, ASCII-folded text with every non-alphanumeric run turned into one space."""
    folded = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    return _WORD_SEP_RE.sub(" ", folded.lower()).strip()


def alnum_only(text: str | None) -> str:
    return _NON_ALNUM_RE.sub("", normalize_text(text))


def first_words(text: str, count: int = 5) -> str:
    return " ".join(text.split()[:count])


def tag_text(tag: Tag) -> str:
    return collapse_ws(tag.get_text(" ", strip=True))


def class_tokens(tag: Tag) -> list[str]:
    value = tag.get("class")
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    return [str(token) for token in value]


def has_class(tag: Tag, name: str) -> bool:
    return name in class_tokens(tag)


def is_title_wrapper(tag: Tag) -> bool:
    if has_class(tag, TITLE_WRAPPER_CLASS):
        return True
    return tag.name == "h1" and has_class(tag, "title")


def is_heading(tag: Tag) -> bool:
    return tag.name in HEADING_TAGS or is_title_wrapper(tag)


def find_title_wrapper(root: Tag) -> Tag | None:
    for tag in root.find_all(True):
        if is_title_wrapper(tag):
            return tag
    return None


def is_plain_text(node: object) -> bool:
    # Comments, CDATA and doctypes are PreformattedString subclasses.
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def iter_text_nodes(root: Tag, *, skip_anchors: bool = True) -> Iterator[NavigableString]:
    for node in root.find_all(string=True):
        if not is_plain_text(node):
            continue
        if not node.strip():
            continue
        if skip_anchors and node.find_parent("a") is not None:
            continue
        yield node


def unwrap_link(link: Tag) -> None:
    """Drop a link but keep its text; a link that is itself a fragment target becomes a span."""
    if link.get("id"):
        link.name = "span"
        for name in [attr for attr in link.attrs if attr != "id"]:
            del link[name]
        return
    link.unwrap()


def is_within(node: Tag | NavigableString, ancestor: Tag) -> bool:
    parent = node.parent
    while parent is not None:
        if parent is ancestor:
            return True
        parent = parent.parent
    return False


__all__ = [
    "ANCHORABLE_BLOCK_TAGS",
    "CHAPTER_CLASS",
    "HEADING_TAGS",
    "TITLE_WRAPPER_CLASS",
    "alnum_only",
    "class_tokens",
    "collapse_ws",
    "find_title_wrapper",
    "first_words",
    "has_class",
    "is_heading",
    "is_plain_text",
    "is_title_wrapper",
    "is_within",
    "iter_text_nodes",
    "new_tag",
    "normalize_text",
    "parse_html",
    "tag_text",
    "unwrap_link",
]
