from __future__ import annotations

import re
from html import escape

from bs4 import Tag  # type: ignore

from .dom import class_tokens
from .index import Chapter
from .styles import STYLESHEET_NAME

XHTML_NS = "http://www.w3.org/1999/xhtml"
OPS_NS = "http://www.idpf.org/2007/ops"
DEFAULT_STYLESHEET_HREF = f"../styles/{STYLESHEET_NAME}"
CONTENT_CLASS = "chapter-content"

# Characters XML 1.0 does not allow anywhere in a document.
_INVALID_XML_CHARS_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f￾￿]")

XHTML_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="{xhtml_ns}" xmlns:epub="{ops_ns}" xml:lang="{language}" lang="{language}">
<head>
  <meta charset="UTF-8"/>
  <title>{title}</title>
  <link rel="stylesheet" type="text/css" href="{stylesheet_href}"/>
</head>
<body>
{body}
</body>
</html>
"""


def strip_invalid_xml_chars(text: str) -> str:
    return _INVALID_XML_CHARS_RE.sub("", text)


def xhtml_document(
    title: str,
    body: str,
    *,
    stylesheet_href: str = DEFAULT_STYLESHEET_HREF,
    language: str = "en",
) -> str:
    document = XHTML_TEMPLATE.format(
        xhtml_ns=XHTML_NS,
        ops_ns=OPS_NS,
        language=escape(language, quote=True),
        title=escape(title, quote=False),
        stylesheet_href=escape(stylesheet_href, quote=True),
        body=body,
    )
    return strip_invalid_xml_chars(document)


def _content_root(content: Tag) -> Tag:
    # The aggregation stage already wraps bodies in .chapter-content; avoid nesting it twice.
    children = [child for child in content.contents if isinstance(child, Tag) or child.strip()]
    if len(children) == 1 and isinstance(children[0], Tag):
        only = children[0]
        if only.name == "div" and CONTENT_CLASS in class_tokens(only):
            return only
    return content


def render_chapter_body(chapter: Chapter) -> str:
    parts = [f'<section class="chapter" id="{escape(chapter.clean_id, quote=True)}" epub:type="chapter">']
    label = chapter.display_label
    if label and chapter.toc_title != label and not chapter.toc_title.startswith(f"{label}:"):
        parts.append(f'<p class="chapter-number">{escape(label, quote=False)}</p>')
    if chapter.title_heading is not None:
        parts.append(chapter.title_heading.decode(formatter="minimal"))
    else:
        parts.append(f"<h1>{escape(chapter.toc_title, quote=False)}</h1>")
    root = _content_root(chapter.content)
    inner = root.decode_contents(formatter="minimal")
    # An unwrapped .chapter-content keeps its id; links may point at it.
    wrapper_id = root.get("id") if root is not chapter.content else None
    id_attr = f' id="{escape(str(wrapper_id), quote=True)}"' if wrapper_id else ""
    parts.append(f'<div class="{CONTENT_CLASS}"{id_attr}>{inner}</div>')
    parts.append("</section>")
    return "\n".join(parts)


def render_chapter(
    chapter: Chapter,
    *,
    stylesheet_href: str = DEFAULT_STYLESHEET_HREF,
    language: str = "en",
) -> str:
    """
    Serialize a sanitized, link-resolved chapter as a standalone XHTML document.

    Void elements come out self-closing and every attribute is quoted, so the
    result parses as XML and fragment links into it resolve.
    """
    return xhtml_document(
        chapter.toc_title,
        render_chapter_body(chapter),
        stylesheet_href=stylesheet_href,
        language=language,
    )


__all__ = [
    "CONTENT_CLASS",
    "DEFAULT_STYLESHEET_HREF",
    "OPS_NS",
    "XHTML_NS",
    "render_chapter",
    "render_chapter_body",
    "strip_invalid_xml_chars",
    "xhtml_document",
]
