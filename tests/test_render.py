from __future__ import annotations

from lxml import etree

from chapbind.dom import parse_html
from chapbind.index import build_fragment_index, segment_chapters
from chapbind.render import render_chapter, strip_invalid_xml_chars
from chapbind.sanitize import sanitize_chapter

XHTML = "{http://www.w3.org/1999/xhtml}"


def _rendered(html: str) -> str:
    chapters = segment_chapters(parse_html(html))
    index = build_fragment_index(chapters)
    sanitize_chapter(chapters[0], index.chapters[chapters[0].clean_id])
    return render_chapter(chapters[0])


def test_rendered_chapter_is_well_formed_xhtml() -> None:
    xhtml = _rendered(
        """
        <div class="chapter" id="1.3-chapter-03">
          <h1 class="chapter-title">Set Boundaries &amp; Limits</h1>
          <p>Line one<br>line two</p>
          <img src="../images/image_1.png" alt="Diagram">
          <hr>
          <p>Caf&eacute; &lt;raw&gt; text&nbsp;here</p>
        </div>
        """
    )
    root = etree.fromstring(xhtml.encode("utf-8"))
    assert root.tag == f"{XHTML}html"
    assert root.findtext(f"{XHTML}head/{XHTML}title") == "Set Boundaries & Limits"
    section = root.find(f"{XHTML}body/{XHTML}section")
    assert section.get("id") == "chapter-1-3-chapter-03"
    assert section.get("class") == "chapter"
    assert section.get("{http://www.idpf.org/2007/ops}type") == "chapter"
    number = section.find(f"{XHTML}p")
    assert number.get("class") == "chapter-number"
    assert number.text == "Chapter 3"
    heading = section.find(f"{XHTML}h1")
    assert heading.get("id") == "set-boundaries-limits"
    assert "<br/>" in xhtml
    assert "<hr/>" in xhtml
    assert 'alt="Diagram"/>' in xhtml


def test_ids_are_unique_within_a_document() -> None:
    xhtml = _rendered(
        """
        <div class="chapter" id="one">
          <h2>Summary</h2><h2>Summary</h2><p>Same words</p><p>Same words</p>
        </div>
        """
    )
    root = etree.fromstring(xhtml.encode("utf-8"))
    ids = [el.get("id") for el in root.iter() if el.get("id")]
    assert len(ids) == len(set(ids))


def test_label_is_not_repeated_when_it_is_the_title() -> None:
    xhtml = _rendered('<div class="chapter" id="1.3-chapter-03"><p>Body</p></div>')
    assert "chapter-number" not in xhtml
    assert '<h1 id="chapter-1-3-chapter-03-title">Chapter 3</h1>' in xhtml


def test_existing_content_wrapper_is_not_nested() -> None:
    xhtml = _rendered(
        '<div class="chapter" id="one"><div class="chapter-content"><p>Hi</p></div></div>'
    )
    assert xhtml.count('class="chapter-content"') == 1
    etree.fromstring(xhtml.encode("utf-8"))


def test_control_characters_are_stripped() -> None:
    assert strip_invalid_xml_chars("a\x00b\x0bc\td\ne") == "abc\td\ne"


def test_content_wrapper_id_survives_unwrapping() -> None:
    xhtml = _rendered(
        '<div class="chapter" id="one"><div class="chapter-content" id="body-1"><p>Hi</p></div></div>'
    )
    root = etree.fromstring(xhtml.encode("utf-8"))
    wrapper = root.find(f"{XHTML}body/{XHTML}section/{XHTML}div")
    assert wrapper.get("class") == "chapter-content"
    assert wrapper.get("id") == "body-1"


def test_appendix_label_is_not_repeated_before_its_title() -> None:
    xhtml = _rendered('<div class="chapter" id="4.5-appendix-06-glossary"><p>Body</p></div>')
    assert "chapter-number" not in xhtml
    assert ">Appendix 6: Glossary</h1>" in xhtml
