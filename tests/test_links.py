from __future__ import annotations

from chapbind.dom import parse_html
from chapbind.index import build_fragment_index, segment_chapters
from chapbind.links import (
    find_text_match,
    match_containment,
    resolve_links,
    split_href,
    TextCandidate,
)
from chapbind.sanitize import sanitize_chapter


def _prepare(html: str):
    chapters = segment_chapters(parse_html(html))
    index = build_fragment_index(chapters)
    for chapter in chapters:
        sanitize_chapter(chapter, index.chapters[chapter.clean_id])
    return chapters, index


def _resolve_all(html: str):
    chapters, index = _prepare(html)
    first = f"{chapters[0].clean_id}.xhtml"
    reports = [resolve_links(chapter, index, first_chapter_href=first) for chapter in chapters]
    return chapters, index, reports


def _hrefs(chapter) -> list[str]:
    return [str(a["href"]) for a in chapter.content.find_all("a", href=True)]


def test_split_href_keeps_every_fragment() -> None:
    assert split_href("page.html#a#b") == ("page.html", ["a", "b"])
    assert split_href("#caf%C3%A9") == ("", ["café"])
    assert split_href("/shapeup") == ("/shapeup", [])


def test_direct_chapter_link() -> None:
    chapters, _, reports = _resolve_all(
        """
        <div class="chapter" id="1.1-chapter-01"><p>See <a href="#1.2-chapter-02">next</a>.</p></div>
        <div class="chapter" id="1.2-chapter-02"><p>Body</p></div>
        """
    )
    assert _hrefs(chapters[0]) == ["chapter-1-2-chapter-02.xhtml"]
    assert reports[0].counts["chapter"] == 1


def test_chapter_path_links_keep_known_fragments() -> None:
    chapters, _, _ = _resolve_all(
        """
        <div class="chapter" id="1.1-chapter-01">
          <p><a href="/shapeup/1.2-chapter-02">next</a>
             <a href="https://basecamp.com/shapeup/1.2-chapter-02#foo">foo</a>
             <a href="/shapeup/1.2-chapter-02#nope">nope</a></p>
        </div>
        <div class="chapter" id="1.2-chapter-02"><p id="foo">Body</p></div>
        """
    )
    assert _hrefs(chapters[0]) == [
        "chapter-1-2-chapter-02.xhtml",
        "chapter-1-2-chapter-02.xhtml#foo",
        "chapter-1-2-chapter-02.xhtml",
    ]


def test_fuzzy_match_anchors_nearest_paragraph() -> None:
    chapters, _, reports = _resolve_all(
        """
        <div class="chapter" id="1.1-chapter-01">
          <p>Please <a href="#intro">see intro</a> first.</p><p>Intro to shaping work</p>
        </div>
        """
    )
    content = chapters[0].content
    assert _hrefs(chapters[0]) == ["#intro-to-shaping-work"]
    assert content.find_all("p")[1]["id"] == "intro-to-shaping-work"
    assert reports[0].counts["fuzzy"] == 1


def test_multi_hash_link_uses_last_fragment() -> None:
    chapters, _, _ = _resolve_all(
        """
        <div class="chapter" id="1.1-chapter-01">
          <p id="b">Target</p><p><a href="#a#b">jump</a></p>
        </div>
        """
    )
    assert _hrefs(chapters[0]) == ["#b"]


def test_multi_hash_link_with_chapter_hint() -> None:
    chapters, _, _ = _resolve_all(
        """
        <div class="chapter" id="one"><p><a href="#three#shared">go</a></p></div>
        <div class="chapter" id="two"><p id="shared">Second</p></div>
        <div class="chapter" id="three"><p id="shared">Third</p></div>
        """
    )
    assert _hrefs(chapters[0]) == ["three.xhtml#shared"]


def test_cross_chapter_fragments() -> None:
    chapters, _, _ = _resolve_all(
        """
        <div class="chapter" id="1.1-chapter-01">
          <p><a href="#setting-boundaries">boundaries</a> and <a href="#appetite">budget</a></p>
        </div>
        <div class="chapter" id="1.2-chapter-02">
          <h2>Setting Boundaries</h2><p id="appetite">Appetite is a time budget.</p>
        </div>
        """
    )
    assert _hrefs(chapters[0]) == [
        "chapter-1-2-chapter-02.xhtml#setting-boundaries",
        "chapter-1-2-chapter-02.xhtml#appetite",
    ]
    assert chapters[1].content.find("h2")["id"] == "setting-boundaries"


def test_section_title_match_links_to_chapter() -> None:
    chapters, _, reports = _resolve_all(
        """
        <div class="chapter" id="one"><p>Read <a href="/shapeup/unknown-page">Setting Boundaries</a></p></div>
        <div class="chapter" id="two"><h2>Setting Boundaries</h2></div>
        """
    )
    assert _hrefs(chapters[0]) == ["two.xhtml"]
    assert reports[0].counts["title"] == 1


def test_root_links_depend_on_chapter_kind() -> None:
    chapters, _, _ = _resolve_all(
        """
        <div class="chapter" id="1.1-chapter-01"><p><a href="/">Start</a></p></div>
        <div class="chapter" id="4.5-appendix-06-glossary"><p><a href="/">Home</a> page</p></div>
        """
    )
    assert _hrefs(chapters[0]) == ["chapter-1-1-chapter-01.xhtml"]
    glossary = chapters[1].content
    assert glossary.find("a") is None
    assert "Home page" in glossary.get_text(" ", strip=True)


def test_external_links_untouched_and_relative_pages_unwrapped() -> None:
    chapters, _, reports = _resolve_all(
        """
        <div class="chapter" id="one">
          <p><a href="https://example.com/page">out</a> <a href="mailto:me@example.com">mail</a>
             <a href="notes.html">Notes</a></p>
        </div>
        """
    )
    content = chapters[0].content
    assert _hrefs(chapters[0]) == ["https://example.com/page", "mailto:me@example.com"]
    assert "Notes" in content.get_text()
    assert reports[0].counts["external"] == 2
    assert reports[0].counts["unwrapped"] == 1


def test_unmatched_fragment_falls_back_to_enclosing_paragraph() -> None:
    chapters, _, reports = _resolve_all(
        """
        <div class="chapter" id="one"><p>Read <a href="#zzqx-nothing">this</a>.</p></div>
        """
    )
    paragraph = chapters[0].content.find("p")
    assert _hrefs(chapters[0]) == [f"#{paragraph['id']}"]
    assert reports[0].counts["fallback-paragraph"] == 1


def test_unmatched_fragment_prefers_heading_in_section() -> None:
    chapters, _, reports = _resolve_all(
        """
        <div class="chapter" id="one">
          <section><h3>Risks and <em>rabbit holes</em></h3><ul><li><a href="#and-rabbit">x</a></li></ul></section>
        </div>
        """
    )
    heading = chapters[0].content.find("h3")
    assert _hrefs(chapters[0]) == [f"#{heading['id']}"]
    assert reports[0].counts["fallback-heading"] == 1


def test_anchor_without_any_target_links_to_itself() -> None:
    chapters, _, reports = _resolve_all(
        '<div class="chapter" id="one"><ul><li><a href="#qqq-www">x</a></li></ul></div>'
    )
    anchor = chapters[0].content.find("a")
    assert anchor["id"] == "qqq-www"
    assert anchor["href"] == "#qqq-www"
    assert reports[0].counts["self"] == 1


def test_text_node_without_block_ancestor_is_wrapped() -> None:
    chapters, _, _ = _resolve_all(
        """
        <div class="chapter" id="one">
          <p><a href="#loose-words">see</a></p>
          Some loose words here
        </div>
        """
    )
    span = chapters[0].content.find("span", id="loose-words")
    assert span is not None
    assert "loose words" in span.get_text()
    assert _hrefs(chapters[0]) == ["#loose-words"]


def test_reverse_containment_needs_three_characters() -> None:
    candidates = [TextCandidate(node=None, text="ab"), TextCandidate(node=None, text="shape")]
    assert match_containment("shape up", candidates) is candidates[1]
    assert find_text_match("xaby", [candidates[0]]) is None
    assert find_text_match("", candidates) is None
