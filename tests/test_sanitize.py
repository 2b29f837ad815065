from __future__ import annotations

from bs4 import BeautifulSoup

from chapbind.dom import parse_html
from chapbind.index import build_fragment_index, segment_chapters
from chapbind.sanitize import is_chrome, sanitize_chapter


def _sanitized(html: str, parser: str | None = None):
    tree = BeautifulSoup(html, parser) if parser else parse_html(html)
    chapters = segment_chapters(tree)
    index = build_fragment_index(chapters)
    for chapter in chapters:
        sanitize_chapter(chapter, index.chapters[chapter.clean_id])
    return chapters, index


def test_chrome_detection_by_tag_and_class_word() -> None:
    soup = BeautifulSoup(
        '<div class="site-header"></div><div class="unavailable"></div>'
        '<button data-action="sidebar#toggle"></button><div class="intro__next"></div>'
        '<div class="main_navigation"></div>',
        "html.parser",
    )
    flags = [is_chrome(tag) for tag in soup.find_all(True)]
    assert flags == [True, False, True, True, True]


def test_sanitize_removes_chrome_and_comments() -> None:
    chapters, _ = _sanitized(
        """
        <div class="chapter" id="1.1-chapter-01">
          <header class="chapter-header"><a href="/">Back</a></header>
          <!-- tracking pixel -->
          <nav><ul><li>Menu</li></ul></nav>
          <script>var x = 1;</script>
          <p class="unavailable">Kept</p>
        </div>
        """
    )
    content = chapters[0].content
    assert content.find(["header", "nav", "script"]) is None
    assert "tracking" not in content.decode()
    assert content.find("p").get_text() == "Kept"


def test_title_wrapper_is_promoted_without_links() -> None:
    chapters, _ = _sanitized(
        """
        <div class="chapter" id="1.2-chapter-02">
          <div class="chapter-title"><h1>Set <a href="/shapeup">Boundaries</a></h1></div>
          <h1>Body heading</h1>
          <p>Text</p>
        </div>
        """
    )
    chapter = chapters[0]
    heading = chapter.title_heading
    assert heading is not None and heading.name == "h1"
    assert "class" not in heading.attrs
    assert heading.find("a") is None
    assert heading.find("h1") is None
    assert heading.get_text(" ", strip=True) == "Set Boundaries"
    assert heading.get("id")
    # The wrapper left the content; body titles are demoted.
    assert chapter.content.find("h1") is None
    assert chapter.content.find("h2").get_text() == "Body heading"


def test_missing_title_gets_synthesized_heading() -> None:
    chapters, _ = _sanitized('<div class="chapter" id="1.3-chapter-03"><p>Text</p></div>')
    heading = chapters[0].title_heading
    assert heading.get_text() == "Chapter 3"
    assert heading["id"] == "chapter-1-3-chapter-03-title"


def test_planned_and_synthesized_ids_are_written() -> None:
    chapters, index = _sanitized(
        """
        <div class="chapter" id="one">
          <h2>Setting Boundaries</h2>
          <h2>Setting Boundaries</h2>
          <p id="1-foo">Numbered</p>
          <p>Appetite is a time budget for work</p>
        </div>
        """
    )
    content = chapters[0].content
    headings = content.find_all("h2")
    assert [h["id"] for h in headings] == ["setting-boundaries", "setting-boundaries-1"]
    paragraphs = content.find_all("p")
    assert paragraphs[0]["id"] == "id-1-foo"
    assert paragraphs[1]["id"] == "appetite-is-a-time-budget"
    assert index.lookup("setting-boundaries").fragment_id == headings[0]["id"]


def test_glossary_terms_become_definition_lists() -> None:
    chapters, _ = _sanitized(
        """
        <div class="chapter" id="4.5-appendix-06-glossary">
          <span class="term">Appetite</span><p>Time we want to spend.</p>
          <span class="term">Bet</span><span class="term">Betting table</span><p>Meeting.</p>
        </div>
        """
    )
    content = chapters[0].content
    lists = content.find_all("dl")
    assert len(lists) == 3
    assert [dl.dt.get_text() for dl in lists] == ["Appetite", "Bet", "Betting table"]
    assert lists[0].dd.get_text() == "Time we want to spend."
    assert lists[1].dd is None
    assert lists[2].dd.get_text() == "Meeting."


def test_author_bio_is_restyled() -> None:
    chapters, _ = _sanitized(
        '<div class="chapter" id="4.6-appendix-07-about"><section class="author-bio"><p>Bio</p></section></div>'
    )
    bio = chapters[0].content.find(class_="author-biography")
    assert bio is not None and bio.name == "div"


def test_invalid_attributes_are_dropped() -> None:
    chapters, _ = _sanitized(
        '<div class="chapter" id="one"><p @click="go" foo:bar="1" epub:type="note" data-x="y">Hi</p></div>',
        parser="html.parser",
    )
    paragraph = chapters[0].content.find("p")
    assert "@click" not in paragraph.attrs
    assert "foo:bar" not in paragraph.attrs
    assert paragraph["epub:type"] == "note"
    assert paragraph["data-x"] == "y"
