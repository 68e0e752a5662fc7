from __future__ import annotations

import pytest
from bs4 import FeatureNotFound

import bionic_epub.markup as markup
from bionic_epub.errors import FormatError
from bionic_epub.markup import (
    NodeAction,
    SkipRules,
    clean_document,
    emphasize_text,
    parse_document,
    plan_text_nodes,
    process_document,
    transform_document,
)
from bionic_epub.options import BionicOptions

XHTML_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>Sample title</title></head>
  <body>
{body}
  </body>
</html>
"""


def _xhtml(body: str) -> str:
    return XHTML_TEMPLATE.format(body=body)


def test_emphasize_text_wraps_prefixes() -> None:
    assert emphasize_text("The reading fox") == "<b>Th</b>e <b>readi</b>ng <b>fo</b>x"


def test_emphasize_text_keeps_punctuation_and_short_words() -> None:
    assert emphasize_text("AI: a fox, NASA!") == "AI: a <b>fo</b>x, NASA!"


def test_emphasize_text_escapes_markup_characters() -> None:
    assert emphasize_text("fox & <dog>") == "<b>fo</b>x &amp; &lt;<b>do</b>g&gt;"


def test_emphasize_text_preserves_outer_whitespace() -> None:
    assert emphasize_text("  \n fox\t") == "  \n <b>fo</b>x\t"


def test_exempt_heading_is_trimmed_and_not_emphasized() -> None:
    soup = parse_document(_xhtml("    <h1>  Hello world.  </h1>"))
    transform_document(soup, BionicOptions())
    heading = soup.find("h1")
    assert heading.find("b") is None
    assert heading.string == "Hello world."


def test_title_classes_are_exempt_on_the_element_and_its_ancestors() -> None:
    body = """    <p class="title">Important heading</p>
    <div class="chapter-title"><span>Nested heading words</span></div>
    <header><p>Header paragraph</p></header>
    <p>Regular paragraph</p>"""
    soup = parse_document(_xhtml(body))
    transform_document(soup, BionicOptions())
    paragraphs = soup.find_all("p")
    assert paragraphs[0].find("b") is None
    assert soup.find("span").find("b") is None
    assert paragraphs[1].find("b") is None
    assert paragraphs[2].find("b") is not None
    assert soup.find("title").find("b") is None


def test_exempt_inline_text_keeps_inner_spaces() -> None:
    soup = parse_document(_xhtml("    <h2>Part <i>one</i> begins</h2>"))
    transform_document(soup, BionicOptions())
    assert soup.find("h2").get_text() == "Part one begins"


def test_nested_text_is_emphasized() -> None:
    soup = parse_document(_xhtml("    <p>Some <i>italic text</i> here</p>"))
    transform_document(soup, BionicOptions())
    italic = soup.find("i")
    assert [b.get_text() for b in italic.find_all("b")] == ["ital", "tex"]
    assert soup.find("p").get_text() == "Some italic text here"


@pytest.mark.parametrize(
    "text",
    [
        "  Hello,   world!  ",
        "\n        The quick\tbrown fox jumps over the lazy dog.\n      ",
        "It's a well-known fact -- isn't it? (Yes.)",
        "Numbers 123 and symbols #tag stay; so do CAPS.",
    ],
)
def test_rendered_text_is_unchanged(text: str) -> None:
    soup = parse_document(_xhtml(f"    <p>{text}</p>"))
    before = soup.find("body").get_text()
    transform_document(soup, BionicOptions())
    assert soup.find("body").get_text() == before
    assert soup.find("p").find("b") is not None


def test_whitespace_only_nodes_are_left_alone() -> None:
    soup = parse_document(_xhtml("    <div>\n      <p>reading</p>\n    </div>"))
    plan = plan_text_nodes(soup)
    actions = {str(node): action for node, action in plan}
    assert actions["\n      "] is NodeAction.KEEP
    assert actions["reading"] is NodeAction.EMPHASIZE
    assert actions["Sample title"] is NodeAction.NORMALIZE
    transform_document(soup, BionicOptions())
    assert "<div>\n      <p><b>readi</b>ng</p>\n    </div>" in str(soup)


def test_plan_does_not_mutate_the_tree() -> None:
    soup = parse_document(_xhtml("    <p>Plenty of reading</p>"))
    before = str(soup)
    plan_text_nodes(soup)
    assert str(soup) == before


def test_script_and_style_text_is_untouched() -> None:
    html = """<html><head><style>p { font-weight: bold; }</style></head>
<body><script>var reading = "value";</script><p>reading</p></body></html>"""
    soup = parse_document(html)
    transform_document(soup, BionicOptions())
    assert soup.find("style").string == "p { font-weight: bold; }"
    assert soup.find("script").string == 'var reading = "value";'
    assert soup.find("p").find("b").string == "readi"


def test_comments_are_not_rewritten() -> None:
    soup = parse_document(_xhtml("    <p><!-- editorial comment -->reading</p>"))
    transform_document(soup, BionicOptions())
    assert "<!-- editorial comment -->" in str(soup)


def test_custom_skip_rules_are_honored() -> None:
    rules = SkipRules(tags=frozenset({"blockquote"}), classes=frozenset({"verse"}))
    body = """    <h1>Heading words</h1>
    <blockquote>Quoted passage</blockquote>
    <p class="verse">Poetic lines</p>"""
    soup = parse_document(_xhtml(body))
    transform_document(soup, BionicOptions(), rules)
    assert soup.find("h1").find("b") is not None
    assert soup.find("blockquote").find("b") is None
    assert soup.find("p").find("b") is None


XHTML11_CHAPTER = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.1//EN" "http://www.w3.org/TR/xhtml11/DTD/xhtml11.dtd">
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>Chapter</title></head>
  <body>
    <p>Mr.&nbsp;Smith went&nbsp;home &copy; 1901 &amp; after</p>
  </body>
</html>
"""


def test_nbsp_entity_in_xhtml_chapter_becomes_space() -> None:
    output = process_document(XHTML11_CHAPTER, BionicOptions())
    paragraph = parse_document(output).find("p")
    assert paragraph.get_text() == "Mr. Smith went home © 1901 & after"
    assert {"wen", "hom"} <= {bold.get_text() for bold in paragraph.find_all("b")}


def test_named_entities_resolved_before_xml_parse() -> None:
    text = "<p>a&nbsp;b &eacute; &amp;nbsp; &lt;&unknown;</p>"
    assert markup.resolve_named_entities(text, xml=True) == "<p>a b &#233; &amp;nbsp; &lt;&unknown;</p>"
    assert markup.resolve_named_entities(text, xml=False) == "<p>a b &eacute; &amp;nbsp; &lt;&unknown;</p>"


def test_escaped_entity_text_is_left_readable() -> None:
    source = _xhtml("    <p>Type &amp;nbsp; here</p>")
    before = parse_document(source).find("p").get_text()
    after = parse_document(process_document(source, BionicOptions())).find("p").get_text()
    assert before == "Type &nbsp; here"
    assert after == before


def test_clean_document_keeps_svg_cover_and_referencing_elements() -> None:
    body = """    <div class="cover">
      <svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink"
           viewBox="0 0 600 800">
        <rect width="600" height="800"/>
        <path d="M0 0L1 1"/>
        <use xlink:href="#mark"/>
      </svg>
    </div>
    <script src="a.js"></script>
    <table><tr><td></td><td>cell</td></tr></table>
    <span></span>"""
    soup = parse_document(_xhtml(body))
    removed = clean_document(soup)
    assert removed == 1
    assert soup.find("span") is None
    assert soup.find("rect") is not None
    assert soup.find("path") is not None
    assert soup.find("use") is not None
    assert soup.find("script", src="a.js") is not None
    assert len(soup.find_all("td")) == 2


def test_clean_document_keeps_inline_svg_in_plain_html() -> None:
    soup = parse_document(
        '<html><body><svg><circle r="4"/></svg><iframe src="map.html"></iframe><b></b></body></html>'
    )
    assert clean_document(soup) == 1
    assert soup.find("circle") is not None
    assert soup.find("iframe") is not None


def test_clean_document_removes_empty_elements_once() -> None:
    body = """    <p></p>
    <div><span></span></div>
    <p>Kept<br/><img src="a.png" alt=""/><hr/></p>
    <a id="page7"></a>
    <em>  </em>"""
    soup = parse_document(_xhtml(body))
    removed = clean_document(soup)
    assert removed == 2
    assert soup.find("span") is None
    assert soup.find("div") is not None
    assert soup.find("br") is not None
    assert soup.find("img") is not None
    assert soup.find("hr") is not None
    assert soup.find("a", id="page7") is not None
    assert soup.find("em") is not None
    assert len(soup.find_all("p")) == 1


def test_zero_ratio_leaves_no_empty_emphasis() -> None:
    output = process_document(_xhtml("    <p>Reading words</p>"), BionicOptions(max_prefix_ratio=0.0))
    assert "<b>" not in output
    assert "<b/>" not in output
    assert "Reading words" in output


def test_process_document_round_trips_xhtml() -> None:
    output = process_document(_xhtml("    <p>This reading test</p>"), BionicOptions())
    assert output.startswith("<?xml")
    assert 'xmlns="http://www.w3.org/1999/xhtml"' in output
    assert "<p><b>Thi</b>s <b>readi</b>ng <b>tes</b>t</p>" in output
    assert "<title>Sample title</title>" in output


def test_process_document_handles_plain_html() -> None:
    output = process_document("<html><body><p>Simple reading</p></body></html>")
    assert "<b>Simp</b>le <b>readi</b>ng" in output
    assert not output.startswith("<?xml")


def test_parser_failures_surface_as_format_error(monkeypatch) -> None:
    def _broken(*_args, **_kwargs):
        raise ValueError("parser exploded")

    monkeypatch.setattr(markup, "BeautifulSoup", _broken)
    with pytest.raises(FormatError):
        parse_document("<html><body><p>text</p></body></html>")


def test_missing_html_parser_falls_back_to_stdlib_builder(monkeypatch) -> None:
    real_soup = markup.BeautifulSoup
    used: list[str] = []

    def _picky(text, parser):
        used.append(parser)
        if parser == "lxml":
            raise FeatureNotFound("lxml not installed")
        return real_soup(text, parser)

    monkeypatch.setattr(markup, "BeautifulSoup", _picky)
    soup = parse_document("<html><body><p>text</p></body></html>")
    assert used == ["lxml", "html.parser"]
    assert soup.find("p").get_text() == "text"
