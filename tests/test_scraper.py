"""Tests for the scraper layer: fetcher, sitemap reader and content extractor.

All HTTP calls are mocked with respx; no real network requests are made.
"""

from __future__ import annotations

import httpx
import pytest
import respx

from kbcrawler.errors import FetchError, IncompleteContentError, ParseError
from kbcrawler.scraper.extractor import extract_content, require_complete
from kbcrawler.scraper.fetcher import fetch_url, make_client
from kbcrawler.scraper.models import ParsedContent
from kbcrawler.scraper.sitemap import fetch_sitemap, parse_sitemap

SITEMAP_URL = "https://docs.example.com/help/Sitemap.xml"

SITEMAP_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url>
    <loc>https://docs.example.com/help/a.htm</loc>
    <lastmod>2024-01-02</lastmod>
    <changefreq>weekly</changefreq>
    <priority>0.8</priority>
  </url>
  <url><loc>https://docs.example.com/help/b.htm</loc></url>
  <url><lastmod>2024-01-03</lastmod></url>
  <url><loc> https://docs.example.com/help/c.htm </loc><priority>high</priority></url>
</urlset>
"""

SAMPLE_PAGE = """
<html>
  <head>
    <title>T</title>
    <meta name="keywords" content="a, b">
    <meta name="ProductFeatureTags" content="C">
  </head>
  <body>
    <article>
      <p>X</p>
      <script>alert('no')</script>
      <!-- internal note -->
    </article>
  </body>
</html>
"""


# ---------------------------------------------------------------------------
# fetch_url
# ---------------------------------------------------------------------------

class TestFetchUrl:
    @respx.mock
    def test_returns_raw_page(self) -> None:
        respx.get("https://example.com/page").mock(
            return_value=httpx.Response(200, text="<html><body>Hello</body></html>")
        )
        page = fetch_url("https://example.com/page")
        assert page.status_code == 200
        assert "Hello" in page.html
        assert page.content.startswith(b"<html>")
        assert page.url == "https://example.com/page"

    @respx.mock
    def test_non_2xx_raises_with_status(self) -> None:
        respx.get("https://example.com/missing").mock(return_value=httpx.Response(404))
        with pytest.raises(FetchError) as exc_info:
            fetch_url("https://example.com/missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.url == "https://example.com/missing"

    @respx.mock
    def test_transport_error_raises(self) -> None:
        respx.get("https://example.com/down").mock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(FetchError, match="Request failed"):
            fetch_url("https://example.com/down")

    @respx.mock
    def test_timeout_raises(self) -> None:
        respx.get("https://example.com/slow").mock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(FetchError, match="timed out"):
            fetch_url("https://example.com/slow")

    @respx.mock
    def test_sends_user_agent(self) -> None:
        route = respx.get("https://example.com/ua").mock(return_value=httpx.Response(200, text="ok"))
        with make_client("TestBot/1.0") as client:
            fetch_url("https://example.com/ua", client)
        assert route.calls.last.request.headers["User-Agent"] == "TestBot/1.0"


# ---------------------------------------------------------------------------
# Sitemap
# ---------------------------------------------------------------------------

class TestParseSitemap:
    def test_entries_in_document_order(self) -> None:
        entries = parse_sitemap(SITEMAP_XML)
        assert [e.loc for e in entries] == [
            "https://docs.example.com/help/a.htm",
            "https://docs.example.com/help/b.htm",
            "https://docs.example.com/help/c.htm",
        ]

    def test_optional_fields(self) -> None:
        first, second, third = parse_sitemap(SITEMAP_XML)
        assert first.lastmod == "2024-01-02"
        assert first.changefreq == "weekly"
        assert first.priority == pytest.approx(0.8)
        assert second.lastmod is None
        assert second.priority is None
        # Unparsable priority is dropped, not fatal.
        assert third.priority is None

    def test_without_namespace(self) -> None:
        xml = "<urlset><url><loc>https://e.com/x</loc></url></urlset>"
        assert [e.loc for e in parse_sitemap(xml)] == ["https://e.com/x"]

    def test_empty_urlset(self) -> None:
        assert parse_sitemap("<urlset/>") == []

    def test_malformed_xml_raises(self) -> None:
        with pytest.raises(ParseError, match="Malformed"):
            parse_sitemap(b"<urlset><url><loc>oops</url>", SITEMAP_URL)

    def test_wrong_root_raises(self) -> None:
        with pytest.raises(ParseError, match="urlset"):
            parse_sitemap("<sitemapindex><sitemap/></sitemapindex>")


class TestFetchSitemap:
    @respx.mock
    def test_fetch_and_parse(self) -> None:
        respx.get(SITEMAP_URL).mock(return_value=httpx.Response(200, content=SITEMAP_XML))
        entries = fetch_sitemap(SITEMAP_URL)
        assert len(entries) == 3

    @respx.mock
    def test_http_error_raises_fetch_error(self) -> None:
        respx.get(SITEMAP_URL).mock(return_value=httpx.Response(500))
        with pytest.raises(FetchError):
            fetch_sitemap(SITEMAP_URL)

    @respx.mock
    def test_garbage_body_raises_parse_error(self) -> None:
        respx.get(SITEMAP_URL).mock(return_value=httpx.Response(200, text="<html>not xml"))
        with pytest.raises(ParseError):
            fetch_sitemap(SITEMAP_URL)


# ---------------------------------------------------------------------------
# Content extraction
# ---------------------------------------------------------------------------

class TestExtractContent:
    def test_sample_page(self) -> None:
        parsed = extract_content(SAMPLE_PAGE)
        assert parsed.title == "T"
        assert parsed.tags == ["a", "b", "c"]
        assert "X" in parsed.body
        assert "<script" not in parsed.body
        assert "alert" not in parsed.body
        assert "internal note" not in parsed.body
        assert parsed.is_complete

    def test_keywords_trimmed_and_lower_cased(self) -> None:
        html = (
            '<html><head><title>T</title><meta name="keywords" content="a, B ,c"></head>'
            "<body><article>X</article></body></html>"
        )
        parsed = extract_content(html)
        assert parsed.title == "T"
        assert parsed.tags == ["a", "b", "c"]
        assert parsed.body == "X"

    def test_body_fallback_without_article(self) -> None:
        html = "<html><head><title>T</title></head><body><div>Only body</div></body></html>"
        parsed = extract_content(html)
        assert "Only body" in parsed.body
        assert "<title>" not in parsed.body

    def test_head_only_document_has_no_body(self) -> None:
        parsed = extract_content("<html><head><title>Only Title</title></head></html>")
        assert parsed.title == "Only Title"
        assert parsed.body == ""
        assert not parsed.is_complete
        with pytest.raises(IncompleteContentError):
            require_complete(parsed)

    def test_bodyless_fragment_keeps_content_outside_head(self) -> None:
        parsed = extract_content('<title>T</title><meta name="author" content="A"><p>Loose text</p>')
        assert parsed.title == "T"
        assert parsed.author == "A"
        assert parsed.body == "<p>Loose text</p>"

    def test_styles_removed(self) -> None:
        html = "<title>T</title><body><style>.a{color:red}</style><p>Visible</p></body>"
        parsed = extract_content(html)
        assert "color" not in parsed.body
        assert "Visible" in parsed.body

    def test_whitespace_collapsed(self) -> None:
        html = "<title>  Spaced \n Title </title><article><p>a\n\n   b</p></article>"
        parsed = extract_content(html)
        assert parsed.title == "Spaced Title"
        assert parsed.body == "<p>a b</p>"

    def test_first_non_empty_title(self) -> None:
        html = "<title> </title><title>Second</title><body>x</body>"
        assert extract_content(html).title == "Second"

    def test_author_and_category_hint(self) -> None:
        html = (
            '<head><title>T</title>'
            '<meta name="author" content=" Docs Team ">'
            '<meta name="category-id" content="42"></head><body>x</body>'
        )
        parsed = extract_content(html)
        assert parsed.author == "Docs Team"
        assert parsed.category_hint == "42"
        assert parsed.meta["author"] == "Docs Team"

    def test_tags_keep_duplicates_and_drop_empties(self) -> None:
        html = (
            '<meta name="keywords" content="Alpha,, beta ,alpha">'
            '<meta name="productfeaturetags" content="BETA">'
            "<title>T</title><body>x</body>"
        )
        assert extract_content(html).tags == ["alpha", "beta", "alpha", "beta"]

    def test_missing_title_is_incomplete(self) -> None:
        parsed = extract_content("<body><p>Body only</p></body>")
        assert parsed.title == ""
        assert not parsed.is_complete

    def test_script_only_body_is_empty(self) -> None:
        parsed = extract_content("<title>T</title><body><script>x()</script></body>")
        assert parsed.body == ""
        assert not parsed.is_complete

    def test_accepts_bytes(self) -> None:
        assert extract_content(SAMPLE_PAGE.encode("utf-8")).title == "T"

    def test_non_markup_raises(self) -> None:
        with pytest.raises(ParseError):
            extract_content(None)  # type: ignore[arg-type]


class TestRequireComplete:
    def test_complete_passes_through(self) -> None:
        parsed = ParsedContent(title="T", body="B")
        assert require_complete(parsed) is parsed

    @pytest.mark.parametrize(
        "title, body",
        [("", "B"), ("T", ""), ("", "")],
    )
    def test_incomplete_raises(self, title: str, body: str) -> None:
        with pytest.raises(IncompleteContentError, match="Missing required content"):
            require_complete(ParsedContent(title=title, body=body), "https://e.com/p")
