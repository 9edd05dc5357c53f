from ingestor.parsing.html_extractor import (
    content_hash,
    decode_body,
    extract_description,
    extract_links,
    extract_page,
    extract_text,
    extract_title,
)
from ingestor.utils.language import detect_language


SAMPLE_HTML = """
<html>
  <head>
    <title> Sample Page </title>
    <meta property="og:description" content="OG summary">
    <style>body { color: red; }</style>
  </head>
  <body>
    <h1>Heading</h1>
    <p>First paragraph.</p>
    <script>var hidden = "script text";</script>
    <noscript>Enable JS</noscript>
    <!-- a comment -->
    <a href="/about#team">About</a>
    <a href="https://example.com/about">About again</a>
    <a href="https://other.com/page">External</a>
    <a href="/logo.png">Logo</a>
    <a href="mailto:hello@example.com">Mail</a>
    <a href="#top">Top</a>
    <a href="contact?lang=en">Contact</a>
  </body>
</html>
"""


def test_extract_title_and_description():
    assert extract_title(SAMPLE_HTML) == "Sample Page"
    assert extract_description(SAMPLE_HTML) == "OG summary"


def test_meta_description_preferred_over_og():
    html = (
        '<html><head><meta property="og:description" content="og">'
        '<meta name="description" content="plain"></head><body></body></html>'
    )

    assert extract_description(html) == "plain"


def test_description_attributes_match_case_insensitively():
    html = '<html><head><meta name="Description" content="Mixed case"></head></html>'
    assert extract_description(html) == "Mixed case"

    html = '<html><head><meta property="OG:Description" content="Upper og"></head></html>'
    assert extract_description(html) == "Upper og"


def test_missing_title_and_description_are_none():
    html = "<html><head><title>   </title></head><body>x</body></html>"

    assert extract_title(html) is None
    assert extract_description(html) is None


def test_extract_text_skips_non_visible_content():
    text = extract_text(SAMPLE_HTML)
    lines = text.splitlines()

    assert lines[:2] == ["Heading", "First paragraph."]
    assert "script text" not in text
    assert "color: red" not in text
    assert "Enable JS" not in text
    assert "a comment" not in text
    assert "Sample Page" not in text


def test_extract_text_truncates():
    html = "<html><body><p>" + "a" * 50 + "</p></body></html>"

    assert extract_text(html, max_chars=10) == "a" * 10


def test_extract_links_keeps_same_host_in_order():
    links = extract_links("https://example.com/index.html", SAMPLE_HTML)

    assert links == [
        "https://example.com/about",
        "https://example.com/contact?lang=en",
    ]


def test_extract_links_respects_cap():
    html = "<html><body>" + "".join(f'<a href="/p{i}">{i}</a>' for i in range(10)) + "</body></html>"

    links = extract_links("https://example.com/", html, max_links=3)

    assert links == ["https://example.com/p0", "https://example.com/p1", "https://example.com/p2"]


def test_extract_page_combines_fields():
    html = "<title>Example</title><body>Hello <a href='/a'>A</a></body>"

    page = extract_page(html, "https://example.org/")

    assert page.title == "Example"
    assert page.description is None
    assert page.body_text.startswith("Hello")
    assert page.links == ["https://example.org/a"]


def test_decode_body_and_hash():
    body = b"caf\xc3\xa9 \xff"

    assert decode_body(body) == "caf\u00e9 \ufffd"
    assert content_hash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_detect_language():
    english = (
        "The climate of the planet is changing quickly, and scientists around the world "
        "are studying how rising temperatures affect oceans, forests and cities."
    )

    assert detect_language(english) == "en"
    assert detect_language("Hello") is None
    assert detect_language("") is None
