import pytest
from lxml import etree

from ingestor.parsing.feeds import iter_sitemap_locs, parse_feed_links


RSS = b"""<?xml version="1.0"?>
<rss version="2.0">
  <channel>
    <title>News</title>
    <link>https://example.com/</link>
    <item><title>One</title><link>https://example.com/one</link></item>
    <item><title>No link</title></item>
    <item><title>Two</title><link> https://example.com/two </link></item>
  </channel>
</rss>
"""

ATOM = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Blog</title>
  <link href="https://example.com/" rel="alternate"/>
  <entry>
    <title>First</title>
    <link rel="edit" href="https://example.com/edit/1"/>
    <link rel="alternate" href="https://example.com/posts/1"/>
  </entry>
  <entry>
    <title>Second</title>
    <link href="https://example.com/posts/2"/>
  </entry>
</feed>
"""

SITEMAP = b"""<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.com/</loc><lastmod>2024-01-01</lastmod></url>
  <url><loc> https://example.com/about </loc></url>
  <url><lastmod>2024-01-01</lastmod></url>
</urlset>
"""


def test_parse_rss_item_links():
    assert parse_feed_links(RSS) == ["https://example.com/one", "https://example.com/two"]


def test_parse_atom_prefers_alternate_link():
    assert parse_feed_links(ATOM) == ["https://example.com/posts/1", "https://example.com/posts/2"]


def test_html_is_not_a_feed():
    assert parse_feed_links(b"<html><body><p>Hi</p></body></html>") is None
    assert parse_feed_links(b"") is None


def test_sitemap_locs_stream_in_order():
    assert list(iter_sitemap_locs(SITEMAP)) == ["https://example.com/", "https://example.com/about"]


def test_sitemap_parse_error_keeps_earlier_locs():
    broken = SITEMAP.replace(b"</urlset>", b"<url><loc>https://example.com/x</loc>")
    seen = []

    with pytest.raises(etree.XMLSyntaxError):
        for loc in iter_sitemap_locs(broken):
            seen.append(loc)

    assert seen[:2] == ["https://example.com/", "https://example.com/about"]
