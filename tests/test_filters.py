from ingestor.utils.filters import is_crawlable_link, is_static_asset


def test_is_crawlable_link_accepts_html_pages():
    assert is_crawlable_link("https://example.com/articles/intro")
    assert is_crawlable_link("http://example.com/search?q=climate")


def test_is_crawlable_link_rejects_assets_and_schemes():
    assert not is_crawlable_link("https://example.com/image.JPG")
    assert not is_crawlable_link("https://example.com/report.pdf")
    assert not is_crawlable_link("javascript:alert('x')")
    assert not is_crawlable_link("ftp://example.com/page")
    assert not is_crawlable_link("https:///no-host")


def test_static_asset_checks_path_only():
    assert is_static_asset("https://example.com/bundle.js?v=3")
    assert not is_static_asset("https://example.com/page?file=logo.png")
