"""RSS/Atom and sitemap parsing for URL discovery."""

from __future__ import annotations

from io import BytesIO
from typing import Iterator, List, Optional

from bs4 import BeautifulSoup, Tag
from lxml import etree


FEED_ROOTS = {"rss", "rdf", "feed"}


def _local_name(name: Optional[str]) -> str:
    if not name:
        return ""
    if "}" in name:
        name = name.rsplit("}", 1)[1]
    return name.rsplit(":", 1)[-1].lower()


def _root_tag(soup: BeautifulSoup) -> Optional[Tag]:
    for child in soup.contents:
        if isinstance(child, Tag):
            return child
    return None


def _rss_item_link(item: Tag) -> Optional[str]:
    for child in item.find_all(True, recursive=False):
        if child.name == "link":
            text = child.get_text(strip=True)
            if text:
                return text
            if child.get("href"):
                return child["href"].strip()
    return None


def _atom_entry_link(entry: Tag) -> Optional[str]:
    candidates = [
        child
        for child in entry.find_all(True, recursive=False)
        if _local_name(child.name) == "link" and child.get("href")
    ]
    for child in candidates:
        if child.get("rel", "alternate") == "alternate":
            return child["href"].strip()
    if candidates:
        return candidates[0]["href"].strip()
    return None


def parse_feed_links(data: bytes) -> Optional[List[str]]:
    """First link of every entry, or None when ``data`` is not an RSS/Atom feed."""
    soup = BeautifulSoup(data, "xml")
    root = _root_tag(soup)
    if root is None or _local_name(root.name) not in FEED_ROOTS:
        return None

    links: List[str] = []
    if _local_name(root.name) == "feed":
        for entry in root.find_all("entry"):
            link = _atom_entry_link(entry)
            if link:
                links.append(link)
    else:
        for item in root.find_all("item"):
            link = _rss_item_link(item)
            if link:
                links.append(link)
    return links


def iter_sitemap_locs(data: bytes) -> Iterator[str]:
    """Stream ``<url><loc>`` values of a sitemap urlset.

    Raises lxml.etree.XMLSyntaxError when the document is not well-formed;
    values yielded before the error stay valid.
    """
    context = etree.iterparse(
        BytesIO(data),
        events=("end",),
        tag="{*}url",
        resolve_entities=False,
        no_network=True,
    )
    for _, elem in context:
        loc = elem.find("{*}loc")
        if loc is not None and loc.text and loc.text.strip():
            yield loc.text.strip()

        elem.clear()
        while elem.getprevious() is not None:
            del elem.getparent()[0]
