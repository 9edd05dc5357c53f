from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from typing import List, Optional, Union
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, ProcessingInstruction

from ingestor.utils.filters import is_crawlable_link
from ingestor.utils.url_utils import path_and_query, strip_fragment


MAX_BODY_CHARS = 200_000
MAX_LINKS = 100

# Text under these tags is never rendered.
NON_VISIBLE_TAGS = {"script", "style", "noscript", "template", "head", "title"}
_SKIPPED_STRING_TYPES = (Comment, Doctype, ProcessingInstruction)

# Attribute values are case-insensitive in practice ("Description", "OG:Description").
DESCRIPTION_NAME = re.compile(r"^description$", re.IGNORECASE)
OG_DESCRIPTION = re.compile(r"^og:description$", re.IGNORECASE)


@dataclass
class ExtractedPage:
    title: Optional[str]
    description: Optional[str]
    body_text: str
    links: List[str] = field(default_factory=list)


def _soup(html: Union[str, BeautifulSoup]) -> BeautifulSoup:
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html, "lxml")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def extract_title(html: Union[str, BeautifulSoup]) -> Optional[str]:
    soup = _soup(html)
    tag = soup.find("title")
    if tag is None:
        return None
    return _clean(tag.get_text())


def extract_description(html: Union[str, BeautifulSoup]) -> Optional[str]:
    soup = _soup(html)
    for attrs in ({"name": DESCRIPTION_NAME}, {"property": OG_DESCRIPTION}):
        for tag in soup.find_all("meta", attrs=attrs):
            content = _clean(tag.get("content"))
            if content:
                return content
    return None


def extract_text(html: Union[str, BeautifulSoup], max_chars: int = MAX_BODY_CHARS) -> str:
    """Visible text nodes of <body>, one per line, truncated to ``max_chars``."""
    soup = _soup(html)
    body = soup.body
    if body is None:
        return ""

    pieces: List[str] = []
    for node in body.find_all(string=True):
        if isinstance(node, _SKIPPED_STRING_TYPES) or not isinstance(node, NavigableString):
            continue
        if any(parent.name in NON_VISIBLE_TAGS for parent in node.parents):
            continue
        text = node.strip()
        if text:
            pieces.append(text)

    return "\n".join(pieces)[:max_chars]


def extract_links(
    base_url: str,
    html: Union[str, BeautifulSoup],
    max_links: int = MAX_LINKS,
) -> List[str]:
    """Same-host http(s) links in document order, deduplicated by path and query."""
    soup = _soup(html)
    base_host = urlparse(base_url).netloc.lower()

    seen: set[str] = set()
    links: List[str] = []
    for tag in soup.find_all("a", href=True):
        if len(links) >= max_links:
            break

        href = tag["href"].strip()
        if not href or href.startswith("#"):
            continue

        try:
            full_url = strip_fragment(urljoin(base_url, href))
            parsed = urlparse(full_url)
        except ValueError:
            continue

        if parsed.netloc.lower() != base_host or not is_crawlable_link(full_url):
            continue

        key = path_and_query(full_url)
        if key in seen:
            continue
        seen.add(key)
        links.append(full_url)

    return links


def extract_page(
    html: str,
    base_url: str,
    *,
    max_links: int = MAX_LINKS,
    max_chars: int = MAX_BODY_CHARS,
) -> ExtractedPage:
    soup = _soup(html)
    return ExtractedPage(
        title=extract_title(soup),
        description=extract_description(soup),
        body_text=extract_text(soup, max_chars=max_chars),
        links=extract_links(base_url, soup, max_links=max_links),
    )


def decode_body(body: bytes) -> str:
    """UTF-8 with replacement characters; no charset sniffing."""
    return body.decode("utf-8", errors="replace")


def content_hash(body: bytes) -> str:
    """Hex SHA-256 of the raw fetched bytes."""
    return hashlib.sha256(body).hexdigest()
