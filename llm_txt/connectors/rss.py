"""
RSS 2.0 / Atom feed connector.
"""
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse
from xml.etree.ElementTree import Element, ParseError, fromstring

from pydantic import BaseModel

from ..cache import CacheCategory
from ..clock import Deadline
from ..errors import InvalidParameter, UpstreamTransient
from ..models import Embed, FeedItem, Page, Provider, RequestParams
from .base import Connector

FEED = "/rss/feed"

NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "dc": "http://purl.org/dc/elements/1.1/",
}

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


# ===== FEED SCHEMAS =====

class RssEnclosure(BaseModel):
    url: str
    type: Optional[str] = None
    length: Optional[int] = None


class RssEntry(BaseModel):
    title: str = ""
    link: str = ""
    guid: Optional[str] = None
    description: str = ""
    content: Optional[str] = None
    published: Optional[str] = None
    author: Optional[str] = None
    categories: List[str] = []
    enclosure: Optional[RssEnclosure] = None


class RssChannel(BaseModel):
    title: str = ""
    description: str = ""
    link: str = ""
    language: Optional[str] = None
    last_build_date: Optional[str] = None
    generator: Optional[str] = None


class ParsedFeed(BaseModel):
    channel: RssChannel
    entries: List[RssEntry] = []


def strip_html(text: str) -> str:
    """Drop tags and collapse whitespace."""
    return _SPACE_RE.sub(" ", _TAG_RE.sub(" ", text or "")).strip()


def parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 822 (RSS) or ISO 8601 (Atom) date."""
    if not value:
        return None
    value = value.strip()
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _text(node: Optional[Element], path: str) -> Optional[str]:
    if node is None:
        return None
    found = node.find(path, NS)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def _parse_rss(root: Element) -> Dict[str, Any]:
    channel = root.find("channel")
    if channel is None:
        raise UpstreamTransient("RSS document has no <channel>")

    entries = []
    for item in channel.findall("item"):
        enclosure = item.find("enclosure")
        length = enclosure.get("length") if enclosure is not None else None
        entries.append({
            "title": _text(item, "title") or "",
            "link": _text(item, "link") or "",
            "guid": _text(item, "guid"),
            "description": _text(item, "description") or "",
            "content": _text(item, "content:encoded"),
            "published": _text(item, "pubDate") or _text(item, "dc:date"),
            "author": _text(item, "author") or _text(item, "dc:creator"),
            "categories": [c.text.strip() for c in item.findall("category") if c.text],
            "enclosure": {
                "url": enclosure.get("url"),
                "type": enclosure.get("type"),
                "length": int(length) if length and length.isdigit() else None,
            } if enclosure is not None and enclosure.get("url") else None,
        })

    return {
        "channel": {
            "title": _text(channel, "title") or "",
            "description": _text(channel, "description") or "",
            "link": _text(channel, "link") or "",
            "language": _text(channel, "language"),
            "last_build_date": _text(channel, "lastBuildDate"),
            "generator": _text(channel, "generator"),
        },
        "entries": entries,
    }


def _atom_link(node: Element) -> str:
    for link in node.findall("atom:link", NS):
        if link.get("rel", "alternate") == "alternate" and link.get("href"):
            return link.get("href")
    return ""


def _parse_atom(root: Element) -> Dict[str, Any]:
    entries = []
    for entry in root.findall("atom:entry", NS):
        entries.append({
            "title": _text(entry, "atom:title") or "",
            "link": _atom_link(entry),
            "guid": _text(entry, "atom:id"),
            "description": _text(entry, "atom:summary") or "",
            "content": _text(entry, "atom:content"),
            "published": _text(entry, "atom:published") or _text(entry, "atom:updated"),
            "author": _text(entry, "atom:author/atom:name"),
            "categories": [c.get("term") for c in entry.findall("atom:category", NS) if c.get("term")],
        })

    return {
        "channel": {
            "title": _text(root, "atom:title") or "",
            "description": _text(root, "atom:subtitle") or "",
            "link": _atom_link(root),
            "last_build_date": _text(root, "atom:updated"),
            "generator": _text(root, "atom:generator"),
        },
        "entries": entries,
    }


def parse_feed(document: bytes) -> Dict[str, Any]:
    """
    Parse an RSS 2.0 or Atom document into plain dicts.

    Raises:
        UpstreamTransient: If the document is not a recognizable feed
    """
    try:
        root = fromstring(document)
    except ParseError as e:
        raise UpstreamTransient(f"Invalid feed XML: {e}") from e

    if root.tag == "rss" or root.find("channel") is not None:
        return _parse_rss(root)
    if root.tag == f"{{{NS['atom']}}}feed":
        return _parse_atom(root)
    raise UpstreamTransient(f"Unsupported feed format: <{root.tag}>")


def transform_entry(entry: RssEntry, include_content: bool) -> Optional[FeedItem]:
    """Convert a feed entry into a FeedItem; entries with no identity are dropped."""
    item_id = entry.guid or entry.link or entry.title
    if not item_id:
        return None
    published = parse_date(entry.published)
    embeds = []
    if entry.enclosure:
        embeds.append(Embed(type=entry.enclosure.type or "enclosure", url=entry.enclosure.url))
    body = strip_html(entry.description)
    if include_content and entry.content:
        body = strip_html(entry.content)
    return FeedItem(
        id=item_id,
        author=entry.author or "",
        body=body,
        timestamp=published.isoformat() if published else (entry.published or ""),
        title=entry.title,
        link=entry.link,
        embeds=embeds,
        extra={"categories": entry.categories},
    )


def _newest_first(indexed: Tuple[int, FeedItem]) -> Tuple[int, float, int]:
    position, item = indexed
    published = parse_date(item.timestamp)
    if published is None:
        return (1, 0.0, position)
    return (0, -published.timestamp(), position)


class RssConnector(Connector):
    """Fetches an RSS or Atom feed. Feeds are a single page."""

    provider = Provider.RSS
    page_size = 0  # whole document

    def __init__(self, *args: Any, feed_ttl: int = 60, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.feed_ttl = feed_ttl
        self.headers.setdefault(
            "accept", "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"
        )

    def _resolve(self, handle: str, deadline: Optional[Deadline]) -> str:
        parsed = urlparse(handle)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise InvalidParameter(f"Invalid feed URL: {handle}")
        return handle

    def _feed(self, url: str, deadline: Optional[Deadline]) -> ParsedFeed:
        """Download and parse the feed; shared by profile and page fetches."""
        def download() -> ParsedFeed:
            response = self._request(FEED, url, deadline=deadline)
            return self._validate(ParsedFeed, parse_feed(response.content), "feed")

        return self.cache.get_or_set(
            f"feed:{url}", download, ttl=self.feed_ttl, category=CacheCategory.PROFILE,
        )

    def fetch_primary(self, canonical_id: str, params: RequestParams,
                      deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        feed = self._feed(canonical_id, deadline)
        channel = feed.channel
        return {
            "title": channel.title,
            "description": strip_html(channel.description),
            "link": channel.link or canonical_id,
            "language": channel.language,
            "last_build_date": channel.last_build_date,
            "generator": channel.generator,
            "item_count": len(feed.entries),
        }

    def fetch_page(self, canonical_id: str, cursor: Optional[str], params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Page:
        feed = self._feed(canonical_id, deadline)
        items = [
            item for item in (transform_entry(e, params.include_content) for e in feed.entries)
            if item is not None
        ]
        if len(items) < len(feed.entries):
            self.log.warning(f"Dropped {len(feed.entries) - len(items)} feed entries with no id")

        # Newest first; undated entries keep document order after dated ones
        ordered = sorted(enumerate(items), key=_newest_first)
        return Page(items=[item for _, item in ordered], next_cursor=None)

    def count_hint(self, canonical_id: str, params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Optional[int]:
        return len(self._feed(canonical_id, deadline).entries)
