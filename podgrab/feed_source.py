"""Feed retrieval and parsing into Feed/Entry models.

Structured fields come from feedparser. The original XML of the channel and
of each item is captured separately with BeautifulSoup and attached as
``raw``, using ``$`` for attributes and ``_`` for text, so metadata exports
can include fields feedparser does not normalize.
"""

import logging
from datetime import datetime, timezone
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup, Tag

from config import settings
from podgrab.exceptions import FeedFetchError
from podgrab.fields import ATTRIBUTES_KEY, TEXT_KEY
from podgrab.models import Enclosure, Entry, Feed

logger = logging.getLogger(__name__)

ITEM_TAGS = ("item", "entry")
ITUNES_ENTRY_FIELDS = {
    "itunes_episode": "episode",
    "itunes_season": "season",
    "itunes_duration": "duration",
    "itunes_explicit": "explicit",
    "itunes_episodetype": "episode_type",
}


def _validate_url(url: str) -> None:
    """Validate that the URL is an absolute http(s) URL."""
    try:
        result = urlparse(url)
    except ValueError as e:
        raise FeedFetchError(f"Invalid URL: {url}") from e
    if result.scheme not in ("http", "https") or not result.netloc:
        raise FeedFetchError(f"Invalid URL: {url}")


def fetch_feed(url: str, timeout: int | None = None) -> Feed:
    """Fetch and parse an RSS or Atom feed.

    Raises:
        FeedFetchError: If the URL is invalid, unreachable, or not a feed.
    """
    _validate_url(url)
    logger.info("Fetching feed from %s", url)
    try:
        resp = requests.get(
            url,
            timeout=timeout or settings.request_timeout,
            headers={"User-Agent": settings.user_agent},
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise FeedFetchError(f"Unable to fetch feed: {e}") from e
    return parse_feed(resp.content, feed_url=url)


def parse_feed(content: bytes | str, feed_url: str | None = None) -> Feed:
    """Parse feed XML into a Feed with raw element data attached."""
    parsed = feedparser.parse(content)
    if parsed.bozo and not parsed.entries and not parsed.feed.get("title"):
        raise FeedFetchError(
            f"Unable to parse RSS URL: {parsed.get('bozo_exception', 'not a feed')}"
        )
    if parsed.bozo:
        logger.warning("Feed has formatting issues: %s", parsed.get("bozo_exception"))

    channel_raw, item_raws = _extract_raw(content)
    if len(item_raws) != len(parsed.entries):
        logger.debug(
            "Raw item count %d differs from parsed entry count %d",
            len(item_raws), len(parsed.entries),
        )
        item_raws = [{} for _ in parsed.entries]

    entries = tuple(
        _parse_entry(entry, raw) for entry, raw in zip(parsed.entries, item_raws)
    )
    return _parse_channel(parsed.feed, entries, channel_raw, feed_url)


def _parse_channel(channel, entries: tuple[Entry, ...], raw: dict, feed_url: str | None) -> Feed:
    image_info = channel.get("image") or {}
    image = None
    if image_info.get("href"):
        image = {
            "url": image_info["href"],
            "title": image_info.get("title"),
            "link": image_info.get("link"),
        }
        image = {k: v for k, v in image.items() if v}

    itunes = {}
    if image_info.get("href"):
        itunes["image"] = image_info["href"]
    if channel.get("author"):
        itunes["author"] = channel["author"]
    if channel.get("itunes_explicit") is not None:
        itunes["explicit"] = channel["itunes_explicit"]
    categories = [t.get("term") for t in channel.get("tags", []) if t.get("term")]
    if categories:
        itunes["categories"] = categories

    return Feed(
        title=channel.get("title"),
        description=channel.get("description") or channel.get("subtitle"),
        link=channel.get("link"),
        feed_url=feed_url,
        managing_editor=channel.get("author"),
        image=image,
        itunes=itunes,
        entries=entries,
        raw=raw,
    )


def _parse_entry(entry, raw: dict) -> Entry:
    content = None
    if entry.get("content"):
        content = entry["content"][0].get("value")
    if not content:
        content = entry.get("summary")
    snippet = None
    if content:
        snippet = BeautifulSoup(content, "html.parser").get_text(" ", strip=True)

    itunes = {}
    image_info = entry.get("image") or {}
    if image_info.get("href"):
        itunes["image"] = image_info["href"]
    if entry.get("author"):
        itunes["author"] = entry["author"]
    for source, name in ITUNES_ENTRY_FIELDS.items():
        if entry.get(source) is not None:
            itunes[name] = entry[source]

    image = None
    thumbnails = entry.get("media_thumbnail") or []
    if thumbnails and thumbnails[0].get("url"):
        image = {"url": thumbnails[0]["url"]}

    return Entry(
        title=entry.get("title"),
        published=_parse_date(entry),
        pub_date=entry.get("published") or entry.get("updated"),
        guid=entry.get("id") or entry.get("link"),
        link=entry.get("link"),
        enclosure=_parse_enclosure(entry),
        image=image,
        itunes=itunes,
        creator=entry.get("author"),
        content=content,
        content_snippet=snippet,
        raw=raw,
    )


def _parse_enclosure(entry) -> Enclosure | None:
    for enclosure in entry.get("enclosures") or []:
        url = enclosure.get("href") or enclosure.get("url")
        if url:
            return Enclosure(
                url=url,
                type=enclosure.get("type", ""),
                length=str(enclosure.get("length", "")),
            )
    return None


def _parse_date(entry) -> datetime | None:
    """Publication date of a feedparser entry as an aware UTC datetime."""
    for field in ("published_parsed", "updated_parsed"):
        time_struct = entry.get(field)
        if time_struct:
            try:
                return datetime(*time_struct[:6], tzinfo=timezone.utc)
            except (TypeError, ValueError):
                continue
    return None


# --- Raw document capture ---


def _tag_name(tag: Tag) -> str:
    return f"{tag.prefix}:{tag.name}" if tag.prefix else tag.name


def element_to_raw(tag: Tag):
    """Convert an XML element into plain data.

    Leaf elements without attributes become their text. Everything else
    becomes a dict holding ``$`` (attributes), ``_`` (text) and a list per
    child element name.
    """
    children = [child for child in tag.children if isinstance(child, Tag)]
    attrs = {str(k): str(v) for k, v in tag.attrs.items()}
    if not children and not attrs:
        return tag.get_text(strip=True)

    node = {}
    if attrs:
        node[ATTRIBUTES_KEY] = attrs
    text = "".join(tag.find_all(string=True, recursive=False)).strip()
    if text:
        node[TEXT_KEY] = text
    for child in children:
        node.setdefault(_tag_name(child), []).append(element_to_raw(child))
    return node


def _extract_raw(content: bytes | str) -> tuple[dict, list[dict]]:
    soup = BeautifulSoup(content, "xml")
    channel = soup.find("channel") or soup.find("feed")
    if channel is None:
        return {}, []

    items = channel.find_all(ITEM_TAGS, recursive=False)
    if not items:
        # RSS 1.0 keeps items next to the channel
        items = soup.find_all("item")

    channel_raw = element_to_raw(channel)
    if isinstance(channel_raw, dict):
        for tag in ITEM_TAGS:
            channel_raw.pop(tag, None)
    else:
        channel_raw = {}

    item_raws = []
    for item in items:
        raw = element_to_raw(item)
        item_raws.append(raw if isinstance(raw, dict) else {TEXT_KEY: raw})
    return channel_raw, item_raws
