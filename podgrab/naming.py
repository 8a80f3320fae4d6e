"""Filename and folder templating for downloaded artifacts."""

import os
import re
from datetime import datetime
from urllib.parse import unquote, urlparse

from podgrab.models import Entry, Feed

MAX_NAME_LENGTH = 200

TEMPLATE_VAR_PATTERN = re.compile(r"{{\s*([a-z_]+)\s*}}")
UNSAFE_CHARS_PATTERN = re.compile(r'[<>:"/\\|?*\x00-\x1f]')


def get_safe_name(name: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Make a single path component safe for any common filesystem.

    Args:
        name: Raw name, e.g. an episode title.
        max_length: Maximum length of the result.

    Returns:
        The name with path separators and reserved characters replaced by
        underscores, whitespace collapsed and trailing dots/spaces removed.
    """
    # collapse first: newlines and tabs are control characters too
    safe = re.sub(r"\s+", " ", name or "").strip()
    safe = UNSAFE_CHARS_PATTERN.sub("_", safe)
    safe = safe[:max_length].rstrip(". ")
    return safe


def get_temp_path(path) -> str:
    return f"{path}.tmp"


def format_release_date(published: datetime | None) -> str:
    """YYYYMMDD in UTC, or an empty string for undated entries."""
    return published.strftime("%Y%m%d") if published else ""


def get_archive_filename(published: datetime | None, name: str | None, ext: str | None) -> str:
    """Deterministic artifact name used inside archive keys."""
    release_date = format_release_date(published)
    base = f"{release_date}-{name or ''}" if release_date else (name or "")
    return f"{get_safe_name(base)}{ext or ''}"


def _fill_template(template: str, values: dict[str, str]) -> str:
    return TEMPLATE_VAR_PATTERN.sub(lambda m: values.get(m.group(1), ""), template)


def _url_filename(url: str | None) -> str:
    if not url:
        return ""
    basename = os.path.basename(unquote(urlparse(url).path))
    return os.path.splitext(basename)[0]


def get_filename(
    entry: Entry,
    feed: Feed,
    url: str | None,
    ext: str | None,
    template: str,
    episode_num: int | None = None,
) -> str:
    """Render an episode filename from a template such as ``{{release_date}}-{{title}}``."""
    published = entry.published
    values = {
        "title": entry.title or "",
        "release_date": format_release_date(published),
        "release_year": published.strftime("%Y") if published else "",
        "release_month": published.strftime("%m") if published else "",
        "release_day": published.strftime("%d") if published else "",
        "episode_num": str(episode_num) if episode_num is not None else "",
        "url_filename": _url_filename(url),
        "podcast_title": feed.title or "",
        "podcast_link": feed.link or "",
        "duration": str(entry.itunes.get("duration") or ""),
        "guid": entry.guid or "",
    }
    name = get_safe_name(_fill_template(template, values)) or "episode"
    return f"{name}{ext or ''}"


def get_folder_name(feed: Feed, template: str) -> str:
    """Render a directory (or file) path template with feed-level variables.

    Only the substituted values are sanitized; separators written in the
    template itself are kept.
    """
    values = {
        "podcast_title": get_safe_name(feed.title or "") or "podcast",
        "podcast_link": get_safe_name(feed.link or ""),
    }
    return _fill_template(template, values)
