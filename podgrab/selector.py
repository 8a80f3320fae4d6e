"""Entry selection: which feed entries a run acts on, and in what order."""

import logging
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from podgrab.archive import ArchiveLedger, get_archive_key
from podgrab.exceptions import ConfigError
from podgrab.media import get_image_url, get_url_ext, resolve_media
from podgrab.models import Entry, Feed, SecondaryDownload, SelectedEntry
from podgrab.naming import get_archive_filename, get_filename, get_safe_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectionCriteria:
    """Filters applied while scanning a feed."""

    offset: int = 0
    limit: int | None = None
    reverse: bool = False
    episode_regex: str | None = None
    before: date | None = None
    after: date | None = None
    ledger: ArchiveLedger | None = None
    include_episode_images: bool = False

    def __post_init__(self):
        if self.offset < 0:
            raise ConfigError("offset must be 0 or greater")
        if self.limit is not None and self.limit < 1:
            raise ConfigError("limit must be 1 or greater")
        if self.episode_regex:
            try:
                re.compile(self.episode_regex)
            except re.error as e:
                raise ConfigError(f"Invalid episode regex: {e}") from e


def scan_indexes(length: int, offset: int, reverse: bool) -> range:
    """Indexes visited for a feed of ``length`` entries.

    Forward scans run from ``offset`` to the end; reverse scans run from
    ``length - 1 - offset`` down to 0, so under reverse the offset counts
    from the oldest end.
    """
    if reverse:
        return range(length - 1 - offset, -1, -1)
    return range(offset, length)


def entry_archive_key(entry: Entry, prefix: str, ext: str | None) -> str:
    return get_archive_key(prefix, get_archive_filename(entry.published, entry.title, ext))


def _within_dates(entry: Entry, before: date | None, after: date | None) -> bool:
    if not before and not after:
        return True
    if entry.published is None:
        return False
    published_day = entry.published.date()
    if before and published_day > before:
        return False
    if after and published_day < after:
        return False
    return True


def select_entries(
    feed: Feed,
    criteria: SelectionCriteria,
    archive_prefix: str,
    base_path: Path | None = None,
    episode_template: str = "{{release_date}}-{{title}}",
) -> list[SelectedEntry]:
    """Select the entries to download, in visitation order.

    Args:
        feed: The parsed feed.
        criteria: Filters, ledger and image options.
        archive_prefix: Feed identity used in archive keys (host + path).
        base_path: Output directory; needed for episode image paths.
        episode_template: Filename template for episode artifacts.

    Returns:
        Matching entries, truncated to ``criteria.limit``.
    """
    regex = re.compile(criteria.episode_regex) if criteria.episode_regex else None
    archived = criteria.ledger.load() if criteria.ledger else set()
    selected: list[SelectedEntry] = []

    for index in scan_indexes(len(feed.entries), criteria.offset, criteria.reverse):
        entry = feed.entries[index]

        if regex and entry.title and not regex.search(entry.title):
            continue
        if not _within_dates(entry, criteria.before, criteria.after):
            continue

        media = resolve_media(entry)
        if entry_archive_key(entry, archive_prefix, media.ext) in archived:
            logger.debug("Skipping archived entry %r", entry.title)
            continue

        item = SelectedEntry(entry=entry, original_index=index)
        if criteria.include_episode_images:
            image = _episode_image(item, feed, media.url, archive_prefix, base_path, episode_template)
            if image:
                item.secondary_downloads.append(image)
        selected.append(item)

    if criteria.limit:
        return selected[:criteria.limit]
    return selected


def _episode_image(
    item: SelectedEntry,
    feed: Feed,
    media_url: str | None,
    archive_prefix: str,
    base_path: Path | None,
    episode_template: str,
) -> SecondaryDownload | None:
    image_url = get_image_url(item.entry)
    if not image_url:
        return None
    ext = get_url_ext(image_url)
    name = get_filename(
        item.entry, feed, media_url, ext, episode_template,
        episode_num=item.episode_number(feed),
    )
    folder = get_safe_name(item.entry.guid or "") or "images"
    return SecondaryDownload(
        url=image_url,
        output_path=Path(base_path or ".").resolve() / folder / name,
        archive_key=entry_archive_key(item.entry, archive_prefix, ext),
    )
