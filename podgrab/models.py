"""Data models for the podgrab download pipeline."""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path


@dataclass(frozen=True)
class Enclosure:
    """The media attachment of a feed entry."""

    url: str
    type: str = ""
    length: str = ""


@dataclass(frozen=True)
class Entry:
    """One item of a syndicated feed (an episode)."""

    title: str | None = None
    published: datetime | None = None  # timezone-aware, UTC
    pub_date: str | None = None  # publish string as found in the feed
    guid: str | None = None
    link: str | None = None
    enclosure: Enclosure | None = None
    image: dict | None = None  # {"url": ..., "link": ...}
    itunes: dict = field(default_factory=dict)
    creator: str | None = None
    content: str | None = None
    content_snippet: str | None = None
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Object graph used for field projection and metadata export."""
        data = {
            "title": self.title,
            "link": self.link,
            "pub_date": self.pub_date,
            "iso_date": self.published.isoformat() if self.published else None,
            "guid": self.guid,
            "creator": self.creator,
            "content": self.content,
            "content_snippet": self.content_snippet,
            "itunes": dict(self.itunes),
            "raw": self.raw,
        }
        if self.enclosure:
            data["enclosure"] = {
                "url": self.enclosure.url,
                "type": self.enclosure.type,
                "length": self.enclosure.length,
            }
        if self.image:
            data["image"] = dict(self.image)
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class Feed:
    """A fetched feed document. Entries are newest-first by convention."""

    title: str | None = None
    description: str | None = None
    link: str | None = None
    feed_url: str | None = None
    managing_editor: str | None = None
    image: dict | None = None  # {"url": ..., "title": ..., "link": ...}
    itunes: dict = field(default_factory=dict)
    entries: tuple[Entry, ...] = ()
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Feed-level object graph, without the entries."""
        data = {
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "feed_url": self.feed_url,
            "managing_editor": self.managing_editor,
            "image": dict(self.image) if self.image else None,
            "itunes": dict(self.itunes),
            "raw": self.raw,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class SecondaryDownload:
    """A non-primary artifact (episode image) fetched alongside an entry."""

    url: str
    output_path: Path
    archive_key: str


@dataclass
class SelectedEntry:
    """An entry chosen for download, annotated at selection time."""

    entry: Entry
    original_index: int
    secondary_downloads: list[SecondaryDownload] = field(default_factory=list)

    def episode_number(self, feed: Feed) -> int:
        """Episode number counting from the oldest entry (oldest = 1)."""
        return len(feed.entries) - self.original_index


class DownloadOutcome(enum.Enum):
    """How the pipeline finished for one entry."""

    SKIPPED_ARCHIVED = "skipped_archived"
    SKIPPED_EXISTS = "skipped_exists"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def completed(self) -> bool:
        return self in (DownloadOutcome.SUCCEEDED, DownloadOutcome.SKIPPED_EXISTS)


@dataclass
class EntryResult:
    """Outcome of one pipeline invocation."""

    outcome: DownloadOutcome
    had_errors: bool = False
    error: str | None = None


@dataclass
class RunSummary:
    """Aggregated outcome of a scheduler run."""

    total: int
    succeeded: int = 0
    had_errors: bool = False


@dataclass(frozen=True)
class RunOptions:
    """Every parameter of a single download run."""

    url: str
    out_dir: str
    episode_template: str
    archive: str | None = None
    include_meta: tuple[str, ...] | None = None
    include_episode_meta: tuple[str, ...] | None = None
    metadata_format: str = "json"
    include_episode_images: bool = False
    offset: int = 0
    limit: int | None = None
    episode_regex: str | None = None
    after: date | None = None
    before: date | None = None
    add_mp3_metadata: bool = False
    bitrate: str | None = None
    mono: bool = False
    override: bool = False
    reverse: bool = False
    exec_command: str | None = None
    threads: int = 1
    filter_url_tracking: bool = False
    info: bool = False
    list_format: str | None = None
