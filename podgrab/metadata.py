"""Feed and episode metadata sidecars (JSON or XML) and episode listings."""

import io
import json
import logging
import re
from pathlib import Path

from lxml import etree
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from podgrab.archive import ArchiveLedger
from podgrab.exceptions import ArchiveWriteError, MetadataError
from podgrab.fields import ATTRIBUTES_KEY, RESERVED_KEYS, TEXT_KEY, project
from podgrab.models import DownloadOutcome, Entry, Feed, SelectedEntry

logger = logging.getLogger(__name__)

METADATA_FORMATS = ("json", "xml")
DEFAULT_ROOT_NAME = "root"
LIST_COLUMNS = ("episode_num", "title", "pub_date")
LIST_CONSOLE_WIDTH = 1000


# --- XML building ---


def _safe_tag(name) -> str:
    tag = re.sub(r"[^A-Za-z0-9_.\-]", "_", str(name))
    if not re.match(r"[A-Za-z_]", tag):
        tag = f"_{tag}"
    return tag


def _text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _fill(element, data: dict) -> None:
    for key, value in data.items():
        if key == ATTRIBUTES_KEY and isinstance(value, dict):
            for attr, attr_value in value.items():
                element.set(_safe_tag(attr), _text(attr_value))
        elif key == TEXT_KEY:
            element.text = _text(value)
        else:
            _append(element, key, value)


def _append(parent, name, value) -> None:
    if isinstance(value, (list, tuple)):
        for item in value:
            _append(parent, name, item)
        return
    child = etree.SubElement(parent, _safe_tag(name))
    if isinstance(value, dict):
        _fill(child, value)
    elif value is not None:
        child.text = _text(value)


def build_xml(data: dict) -> bytes:
    """Serialize projected metadata as XML.

    A single top-level mapping becomes the document root; anything else is
    wrapped in ``<root>``.
    """
    keys = [k for k in data if k not in RESERVED_KEYS]
    if len(data) == 1 and len(keys) == 1 and isinstance(data[keys[0]], dict):
        root = etree.Element(_safe_tag(keys[0]))
        _fill(root, data[keys[0]])
    else:
        root = etree.Element(DEFAULT_ROOT_NAME)
        _fill(root, data)
    return etree.tostring(
        root, pretty_print=True, xml_declaration=True, encoding="UTF-8", standalone=True
    )


# --- Sidecar files ---


def write_meta(path: Path, data: dict) -> None:
    """Write metadata in the format given by the file extension."""
    path = Path(path)
    fmt = path.suffix.lstrip(".")
    if fmt not in METADATA_FORMATS:
        raise MetadataError(f"Invalid metadata path {path}")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if fmt == "json":
            path.write_text(json.dumps(data, indent=4, default=str), encoding="utf-8")
        else:
            path.write_bytes(build_xml(data))
    except (OSError, ValueError, TypeError) as e:
        raise MetadataError(f"Unable to write metadata to {path}: {e}") from e


def _write_sidecar(
    marker: str,
    label: str,
    output_path: Path,
    data: dict,
    key: str | None,
    ledger: ArchiveLedger | None,
    override: bool,
) -> DownloadOutcome:
    if key and ledger and ledger.contains(key):
        logger.info("%s | %s metadata exists in archive. Skipping...", marker, label)
        return DownloadOutcome.SKIPPED_ARCHIVED

    output_path = Path(output_path)
    if override or not output_path.exists():
        write_meta(output_path, data)
        outcome = DownloadOutcome.SUCCEEDED
    else:
        logger.info("%s | %s metadata exists locally. Skipping...", marker, label)
        outcome = DownloadOutcome.SKIPPED_EXISTS

    if key and ledger:
        try:
            ledger.insert(key)
        except ArchiveWriteError as e:
            raise MetadataError(f"Unable to save {label.lower()} metadata: {e}") from e
    return outcome


def write_feed_meta(
    output_path: Path,
    feed: Feed,
    fields,
    key: str | None = None,
    ledger: ArchiveLedger | None = None,
    override: bool = False,
) -> DownloadOutcome:
    """Write projected podcast-level metadata."""
    metadata = project(feed.to_dict(), fields)
    return _write_sidecar(feed.title or "Feed", "Feed", output_path, metadata, key, ledger, override)


def write_item_meta(
    marker: str,
    output_path: Path,
    entry: Entry,
    fields,
    key: str | None = None,
    ledger: ArchiveLedger | None = None,
    override: bool = False,
) -> DownloadOutcome:
    """Write projected episode metadata next to the episode."""
    metadata = project(entry.to_dict(), fields)
    return _write_sidecar(marker, "Episode", output_path, metadata, key, ledger, override)


# --- Listing ---


def entry_rows(feed: Feed, selected: list[SelectedEntry]) -> list[dict]:
    return [
        {
            "episode_num": item.episode_number(feed),
            "title": item.entry.title,
            "pub_date": item.entry.pub_date,
        }
        for item in selected
    ]


def format_entry_list(rows: list[dict], fmt: str = "table") -> str:
    """Render episode rows as JSON or as a plain text table."""
    if fmt == "json":
        return json.dumps(rows)

    table = Table(box=box.SIMPLE_HEAD, show_edge=False, pad_edge=False)
    for header in LIST_COLUMNS:
        table.add_column(header, no_wrap=True)
    for row in rows:
        # Text() so titles like "[Bonus] ..." are not read as markup
        table.add_row(*(Text(_text(row.get(h) or "")) for h in LIST_COLUMNS))

    console = Console(file=io.StringIO(), width=LIST_CONSOLE_WIDTH, color_system=None)
    with console.capture() as capture:
        console.print(table)
    return "\n".join(line.rstrip() for line in capture.get().splitlines())
