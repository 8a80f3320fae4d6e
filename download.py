"""Orchestrator: download podcast episodes from a feed.

Usage:
    python download.py --url https://example.com/feed.xml
    python download.py --url https://example.com/feed.xml --archive --limit 5
    python download.py --url https://example.com/feed.xml --list json
"""

import argparse
import asyncio
import enum
import logging
import re
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from config import settings
from podgrab import fetcher
from podgrab.archive import ArchiveLedger, get_archive_key
from podgrab.exceptions import (
    NoEpisodesError,
    NothingMatchedError,
    OffsetTooLargeError,
    PodgrabError,
)
from podgrab.feed_source import fetch_feed
from podgrab.media import get_image_url, get_url_ext
from podgrab.metadata import METADATA_FORMATS, entry_rows, format_entry_list, write_feed_meta
from podgrab.models import Feed, RunOptions, RunSummary
from podgrab.naming import get_folder_name, get_safe_name
from podgrab.pipeline import PipelineContext
from podgrab.postprocess import has_ffmpeg
from podgrab.scheduler import MAX_THREADS, run_all
from podgrab.selector import SelectionCriteria, select_entries

logger = logging.getLogger("podgrab")

LIST_FORMATS = ("table", "json")


class ExitStatus(enum.IntEnum):
    OK = 0
    GENERAL = 1
    NOTHING_DOWNLOADED = 2
    COMPLETED_WITH_ERRORS = 3


class CliParser(argparse.ArgumentParser):
    """Argument parser whose usage errors exit with ExitStatus.GENERAL.

    argparse exits with 2 by default, which would read as "nothing downloaded".
    """

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(ExitStatus.GENERAL, f"{self.prog}: error: {message}\n")


def pluralize(word: str, count: int) -> str:
    return f"{count} {word}" + ("" if count == 1 else "s")


def archive_prefix_for(url: str) -> str:
    """Feed identity used in archive keys: host + path of the feed URL."""
    parsed = urlparse(url)
    return f"{parsed.hostname or ''}{parsed.path}"


# --- Run ---


def list_episodes(feed: Feed, options: RunOptions) -> str:
    """Render the episodes a run would select, without downloading."""
    if not feed.entries:
        raise NoEpisodesError("No episodes found to list")
    selected = select_entries(
        feed,
        SelectionCriteria(
            offset=options.offset,
            limit=options.limit,
            reverse=options.reverse,
            episode_regex=options.episode_regex,
            before=options.before,
            after=options.after,
        ),
        archive_prefix=archive_prefix_for(options.url),
    )
    if not selected:
        raise NothingMatchedError("No episodes found with provided criteria to list")
    return format_entry_list(entry_rows(feed, selected), options.list_format or "table")


async def save_feed_meta(
    feed: Feed,
    options: RunOptions,
    base_path: Path,
    archive_prefix: str,
    ledger: ArchiveLedger | None,
) -> None:
    """Download the podcast image and write podcast metadata.

    Failures here are logged and do not stop the episode downloads.
    """
    image_url = get_image_url(feed)
    if image_url:
        image_name = f"{feed.title}.image" if feed.title else "image"
        image_name += get_url_ext(image_url)
        logger.info("Downloading podcast image...")
        try:
            await asyncio.to_thread(
                fetcher.download,
                image_url,
                base_path / get_safe_name(image_name),
                image_url,
                get_archive_key(archive_prefix, image_name),
                ledger,
                options.override,
            )
        except (PodgrabError, OSError) as e:
            logger.error("Unable to download podcast image: %s", e)

    meta_name = f"{feed.title}.meta" if feed.title else "meta"
    meta_name += f".{options.metadata_format}"
    logger.info("Saving podcast metadata...")
    try:
        await asyncio.to_thread(
            write_feed_meta,
            base_path / get_safe_name(meta_name),
            feed,
            options.include_meta,
            get_archive_key(archive_prefix, meta_name),
            ledger,
            options.override,
        )
    except PodgrabError as e:
        logger.error("Unable to save podcast metadata: %s", e)


async def run(options: RunOptions) -> RunSummary | None:
    """Run one download job.

    Returns:
        The scheduler summary, or None for --info / --list runs.

    Raises:
        PodgrabError: For fatal conditions (feed unreachable, no episodes,
            offset too large, nothing matched, corrupt archive).
    """
    feed = await asyncio.to_thread(fetch_feed, options.url)
    archive_prefix = archive_prefix_for(options.url)
    base_path = Path(get_folder_name(feed, options.out_dir)).resolve()

    print(feed.title or "")
    print(feed.description or "")
    print()

    if options.list_format:
        print(list_episodes(feed, options))
        return None
    if options.info:
        return None

    if not base_path.exists():
        logger.info("%s does not exist. Creating...", base_path)
        base_path.mkdir(parents=True, exist_ok=True)

    ledger = None
    if options.archive:
        ledger = ArchiveLedger(get_folder_name(feed, options.archive))
        # Surface a corrupt ledger before any work starts
        ledger.load()

    if options.include_meta is not None:
        await save_feed_meta(feed, options, base_path, archive_prefix, ledger)

    if not feed.entries:
        raise NoEpisodesError("No episodes found to download")
    if options.offset >= len(feed.entries):
        raise OffsetTooLargeError("--offset too large. No episodes to download.")

    selected = select_entries(
        feed,
        SelectionCriteria(
            offset=options.offset,
            limit=options.limit,
            reverse=options.reverse,
            episode_regex=options.episode_regex,
            before=options.before,
            after=options.after,
            ledger=ledger,
            include_episode_images=options.include_episode_images,
        ),
        archive_prefix=archive_prefix,
        base_path=base_path,
        episode_template=options.episode_template,
    )
    if not selected:
        raise NothingMatchedError("No episodes found with provided criteria to download")

    logger.info("Starting download of %s", pluralize("episode", len(selected)))
    ctx = PipelineContext(
        feed=feed,
        options=options,
        base_path=base_path,
        archive_prefix=archive_prefix,
        ledger=ledger,
    )
    return await run_all(selected, ctx, options.threads)


def summary_message(summary: RunSummary) -> str | None:
    if summary.had_errors and summary.succeeded != summary.total:
        return f"{summary.succeeded} of {pluralize('episode', summary.total)} downloaded"
    if summary.succeeded > 0:
        return f"Successfully downloaded {pluralize('episode', summary.succeeded)}"
    return None


def exit_status(summary: RunSummary) -> ExitStatus:
    if summary.succeeded == 0:
        return ExitStatus.NOTHING_DOWNLOADED
    if summary.had_errors:
        return ExitStatus.COMPLETED_WITH_ERRORS
    return ExitStatus.OK


# --- CLI ---


def _bounded_int(name: str, minimum: int, maximum: int | None = None):
    def parse(value: str) -> int:
        try:
            number = int(value)
        except ValueError:
            raise argparse.ArgumentTypeError(f"{name} must be a number")
        if number < minimum or (maximum is not None and number > maximum):
            bounds = f"between {minimum} and {maximum}" if maximum is not None else f"{minimum} or greater"
            raise argparse.ArgumentTypeError(f"{name} must be {bounds}")
        return number
    return parse


def _parse_day(value: str) -> date:
    """Parse YYYY-MM-DD or an ISO timestamp into a (UTC) calendar day."""
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a valid date (use YYYY-MM-DD)")
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def _parse_regex(value: str) -> str:
    try:
        re.compile(value)
    except re.error as e:
        raise argparse.ArgumentTypeError(f"invalid regex: {e}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = CliParser(
        prog="podgrab",
        description="Download podcast episodes from an RSS/Atom feed",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Field rules (--include-meta / --include-episode-meta):
  Rules are globs over dotted keys ("title", "enclosure.url", "itunes.*",
  "raw.**"). Prefix a rule with ! to exclude. When several rules match a
  key, the one given LAST wins, e.g. --include-episode-meta "**"
  --include-episode-meta "!raw.**" keeps everything except raw fields.
  Attribute ("$") and text ("_") keys of raw XML data always pass, so an
  excluded raw subtree still keeps the attribute and text entries it holds.

Exit status:
  0 success, 1 error, 2 nothing downloaded, 3 completed with errors
        """,
    )
    parser.add_argument("--url", required=True, help="url to podcast rss feed")
    parser.add_argument("--out-dir", default=settings.out_dir, help="output directory template")
    parser.add_argument(
        "--archive", nargs="?", const=settings.archive_path, default=None,
        help="download or write only items not listed in archive file",
    )
    parser.add_argument(
        "--episode-template", default=settings.episode_template,
        help="template for generating episode related filenames",
    )
    parser.add_argument(
        "--include-meta", nargs="?", action="append", const=None, metavar="RULE",
        help="write out podcast metadata (repeatable field rule)",
    )
    parser.add_argument(
        "--include-episode-meta", nargs="?", action="append", const=None, metavar="RULE",
        help="write out individual episode metadata (repeatable field rule)",
    )
    parser.add_argument(
        "--metadata-format", choices=METADATA_FORMATS, default=settings.metadata_format,
        help="the format to use for the podcast/episode metadata",
    )
    parser.add_argument("--include-episode-images", action="store_true", help="download found episode images")
    parser.add_argument(
        "--offset", type=_bounded_int("--offset", 0), default=0,
        help="offset episode to start downloading from (most recent = 0)",
    )
    parser.add_argument("--limit", type=_bounded_int("--limit", 1), help="max amount of episodes to download")
    parser.add_argument("--episode-regex", type=_parse_regex, help="match episode title against regex before downloading")
    parser.add_argument("--after", type=_parse_day, help="download episodes only after this date (inclusive)")
    parser.add_argument("--before", type=_parse_day, help="download episodes only before this date (inclusive)")
    parser.add_argument("--add-mp3-metadata", action="store_true", help="add basic metadata to .mp3 files using ffmpeg")
    parser.add_argument("--adjust-bitrate", metavar="BITRATE", help="adjust bitrate of .mp3 files using ffmpeg")
    parser.add_argument("--mono", action="store_true", help="force .mp3 files into mono using ffmpeg")
    parser.add_argument("--override", action="store_true", help="override local files on collision")
    parser.add_argument("--reverse", action="store_true", help="download episodes in reverse order")
    parser.add_argument("--info", action="store_true", help="print retrieved podcast info instead of downloading")
    parser.add_argument(
        "--list", nargs="?", const="table", choices=LIST_FORMATS, dest="list_format",
        help="print episode info instead of downloading",
    )
    parser.add_argument("--exec", dest="exec_command", help="execute a command after each episode is downloaded")
    parser.add_argument(
        "--threads", type=_bounded_int("--threads", 1, MAX_THREADS), default=settings.threads,
        help="the number of downloads that can happen concurrently",
    )
    parser.add_argument(
        "--filter-url-tracking", action="store_true",
        help="attempt to extract the direct download link of an episode (experimental)",
    )
    parser.add_argument("--verbose", action="store_true", help="detailed console output")
    return parser


def _field_rules(values: list | None, defaults: list[str]) -> tuple[str, ...] | None:
    """None when the option is absent, defaults when given without rules."""
    if values is None:
        return None
    rules = tuple(v for v in values if v)
    return rules or tuple(defaults)


def options_from_args(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        url=args.url,
        out_dir=args.out_dir,
        episode_template=args.episode_template,
        archive=args.archive,
        include_meta=_field_rules(args.include_meta, settings.feed_meta_fields),
        include_episode_meta=_field_rules(args.include_episode_meta, settings.episode_meta_fields),
        metadata_format=args.metadata_format,
        include_episode_images=args.include_episode_images,
        offset=args.offset,
        limit=args.limit,
        episode_regex=args.episode_regex,
        after=args.after,
        before=args.before,
        add_mp3_metadata=args.add_mp3_metadata,
        bitrate=args.adjust_bitrate,
        mono=args.mono,
        override=args.override,
        reverse=args.reverse,
        exec_command=args.exec_command,
        threads=args.threads,
        filter_url_tracking=args.filter_url_tracking,
        info=args.info,
        list_format=args.list_format,
    )


def main(argv: list[str] | None = None) -> None:
    """Entry point for the podgrab command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    # Quiet noisy loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    options = options_from_args(args)
    if (options.add_mp3_metadata or options.bitrate or options.mono) and not has_ffmpeg():
        parser.error("ffmpeg is required for --add-mp3-metadata, --adjust-bitrate and --mono")

    try:
        summary = asyncio.run(run(options))
    except PodgrabError as e:
        logger.error("%s", e)
        sys.exit(ExitStatus.GENERAL)
    except KeyboardInterrupt:
        logger.info("Download interrupted.")
        sys.exit(130)

    if summary is None:
        sys.exit(ExitStatus.OK)

    message = summary_message(summary)
    if message:
        logger.info(message)
    sys.exit(exit_status(summary))


if __name__ == "__main__":
    main()
