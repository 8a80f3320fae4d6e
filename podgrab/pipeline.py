"""Per-entry fetch-and-postprocess pipeline.

Steps for one selected entry:
    1. Resolve the media URL and re-check the archive ledger
    2. Download the primary media (optionally past tracking redirects)
    3. Download secondary assets (episode images)
    4. Write the episode metadata sidecar
    5. Run ffmpeg post-processing
    6. Run the user's exec hook
    7. Record the media and secondary keys in the ledger

Every failure is caught here and reported through the returned EntryResult.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from config import settings
from podgrab.archive import ArchiveLedger
from podgrab.exceptions import PodgrabError
from podgrab.fetcher import download, download_file
from podgrab.media import resolve_media, resolve_url_embed
from podgrab.metadata import write_item_meta
from podgrab.models import DownloadOutcome, EntryResult, Feed, RunOptions, SelectedEntry
from podgrab.naming import get_filename
from podgrab.postprocess import run_exec, run_ffmpeg
from podgrab.selector import entry_archive_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineContext:
    """Run-wide inputs shared by every pipeline invocation."""

    feed: Feed
    options: RunOptions
    base_path: Path
    archive_prefix: str
    ledger: ArchiveLedger | None = None

    @property
    def wants_ffmpeg(self) -> bool:
        opts = self.options
        return bool(opts.add_mp3_metadata or opts.bitrate or opts.mono)


def entry_marker(item: SelectedEntry, position: int, threads: int) -> str:
    """Log prefix identifying an entry; numbered when downloads run concurrently."""
    title = item.entry.title or item.entry.guid or "Untitled"
    return f"[{position}] {title}" if threads > 1 else title


async def _download_primary(url: str, output_path: Path, marker: str, ctx: PipelineContext) -> DownloadOutcome:
    if not ctx.options.override and output_path.exists():
        logger.info("%s | Download exists locally. Skipping...", marker)
        return DownloadOutcome.SKIPPED_EXISTS

    if ctx.options.filter_url_tracking:
        embedded = await asyncio.to_thread(resolve_url_embed, url, settings.probe_timeout)
        if embedded:
            logger.info("%s | Using embedded URL %s", marker, embedded)
            url = embedded

    await asyncio.to_thread(download_file, url, output_path)
    logger.info("%s | Downloaded %s", marker, output_path.name)
    return DownloadOutcome.SUCCEEDED


async def _download_secondaries(
    item: SelectedEntry, marker: str, ctx: PipelineContext
) -> tuple[list[str], bool]:
    """Fetch episode images.

    Returns the archive keys of the images now on disk and whether any of them
    failed. The keys are recorded only once the whole entry has succeeded.
    """
    keys = []
    had_errors = False
    for extra in item.secondary_downloads:
        extra_marker = f"{marker} | {extra.url}"
        try:
            if ctx.ledger and extra.archive_key:
                if await asyncio.to_thread(ctx.ledger.contains, extra.archive_key):
                    logger.info("%s | Download exists in archive. Skipping...", extra_marker)
                    continue
            await asyncio.to_thread(
                download, extra.url, extra.output_path, extra_marker, override=ctx.options.override
            )
        except (PodgrabError, OSError) as e:
            logger.error("%s | Unable to download episode image: %s", marker, e)
            had_errors = True
            continue
        if extra.archive_key:
            keys.append(extra.archive_key)
    return keys, had_errors


async def process_entry(item: SelectedEntry, ctx: PipelineContext, position: int = 1) -> EntryResult:
    """Run the full pipeline for one entry."""
    opts = ctx.options
    entry = item.entry
    marker = entry_marker(item, position, opts.threads)
    logger.info("%s | Starting download", marker)

    media = resolve_media(entry)
    if not media.url:
        logger.error("%s | Unable to find episode download URL", marker)
        return EntryResult(DownloadOutcome.FAILED, had_errors=True, error="No download URL")

    episode_num = item.episode_number(ctx.feed)
    filename = get_filename(entry, ctx.feed, media.url, media.ext, opts.episode_template, episode_num)
    output_path = ctx.base_path / filename
    key = entry_archive_key(entry, ctx.archive_prefix, media.ext)

    if ctx.ledger:
        try:
            archived = await asyncio.to_thread(ctx.ledger.contains, key)
        except PodgrabError as e:
            logger.error("%s | %s", marker, e)
            return EntryResult(DownloadOutcome.FAILED, had_errors=True, error=str(e))
        if archived:
            logger.info("%s | Download exists in archive. Skipping...", marker)
            return EntryResult(DownloadOutcome.SKIPPED_ARCHIVED)

    error = None
    outcome = DownloadOutcome.FAILED
    try:
        outcome = await _download_primary(media.url, output_path, marker, ctx)
    except (PodgrabError, OSError) as e:
        logger.error("%s | Error downloading episode: %s", marker, e)
        error = str(e)

    secondary_keys, had_errors = await _download_secondaries(item, marker, ctx)

    if opts.include_episode_meta is not None:
        meta_ext = f".meta.{opts.metadata_format}"
        meta_path = ctx.base_path / get_filename(
            entry, ctx.feed, media.url, meta_ext, opts.episode_template, episode_num
        )
        try:
            await asyncio.to_thread(
                write_item_meta,
                marker,
                meta_path,
                entry,
                opts.include_episode_meta,
                entry_archive_key(entry, ctx.archive_prefix, meta_ext),
                ctx.ledger,
                opts.override,
            )
        except PodgrabError as e:
            logger.error("%s | Unable to save episode metadata: %s", marker, e)
            error = error or str(e)

    if error is None:
        try:
            if ctx.wants_ffmpeg:
                await asyncio.to_thread(
                    run_ffmpeg, ctx.feed, item, output_path,
                    opts.bitrate, opts.mono, opts.add_mp3_metadata,
                )
            if opts.exec_command:
                await asyncio.to_thread(run_exec, opts.exec_command, output_path, filename)
            if ctx.ledger:
                for archive_key in (key, *secondary_keys):
                    await asyncio.to_thread(ctx.ledger.insert, archive_key)
        except PodgrabError as e:
            logger.error("%s | Post-processing failed: %s", marker, e)
            error = str(e)

    if error is not None:
        return EntryResult(DownloadOutcome.FAILED, had_errors=True, error=error)
    return EntryResult(outcome, had_errors=had_errors)
