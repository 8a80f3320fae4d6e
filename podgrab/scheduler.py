"""Bounded-concurrency scheduling of pipeline invocations."""

import asyncio
import logging

from podgrab.models import DownloadOutcome, EntryResult, RunSummary, SelectedEntry
from podgrab.pipeline import PipelineContext, process_entry

logger = logging.getLogger(__name__)

MIN_THREADS = 1
MAX_THREADS = 32


async def run_all(
    items: list[SelectedEntry],
    ctx: PipelineContext,
    threads: int = 1,
    process=process_entry,
) -> RunSummary:
    """Process every selected entry with at most ``threads`` in flight.

    Entries start in selection order but may finish in any order. The
    summary counts completed entries; ``had_errors`` is set by any failure,
    including soft failures of otherwise completed entries.
    """
    if not MIN_THREADS <= threads <= MAX_THREADS:
        raise ValueError(f"threads must be between {MIN_THREADS} and {MAX_THREADS}")

    semaphore = asyncio.Semaphore(threads)
    summary = RunSummary(total=len(items))

    async def _worker(position: int, item: SelectedEntry) -> None:
        async with semaphore:
            try:
                result = await process(item, ctx, position)
            except Exception as e:
                logger.exception("Unexpected error processing %r", item.entry.title)
                result = EntryResult(DownloadOutcome.FAILED, had_errors=True, error=str(e))
        if result.outcome.completed:
            summary.succeeded += 1
        if result.had_errors or result.outcome is DownloadOutcome.FAILED:
            summary.had_errors = True

    await asyncio.gather(*(_worker(i, item) for i, item in enumerate(items, 1)))
    logger.debug("Scheduler finished: %s", summary)
    return summary
