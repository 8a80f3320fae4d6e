"""Tests for bounded-concurrency scheduling."""

import asyncio

import pytest

from podgrab.models import DownloadOutcome, Entry, EntryResult, SelectedEntry
from podgrab.scheduler import run_all


def _make_items(count: int) -> list[SelectedEntry]:
    return [SelectedEntry(entry=Entry(title=f"Episode {i}"), original_index=i) for i in range(count)]


def _fixed(outcomes: dict[str, EntryResult]):
    async def process(item, ctx, position):
        await asyncio.sleep(0)
        return outcomes[item.entry.title]
    return process


def test_all_succeed():
    items = _make_items(3)
    ok = EntryResult(DownloadOutcome.SUCCEEDED)
    summary = asyncio.run(run_all(items, None, 2, process=_fixed({i.entry.title: ok for i in items})))
    assert summary.total == 3
    assert summary.succeeded == 3
    assert summary.had_errors is False


def test_failures_are_sticky():
    items = _make_items(3)
    outcomes = {
        "Episode 0": EntryResult(DownloadOutcome.SUCCEEDED),
        "Episode 1": EntryResult(DownloadOutcome.FAILED, had_errors=True, error="x"),
        "Episode 2": EntryResult(DownloadOutcome.SKIPPED_EXISTS),
    }
    summary = asyncio.run(run_all(items, None, 1, process=_fixed(outcomes)))
    assert summary.succeeded == 2
    assert summary.had_errors is True


def test_soft_errors_count_as_success():
    items = _make_items(1)
    outcomes = {"Episode 0": EntryResult(DownloadOutcome.SUCCEEDED, had_errors=True)}
    summary = asyncio.run(run_all(items, None, 1, process=_fixed(outcomes)))
    assert summary.succeeded == 1
    assert summary.had_errors is True


def test_archived_skips_are_not_counted():
    items = _make_items(2)
    skipped = EntryResult(DownloadOutcome.SKIPPED_ARCHIVED)
    summary = asyncio.run(run_all(items, None, 1, process=_fixed({i.entry.title: skipped for i in items})))
    assert summary.succeeded == 0
    assert summary.had_errors is False


def test_unexpected_exception_is_a_failure():
    async def process(item, ctx, position):
        if position == 2:
            raise RuntimeError("boom")
        return EntryResult(DownloadOutcome.SUCCEEDED)

    summary = asyncio.run(run_all(_make_items(3), None, 3, process=process))
    assert summary.succeeded == 2
    assert summary.had_errors is True


def test_concurrency_is_bounded():
    in_flight = 0
    peak = 0

    async def process(item, ctx, position):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return EntryResult(DownloadOutcome.SUCCEEDED)

    summary = asyncio.run(run_all(_make_items(10), None, 3, process=process))
    assert summary.succeeded == 10
    assert peak == 3


def test_entries_start_in_selection_order():
    started = []

    async def process(item, ctx, position):
        started.append(position)
        await asyncio.sleep(0.001 * (5 - position))
        return EntryResult(DownloadOutcome.SUCCEEDED)

    asyncio.run(run_all(_make_items(4), None, 1, process=process))
    assert started == [1, 2, 3, 4]


def test_empty():
    summary = asyncio.run(run_all([], None, 1))
    assert summary.total == 0
    assert summary.succeeded == 0


@pytest.mark.parametrize("threads", [0, 33])
def test_threads_out_of_range(threads):
    with pytest.raises(ValueError, match="between 1 and 32"):
        asyncio.run(run_all(_make_items(1), None, threads))
