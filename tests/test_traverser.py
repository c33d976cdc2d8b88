from __future__ import annotations

import asyncio
import random
import time

import pytest

from conftest import PNG_BYTES, FakeResponse, FakeSession, RecordingDownloader, ScriptedSeries
from gallery_walker.config import TraversalConfig
from gallery_walker.errors import (
    ClientStatusError,
    DeadlineExceeded,
    DriverError,
    FilesystemError,
    NetworkError,
    PermanentRequestError,
    ServerStatusError,
    StallDetected,
)
from gallery_walker.models import Termination
from gallery_walker.store import ArtifactStore, destination_for
from gallery_walker.traverser import PageSeriesTraverser, traverse


def run(traverser, series, downloader, **kwargs):
    return asyncio.run(
        traverser.traverse(series, series.extract, series.click_next, downloader, **kwargs)
    )


def test_distinct_references_are_all_downloaded(fast_config):
    refs = [f"https://img.example/{i}.jpg" for i in range(5)]
    series = ScriptedSeries(refs, [True] * 4 + [False])
    downloader = RecordingDownloader()

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert result.terminated is Termination.NO_MORE_PAGES
    assert result.items_downloaded == 5
    assert result.items_skipped == 0
    assert downloader.calls == refs
    assert result.downloaded == refs
    assert result.iterations == 5


def test_consecutive_duplicate_downloaded_once(fast_config):
    series = ScriptedSeries(["a", "a", "b"], [True, True, False])
    downloader = RecordingDownloader()

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a", "b"]
    assert result.items_downloaded == 2
    assert result.items_skipped == 1


def test_no_next_control_stops_after_first_page(fast_config):
    series = ScriptedSeries(["a"], [False])
    downloader = RecordingDownloader()

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert result.terminated is Termination.NO_MORE_PAGES
    assert result.iterations == 1
    assert downloader.calls == ["a"]
    assert series.clicks == 1


def test_missing_artifact_and_no_next_downloads_nothing(fast_config):
    series = ScriptedSeries([None], [False])
    downloader = RecordingDownloader()

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert result.terminated is Termination.NO_MORE_PAGES
    assert result.items_downloaded == 0
    assert downloader.calls == []


def test_stalled_series_is_cut_off(fast_config):
    series = ScriptedSeries(["a"], [True])
    downloader = RecordingDownloader()

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert result.terminated is Termination.RETRY_BUDGET_EXHAUSTED
    assert isinstance(result.error, StallDetected)
    assert result.iterations == fast_config.stall_threshold
    assert result.iterations <= fast_config.stall_threshold + 1
    assert downloader.calls == ["a"]


def test_custom_stall_threshold():
    config = TraversalConfig(inter_step_delay=(0, 0), retry_pause=0.0, stall_threshold=5)
    series = ScriptedSeries(["a", "b"] + ["c"] * 10, [True])

    result = run(PageSeriesTraverser(config), series, RecordingDownloader())

    assert result.terminated is Termination.RETRY_BUDGET_EXHAUSTED
    assert result.iterations == 2 + 5
    assert result.items_downloaded == 3


def test_transient_failure_then_success_counts_as_downloaded(fast_config):
    series = ScriptedSeries(["a", "b"], [True, False])
    downloader = RecordingDownloader({"a": [NetworkError("reset", "a")]})

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a", "a", "b"]
    assert result.items_downloaded == 2
    assert result.items_failed == 0
    assert result.items_skipped == 0


def test_retry_waits_fixed_pause(fake_sleep, sleeps):
    config = TraversalConfig(inter_step_delay=(0, 0), retry_pause=1.5)
    series = ScriptedSeries(["a"], [False])
    downloader = RecordingDownloader({"a": [ServerStatusError(503, "a")]})

    result = run(PageSeriesTraverser(config, sleep=fake_sleep), series, downloader)

    assert result.items_downloaded == 1
    assert sleeps == [1.5]


def test_unclassified_exception_is_retried(fast_config):
    series = ScriptedSeries(["a"], [False])
    downloader = RecordingDownloader({"a": [RuntimeError("boom")]})

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a", "a"]
    assert result.items_downloaded == 1


def test_retry_budget_is_bounded(fast_config):
    series = ScriptedSeries(["a", "b"], [True, False])
    downloader = RecordingDownloader(
        {"a": [NetworkError("timeout", "a"), NetworkError("timeout", "a"), NetworkError("x", "a")]}
    )

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a", "a", "b"]
    assert result.items_downloaded == 1
    assert result.items_failed == 1
    assert result.items_skipped == 1
    assert result.terminated is Termination.NO_MORE_PAGES


def test_permanent_failure_is_skipped_and_traversal_continues(fast_config):
    series = ScriptedSeries(["a", "b", "c"], [True, True, False])
    downloader = RecordingDownloader({"b": [ClientStatusError(404, "b")]})

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a", "b", "c"]
    assert result.items_downloaded == 2
    assert result.items_failed == 1
    assert result.items_skipped == 1
    assert result.terminated is Termination.NO_MORE_PAGES


def test_failed_reference_is_not_attempted_again(fast_config):
    series = ScriptedSeries(["a", "b", "a"], [True, True, False])
    downloader = RecordingDownloader({"a": [PermanentRequestError("gone", "a")]})

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a", "b"]
    assert result.items_skipped == 2


def test_documented_example_sequence(fast_config):
    series = ScriptedSeries(["A", "A", "B", None, "B"], [True, True, True, True, False])
    downloader = RecordingDownloader()

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["A", "B"]
    assert result.items_downloaded == 2
    assert result.terminated is Termination.NO_MORE_PAGES
    assert result.error is None
    assert result.iterations == 5


def test_iteration_cap_guarantees_termination():
    config = TraversalConfig(inter_step_delay=(0, 0), retry_pause=0.0, max_iterations=6)
    series = ScriptedSeries(["a", "b"] * 10, [True])

    result = run(PageSeriesTraverser(config), series, RecordingDownloader())

    assert result.terminated is Termination.RETRY_BUDGET_EXHAUSTED
    assert result.iterations == 6
    assert result.error is None
    assert result.items_downloaded == 2
    assert result.items_skipped == 4


def test_driver_exception_ends_traversal_with_error(fast_config):
    series = ScriptedSeries(["a", "b"], [True, False])

    async def broken_click(page):
        raise RuntimeError("Target page, context or browser has been closed")

    result = asyncio.run(
        PageSeriesTraverser(fast_config).traverse(
            series, series.extract, broken_click, RecordingDownloader()
        )
    )

    assert result.terminated is Termination.ERROR
    assert isinstance(result.error, DriverError)
    assert isinstance(result.error.__cause__, RuntimeError)
    assert result.items_downloaded == 1


def test_filesystem_error_is_fatal_and_not_retried(fast_config):
    series = ScriptedSeries(["a", "b"], [True, False])
    downloader = RecordingDownloader({"a": [FilesystemError("disk full", "a")]})

    result = run(PageSeriesTraverser(fast_config), series, downloader)

    assert downloader.calls == ["a"]
    assert result.terminated is Termination.ERROR
    assert isinstance(result.error, FilesystemError)


def test_expired_deadline_stops_before_touching_the_page(fast_config):
    series = ScriptedSeries(["a"], [True])
    traverser = PageSeriesTraverser(fast_config, clock=lambda: 100.0)

    result = run(traverser, series, RecordingDownloader(), deadline=50.0)

    assert result.terminated is Termination.ERROR
    assert isinstance(result.error, DeadlineExceeded)
    assert result.iterations == 0
    assert series.reads == 0


def test_deadline_interrupts_hanging_page_call(fast_config):
    async def hang(page):
        await asyncio.sleep(30)

    async def scenario():
        traverser = PageSeriesTraverser(fast_config)
        return await traverser.traverse(
            object(),
            hang,
            lambda page: False,
            RecordingDownloader(),
            deadline=time.monotonic() + 0.05,
        )

    started = time.monotonic()
    result = asyncio.run(scenario())

    assert time.monotonic() - started < 5
    assert result.terminated is Termination.ERROR
    assert isinstance(result.error, DeadlineExceeded)


def test_inter_step_delay_is_jittered_within_range(fake_sleep, sleeps):
    config = TraversalConfig(inter_step_delay=(100, 200), retry_pause=0.0)
    series = ScriptedSeries(["a", "b", "c", "d"], [True, True, True, False])
    traverser = PageSeriesTraverser(config, sleep=fake_sleep, rng=random.Random(7))

    run(traverser, series, RecordingDownloader())

    assert len(sleeps) == 3
    assert all(0.1 <= delay <= 0.2 for delay in sleeps)


def test_plain_function_callbacks_are_supported(fast_config):
    pages = iter(["a", "b"])
    state = {"current": next(pages)}
    saved = []

    def click(page):
        try:
            state["current"] = next(pages)
        except StopIteration:
            return False
        return True

    result = asyncio.run(
        traverse(None, lambda page: state["current"], click, saved.append, fast_config)
    )

    assert saved == ["a", "b"]
    assert result.terminated is Termination.NO_MORE_PAGES


def test_seen_set_is_scoped_to_one_traversal(fast_config):
    traverser = PageSeriesTraverser(fast_config)
    downloader = RecordingDownloader()

    run(traverser, ScriptedSeries(["a"], [False]), downloader)
    run(traverser, ScriptedSeries(["a"], [False]), downloader)

    assert downloader.calls == ["a", "a"]


def test_rate_limiter_is_consulted_per_attempt(fast_config):
    class CountingLimiter:
        waits = 0

        async def wait(self):
            self.waits += 1

    limiter = CountingLimiter()
    series = ScriptedSeries(["a", "b"], [True, False])
    downloader = RecordingDownloader({"a": [NetworkError("reset", "a")]})

    run(PageSeriesTraverser(fast_config, rate_limiter=limiter), series, downloader)

    assert limiter.waits == 3


def test_traversal_with_store_writes_files(fast_config, tmp_path):
    session = FakeSession(
        FakeResponse(503),
        FakeResponse(chunks=[PNG_BYTES]),
        FakeResponse(404),
        FakeResponse(chunks=[PNG_BYTES, b"tail"]),
    )
    store = ArtifactStore(session=session)
    refs = [
        "https://img.example/g/1.png",
        "https://img.example/g/2.png",
        "https://img.example/g/3.png",
    ]
    series = ScriptedSeries(refs, [True, True, False])

    def download(ref):
        store.download(ref, destination_for(ref, tmp_path))

    result = run(PageSeriesTraverser(fast_config), series, download)

    assert result.items_downloaded == 2
    assert result.items_failed == 1
    assert (tmp_path / "1.png").read_bytes() == PNG_BYTES
    assert not (tmp_path / "2.png").exists()
    assert (tmp_path / "3.png").read_bytes() == PNG_BYTES + b"tail"


@pytest.mark.parametrize("threshold", [0, 1])
def test_stall_threshold_must_allow_a_repeat(threshold):
    with pytest.raises(ValueError):
        TraversalConfig(stall_threshold=threshold)
