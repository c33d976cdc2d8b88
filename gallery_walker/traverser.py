"""Walk a linked series of detail pages, downloading each page's artifact once."""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional, Set, Union

from .config import TraversalConfig
from .errors import (
    DeadlineExceeded,
    DriverError,
    FilesystemError,
    PermanentRequestError,
    StallDetected,
    TraversalError,
)
from .models import ArtifactReference, Termination, TraversalResult
from .ratelimit import RateLimiter

logger = logging.getLogger("gallery_walker")

MaybeAwaitable = Union[Any, Awaitable[Any]]
ExtractFn = Callable[[Any], MaybeAwaitable]
ClickFn = Callable[[Any], MaybeAwaitable]
DownloadFn = Callable[[ArtifactReference], MaybeAwaitable]


class PageSeriesTraverser:
    """Drive the extract -> download -> next loop over one page series.

    The traverser keeps no state between calls to :meth:`traverse`; the seen
    set lives for a single call. Instances can therefore be shared between
    concurrent traversals, together with an optional shared ``rate_limiter``.
    """

    def __init__(
        self,
        config: Optional[TraversalConfig] = None,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or TraversalConfig()
        self.rate_limiter = rate_limiter
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock

    async def traverse(
        self,
        page: Any,
        extract_current: ExtractFn,
        click_next: ClickFn,
        download_fn: DownloadFn,
        *,
        deadline: Optional[float] = None,
        label: str = "series",
    ) -> TraversalResult:
        """Run one traversal and report how it ended.

        ``deadline`` is an absolute value of the traverser's clock
        (``time.monotonic`` by default). Errors raised by the callbacks are
        reported through the result, never raised.
        """
        result = TraversalResult()
        try:
            await self._walk(
                result, page, extract_current, click_next, download_fn, deadline, label
            )
        except StallDetected as exc:
            logger.warning("[%s] Stalled: %s", label, exc)
            result.terminated = Termination.RETRY_BUDGET_EXHAUSTED
            result.error = exc
        except (TraversalError, FilesystemError) as exc:
            logger.error("[%s] Traversal aborted: %s", label, exc)
            result.terminated = Termination.ERROR
            result.error = exc
        logger.info(
            "[%s] Finished after %d steps: %d downloaded, %d skipped (%d failed), %s",
            label,
            result.iterations,
            result.items_downloaded,
            result.items_skipped,
            result.items_failed,
            result.terminated.value,
        )
        return result

    async def _walk(
        self,
        result: TraversalResult,
        page: Any,
        extract_current: ExtractFn,
        click_next: ClickFn,
        download_fn: DownloadFn,
        deadline: Optional[float],
        label: str,
    ) -> None:
        config = self.config
        seen: Set[ArtifactReference] = set()
        previous: Optional[ArtifactReference] = None
        streak = 0
        has_next = True

        while has_next:
            self._check_deadline(deadline)
            if result.iterations >= config.max_iterations:
                logger.warning(
                    "[%s] Reached the %d step limit", label, config.max_iterations
                )
                result.terminated = Termination.RETRY_BUDGET_EXHAUSTED
                return
            result.iterations += 1

            reference = await self._drive(extract_current, page, deadline, "extract")
            if reference is not None and reference == previous:
                streak += 1
            else:
                streak = 1 if reference is not None else 0
            previous = reference
            if streak >= config.stall_threshold:
                raise StallDetected(reference, streak)

            if reference is None:
                logger.debug("[%s] Step %d: no artifact on page", label, result.iterations)
            elif reference in seen:
                logger.debug("[%s] Step %d: already have %s", label, result.iterations, reference)
                result.items_skipped += 1
            else:
                seen.add(reference)
                if await self._download(reference, download_fn, deadline, label):
                    result.items_downloaded += 1
                    result.downloaded.append(reference)
                else:
                    result.items_failed += 1
                    result.items_skipped += 1

            has_next = bool(await self._drive(click_next, page, deadline, "next"))
            if not has_next:
                result.terminated = Termination.NO_MORE_PAGES
                return
            await self._pause(deadline, label)

    async def _download(
        self,
        reference: ArtifactReference,
        download_fn: DownloadFn,
        deadline: Optional[float],
        label: str,
    ) -> bool:
        attempts = 1 + self.config.download_retry_count
        for attempt in range(1, attempts + 1):
            if self.rate_limiter is not None:
                await self.rate_limiter.wait()
            try:
                await self._call(download_fn, reference, deadline)
                return True
            except (FilesystemError, TraversalError):
                raise
            except PermanentRequestError as exc:
                logger.warning("[%s] Skipping %s: %s", label, reference, exc)
                return False
            except Exception as exc:  # pylint: disable=broad-except
                if attempt < attempts:
                    logger.warning(
                        "[%s] Download of %s failed (%s); retrying in %.1fs",
                        label,
                        reference,
                        exc,
                        self.config.retry_pause,
                    )
                    await self._sleep(self.config.retry_pause)
                    self._check_deadline(deadline)
                    continue
                logger.warning(
                    "[%s] Giving up on %s after %d attempts: %s", label, reference, attempts, exc
                )
        return False

    async def _drive(self, fn: Callable[[Any], MaybeAwaitable], page: Any, deadline, what: str):
        try:
            return await self._call(fn, page, deadline)
        except TraversalError:
            raise
        except Exception as exc:  # pylint: disable=broad-except
            raise DriverError(f"{what} callback failed: {exc!r}") from exc

    async def _call(self, fn: Callable[[Any], MaybeAwaitable], arg: Any, deadline: Optional[float]):
        value = fn(arg)
        if not inspect.isawaitable(value):
            return value
        if deadline is None:
            return await value
        remaining = deadline - self._clock()
        try:
            return await asyncio.wait_for(value, timeout=max(remaining, 0.0))
        except asyncio.TimeoutError:
            if self._clock() >= deadline:
                raise DeadlineExceeded("deadline passed while waiting on the page") from None
            raise

    async def _pause(self, deadline: Optional[float], label: str) -> None:
        low, high = self.config.inter_step_delay
        delay = self._rng.uniform(low, high) / 1000.0
        if deadline is not None:
            delay = min(delay, max(deadline - self._clock(), 0.0))
        if delay > 0:
            logger.debug("[%s] Waiting %.0f ms", label, delay * 1000)
            await self._sleep(delay)

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and self._clock() >= deadline:
            raise DeadlineExceeded("traversal deadline passed")


async def traverse(
    page: Any,
    extract_current: ExtractFn,
    click_next: ClickFn,
    download_fn: DownloadFn,
    config: Optional[TraversalConfig] = None,
    *,
    deadline: Optional[float] = None,
) -> TraversalResult:
    """Convenience wrapper running a one-off :class:`PageSeriesTraverser`."""
    traverser = PageSeriesTraverser(config)
    return await traverser.traverse(
        page, extract_current, click_next, download_fn, deadline=deadline
    )
