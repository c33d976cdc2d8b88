"""High-level orchestration for rendering gallery pages and walking their series."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

from playwright.async_api import (
    Browser,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from .config import CrawlConfig, ListingConfig
from .driver import scroll_to_load, selector_clicker, selector_extractor
from .listing import collect_detail_links
from .models import SeriesReport, WalkRun
from .ratelimit import RateLimiter
from .store import ArtifactStore, destination_for
from .traverser import PageSeriesTraverser
from .utils import series_slug, today_stamp

logger = logging.getLogger("gallery_walker")


def build_output_dir(config: CrawlConfig, url: str) -> Path:
    """Directory receiving the images of one detail series."""
    return config.output_root / today_stamp() / series_slug(url)


async def render_listing(browser: Browser, url: str, config: CrawlConfig) -> Optional[str]:
    """Load a listing page, scroll it, and return its HTML."""
    page = None
    try:
        page = await browser.new_page()
        page.set_default_navigation_timeout(config.navigation_timeout * 1000)
        logger.info("Loading listing %s", url)
        await page.goto(url, wait_until="networkidle")
        await scroll_to_load(page, config.scroll_steps, config.wait_after_load)
        return await page.content()
    except PlaywrightTimeoutError as exc:
        logger.error("Timeout while loading %s: %s", url, exc)
        return None
    except Exception:  # pylint: disable=broad-except
        logger.exception("Unexpected error loading %s", url)
        return None
    finally:
        if page is not None:
            await _close_page(page)


async def expand_listings(
    browser: Browser,
    listing_urls: List[str],
    config: CrawlConfig,
    listing: ListingConfig,
) -> Tuple[List[str], int]:
    """Collect detail URLs from each listing page, in order, without repeats.

    Returns the detail URLs and the number of listing pages that could not
    be loaded.
    """
    detail_urls: List[str] = []
    unreadable = 0
    for url in listing_urls:
        html = await render_listing(browser, url, config)
        if html is None:
            unreadable += 1
            continue
        links = collect_detail_links(html, url, listing)
        logger.info("Found %d matching links on %s", len(links), url)
        detail_urls.extend(link for link in links if link not in detail_urls)
    return detail_urls, unreadable


async def _close_page(page) -> None:
    try:
        await page.close()
    except Exception as exc:  # pylint: disable=broad-except
        logger.debug("Ignoring error while closing page: %s", exc)


async def walk_series(
    browser: Browser,
    url: str,
    config: CrawlConfig,
    traverser: PageSeriesTraverser,
) -> Optional[SeriesReport]:
    """Open ``url`` on a fresh page and traverse its series to the end.

    Returns ``None`` when the page cannot be opened or loaded.
    """
    start = time.perf_counter()
    page = None
    try:
        try:
            page = await browser.new_page()
            page.set_default_navigation_timeout(config.navigation_timeout * 1000)
            logger.info("Loading %s", url)
            await page.goto(url, wait_until="networkidle")
            if config.wait_after_load:
                await page.wait_for_timeout(int(config.wait_after_load * 1000))
            await scroll_to_load(page, config.scroll_steps, config.wait_after_load)
        except PlaywrightTimeoutError as exc:
            logger.error("Timeout while loading %s: %s", url, exc)
            return None
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error loading %s", url)
            return None

        output_dir = build_output_dir(config, page.url)
        logger.info("Saving images from %s to %s", url, output_dir)
        deadline = (
            time.monotonic() + config.traversal_timeout
            if config.traversal_timeout
            else None
        )

        with ArtifactStore(
            timeout=config.download_timeout,
            user_agent=config.user_agent,
            referer=page.url,
            validate_images=config.validate_images,
        ) as store:

            def download(ref: str):
                destination = destination_for(ref, output_dir)
                return asyncio.to_thread(store.download, ref, destination)

            result = await traverser.traverse(
                page,
                selector_extractor(
                    config.image_selector, config.image_attribute, config.image_wait_timeout
                ),
                selector_clicker(config.next_selector, config.settle_after_click),
                download,
                deadline=deadline,
                label=url,
            )
    finally:
        if page is not None:
            await _close_page(page)

    return SeriesReport(
        url=url,
        output_dir=str(output_dir),
        result=result,
        total_seconds=time.perf_counter() - start,
    )


async def run_walker(
    urls: List[str],
    config: CrawlConfig,
    listing: Optional[ListingConfig] = None,
) -> WalkRun:
    """Walk every detail URL, at most ``max_concurrency`` at a time.

    When ``listing`` is given, ``urls`` are listing pages and are expanded to
    their matching detail links first. A series that fails in any way is
    logged and left out of the reports; its siblings carry on.
    """
    rate_limiter = (
        RateLimiter(config.min_download_interval) if config.min_download_interval else None
    )
    traverser = PageSeriesTraverser(config.traversal, rate_limiter=rate_limiter)
    semaphore = asyncio.Semaphore(max(1, config.max_concurrency))
    run = WalkRun()

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=config.headless)
        try:
            if listing is not None:
                run.listings = len(urls)
                urls, run.unreadable_listings = await expand_listings(
                    browser, urls, config, listing
                )
            run.attempted = len(urls)

            async def bounded(url: str) -> Optional[SeriesReport]:
                async with semaphore:
                    try:
                        return await walk_series(browser, url, config, traverser)
                    except Exception:  # pylint: disable=broad-except
                        logger.exception("Series %s failed", url)
                        return None

            reports = await asyncio.gather(*(bounded(url) for url in urls))
        finally:
            await browser.close()

    run.reports = [report for report in reports if report is not None]
    return run
