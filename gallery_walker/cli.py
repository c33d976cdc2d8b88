"""Command-line entry point for the gallery walker."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence, Tuple

from .config import (
    DEFAULT_CARD_SELECTOR,
    DEFAULT_IMAGE_SELECTOR,
    DEFAULT_NEXT_SELECTOR,
    CrawlConfig,
    ListingConfig,
    TraversalConfig,
)
from .crawler import run_walker
from .models import Termination, WalkRun

logger = logging.getLogger("gallery_walker.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("walk", *argv)


def _delay_range(value: str) -> Tuple[int, int]:
    try:
        low, _, high = value.partition(":")
        bounds = (int(low), int(high or low))
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"expected MIN:MAX in milliseconds, got {value!r}"
        ) from None
    if bounds[0] < 0 or bounds[1] < bounds[0]:
        raise argparse.ArgumentTypeError(f"invalid delay range {value!r}")
    return bounds


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        default="images",
        type=Path,
        help="Directory where downloaded images should be written",
    )
    parser.add_argument(
        "--image-selector",
        default=DEFAULT_IMAGE_SELECTOR,
        help="CSS selector of the image shown on a detail page",
    )
    parser.add_argument(
        "--image-attribute",
        default="src",
        help="Attribute of the image element holding its URL",
    )
    parser.add_argument(
        "--image-wait",
        type=float,
        default=5.0,
        help="Seconds to wait for the image element to appear (0 reads at once)",
    )
    parser.add_argument(
        "--next-selector",
        default=DEFAULT_NEXT_SELECTOR,
        help="CSS selector of the control advancing to the next image",
    )
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait after network idle before reading the page",
    )
    parser.add_argument(
        "--settle",
        type=float,
        default=3.0,
        help="Seconds to wait after clicking next before reading the page again",
    )
    parser.add_argument(
        "--scroll-steps",
        type=int,
        default=4,
        help="Viewports to scroll after loading a page so lazy content renders",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--series-timeout",
        type=float,
        default=None,
        help="Give up on a single series after this many seconds",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=3,
        help="Number of series walked at the same time",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=500,
        help="Upper bound on pages visited per series",
    )
    parser.add_argument(
        "--stall-threshold",
        type=int,
        default=3,
        help="Stop a series after reading the same image this many times in a row",
    )
    parser.add_argument(
        "--delay",
        type=_delay_range,
        default=(2000, 3000),
        help="Random pause between pages as MIN:MAX milliseconds (default: 2000:3000)",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=1,
        help="Extra attempts for a download that failed with a transient error",
    )
    parser.add_argument(
        "--retry-pause",
        type=float,
        default=1.0,
        help="Seconds to wait before retrying a download",
    )
    parser.add_argument(
        "--min-interval",
        type=float,
        default=0.0,
        help="Minimum seconds between downloads across all series",
    )
    parser.add_argument(
        "--no-validate",
        action="store_true",
        help="Keep downloads even when they do not look like images",
    )
    parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window instead of running headless",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Walk paginated gallery detail pages with Playwright and download each image once."
        ),
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    walk_parser = subparsers.add_parser(
        "walk", help="Walk one or more gallery detail pages"
    )
    walk_parser.add_argument("urls", nargs="+", help="Detail page URLs to start from")
    _add_common_arguments(walk_parser)

    listing_parser = subparsers.add_parser(
        "listing", help="Collect detail pages from listing pages, then walk them"
    )
    listing_parser.add_argument("urls", nargs="+", help="Listing page URLs")
    listing_parser.add_argument(
        "--card-selector",
        default=DEFAULT_CARD_SELECTOR,
        help="CSS selector of one entry on the listing page",
    )
    listing_parser.add_argument(
        "--date-selector",
        default="time",
        help="CSS selector, inside a card, of its publication date",
    )
    listing_parser.add_argument(
        "--link-selector",
        default="a",
        help="CSS selector, inside a card, of the link to its detail page",
    )
    listing_parser.add_argument(
        "--date",
        default=None,
        help="Only follow cards dated with this prefix (default: today; empty for all)",
    )
    _add_common_arguments(listing_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> CrawlConfig:
    traversal = TraversalConfig(
        max_iterations=args.max_steps,
        stall_threshold=args.stall_threshold,
        inter_step_delay=args.delay,
        download_retry_count=args.retries,
        retry_pause=args.retry_pause,
    )
    return CrawlConfig(
        output_root=Path(args.output).resolve(),
        image_selector=args.image_selector,
        next_selector=args.next_selector,
        image_attribute=args.image_attribute,
        image_wait_timeout=args.image_wait or None,
        navigation_timeout=args.timeout,
        wait_after_load=args.wait,
        settle_after_click=args.settle,
        scroll_steps=args.scroll_steps,
        headless=not args.headed,
        max_concurrency=args.concurrency,
        traversal_timeout=args.series_timeout,
        min_download_interval=args.min_interval,
        validate_images=not args.no_validate,
        traversal=traversal,
    )


def build_listing_config(args: argparse.Namespace) -> ListingConfig:
    return ListingConfig(
        card_selector=args.card_selector,
        date_selector=args.date_selector,
        link_selector=args.link_selector,
        date_prefix=args.date,
    )


def all_failed(run: WalkRun) -> bool:
    """True when nothing was walked successfully.

    A listing with no matching cards is not a failure; listings that could
    not be loaded at all are.
    """
    if run.attempted == 0:
        return run.listings > 0 and run.unreadable_listings == run.listings
    return all(r.result.terminated is Termination.ERROR for r in run.reports)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    try:
        config = build_config(args)
    except ValueError as exc:
        logger.error("Invalid settings: %s", exc)
        raise SystemExit(2) from exc
    listing = build_listing_config(args) if args.command == "listing" else None

    overall_start = time.perf_counter()
    run = asyncio.run(run_walker(args.urls, config, listing))
    reports = run.reports
    total_elapsed = time.perf_counter() - overall_start

    downloaded = sum(r.result.items_downloaded for r in reports)
    failed = sum(r.result.items_failed for r in reports)
    logger.info(
        "Finished in %.2fs (%d series, %d images saved, %d failed)",
        total_elapsed,
        len(reports),
        downloaded,
        failed,
    )
    for report in reports:
        logger.debug(
            "%s -> %s | saved: %d | skipped: %d | steps: %d | %.2fs",
            report.url,
            report.result.terminated.value,
            report.result.items_downloaded,
            report.result.items_skipped,
            report.result.iterations,
            report.total_seconds,
        )

    if all_failed(run):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
