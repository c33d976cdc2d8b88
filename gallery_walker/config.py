"""Configuration objects and constants for the gallery walker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

DEFAULT_IMAGE_SELECTOR = "figure.uk-inline img"
DEFAULT_NEXT_SELECTOR = 'div.f-swich[action="next"]'
DEFAULT_CARD_SELECTOR = ".uk-card"
DEFAULT_USER_AGENT = os.getenv(
    "GALLERY_WALKER_USER_AGENT",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
)


@dataclass
class TraversalConfig:
    """Limits and pacing for a single page-series traversal."""

    max_iterations: int = 500
    stall_threshold: int = 3
    # Milliseconds, (min, max).
    inter_step_delay: Tuple[int, int] = (2000, 3000)
    download_retry_count: int = 1
    retry_pause: float = 1.0

    def __post_init__(self) -> None:
        if self.max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        if self.stall_threshold < 2:
            raise ValueError("stall_threshold must be at least 2")
        if self.download_retry_count < 0:
            raise ValueError("download_retry_count cannot be negative")
        low, high = self.inter_step_delay
        if low < 0 or high < low:
            raise ValueError(
                f"inter_step_delay must be a non-negative (min, max) range, got {self.inter_step_delay!r}"
            )


@dataclass
class CrawlConfig:
    """Top-level settings that control browsing and downloading behaviour."""

    output_root: Path
    image_selector: str = DEFAULT_IMAGE_SELECTOR
    next_selector: str = DEFAULT_NEXT_SELECTOR
    image_attribute: str = "src"
    image_wait_timeout: Optional[float] = 5.0
    navigation_timeout: float = 30.0
    wait_after_load: float = 1.0
    settle_after_click: float = 3.0
    scroll_steps: int = 4
    headless: bool = True
    max_concurrency: int = 3
    traversal_timeout: Optional[float] = None
    download_timeout: float = 15.0
    min_download_interval: float = 0.0
    validate_images: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    traversal: TraversalConfig = field(default_factory=TraversalConfig)


@dataclass
class ListingConfig:
    """Selectors used to pick detail links off a listing page."""

    card_selector: str = DEFAULT_CARD_SELECTOR
    date_selector: str = "time"
    link_selector: str = "a"
    date_prefix: Optional[str] = None
