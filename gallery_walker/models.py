"""Data models used throughout the traversal pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional

ArtifactReference = str


class Termination(enum.Enum):
    """Why a traversal stopped."""

    NO_MORE_PAGES = "no_more_pages"
    RETRY_BUDGET_EXHAUSTED = "retry_budget_exhausted"
    ERROR = "error"


@dataclass
class TraversalResult:
    """Outcome of walking one page series."""

    items_downloaded: int = 0
    items_skipped: int = 0
    terminated: Termination = Termination.NO_MORE_PAGES
    items_failed: int = 0
    iterations: int = 0
    error: Optional[BaseException] = None
    downloaded: List[ArtifactReference] = field(default_factory=list)


@dataclass
class SeriesReport:
    """Traversal result for one detail URL handled by the runner."""

    url: str
    output_dir: Optional[str]
    result: TraversalResult
    total_seconds: float


@dataclass
class WalkRun:
    """Everything one invocation of the runner produced."""

    reports: List[SeriesReport] = field(default_factory=list)
    attempted: int = 0
    listings: int = 0
    unreadable_listings: int = 0
