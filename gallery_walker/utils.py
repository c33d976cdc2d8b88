"""Utility helpers for string normalization and path handling."""

from __future__ import annotations

import datetime as dt
import re
from pathlib import PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")


def slugify(value: str, fallback: str = "page") -> str:
    """Generate a filesystem-friendly slug using ASCII characters only."""
    normalized = value.encode("ascii", "ignore").decode("ascii")
    normalized = normalized.lower()
    normalized = SLUG_PATTERN.sub("-", normalized).strip("-")
    return normalized or fallback


def last_path_segment(url: str) -> Optional[str]:
    """Return the final path component of a URL, without query or fragment."""
    path = unquote(urlparse(url).path)
    if not path or path.endswith("/"):
        return None
    name = PurePosixPath(path).name
    if name in ("", ".", ".."):
        return None
    return name


def series_slug(url: str) -> str:
    """Slug naming the directory a detail page's images are saved under."""
    parsed = urlparse(url)
    return slugify(f"{parsed.netloc} {parsed.path}", fallback="series")[:80]


def today_stamp(today: Optional[dt.date] = None) -> str:
    return (today or dt.date.today()).strftime("%Y-%m-%d")
