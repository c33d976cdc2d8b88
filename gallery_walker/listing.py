"""Pick detail-page links off a gallery listing page."""

from __future__ import annotations

from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .config import ListingConfig
from .utils import today_stamp


def collect_detail_links(html: str, base_url: str, config: ListingConfig) -> List[str]:
    """Return absolute links of cards whose date text starts with the prefix.

    With ``date_prefix`` unset, today's date (``YYYY-MM-DD``) is used; an
    empty string disables the date filter. Duplicate links are dropped while
    keeping page order.
    """
    prefix: Optional[str] = config.date_prefix
    if prefix is None:
        prefix = today_stamp()

    soup = BeautifulSoup(html, "html.parser")
    links: List[str] = []
    for card in soup.select(config.card_selector):
        if prefix:
            date_tag = card.select_one(config.date_selector)
            if not date_tag or not date_tag.get_text(strip=True).startswith(prefix):
                continue
        anchor = card.select_one(config.link_selector)
        href = anchor.get("href") if anchor else None
        if not href:
            continue
        absolute = urljoin(base_url, href)
        if absolute not in links:
            links.append(absolute)
    return links
