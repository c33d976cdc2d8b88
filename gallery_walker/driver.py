"""Playwright callbacks that plug a rendered page into the traverser."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger("gallery_walker")

_READ_ATTRIBUTE_JS = """
([selector, attribute]) => {
    const element = document.querySelector(selector);
    if (!element) {
        return null;
    }
    const value = element[attribute] ?? element.getAttribute(attribute);
    return value ? String(value) : null;
}
"""

_CLICK_JS = """
(selector) => {
    const button = document.querySelector(selector);
    if (!button) {
        return false;
    }
    button.scrollIntoView({ block: "center" });
    button.click();
    return true;
}
"""

_SCROLL_JS = """
async ([steps, pauseMs]) => {
    const delay = (ms) => new Promise((resolve) => setTimeout(resolve, ms));
    for (let i = 0; i < steps; i++) {
        window.scrollBy(0, window.innerHeight);
        await delay(pauseMs);
    }
}
"""


def selector_extractor(
    selector: str, attribute: str = "src", wait_timeout: Optional[float] = None
) -> Callable[[Page], Awaitable[Optional[str]]]:
    """Build an ``extract_current`` callback reading ``attribute`` of ``selector``.

    The DOM property is preferred over the raw attribute so that ``src`` and
    ``href`` come back as absolute URLs. With ``wait_timeout`` set, the
    element is given that many seconds to appear; a page where it never
    does reads as having no artifact.
    """

    async def extract(page: Page) -> Optional[str]:
        if wait_timeout:
            try:
                await page.wait_for_selector(
                    selector, state="attached", timeout=wait_timeout * 1000
                )
            except PlaywrightTimeoutError:
                logger.debug("%s did not appear on %s", selector, page.url)
                return None
        value = await page.evaluate(_READ_ATTRIBUTE_JS, [selector, attribute])
        return value or None

    return extract


def selector_clicker(
    selector: str, settle_after_click: float = 3.0
) -> Callable[[Page], Awaitable[bool]]:
    """Build a ``click_next`` callback that clicks ``selector`` when present."""

    async def click(page: Page) -> bool:
        clicked = bool(await page.evaluate(_CLICK_JS, selector))
        if clicked and settle_after_click:
            await page.wait_for_timeout(int(settle_after_click * 1000))
        return clicked

    return click


async def scroll_to_load(page: Page, steps: int = 4, pause: float = 1.0) -> None:
    """Scroll down one viewport at a time so lazy content gets rendered."""
    if steps <= 0:
        return
    logger.debug("Scrolling %d viewports on %s", steps, page.url)
    await page.evaluate(_SCROLL_JS, [steps, int(pause * 1000)])
