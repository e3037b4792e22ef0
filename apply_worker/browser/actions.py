"""Reusable browser actions: ordered selector lookup, safe fills, navigation.

Design rules:
  - Selectors are passed in as ordered tuples; the first match wins.
  - A selector that throws is treated as "no match" and the next one is
    tried. Nothing here raises for a missing element.
  - Waits go through page.wait_for_timeout so fake pages can skip them.
"""

import asyncio
import logging
import random
import re
from typing import Any

from patchright.async_api import TimeoutError as PlaywrightTimeoutError

from apply_worker.core.errors import NavigationError

logger = logging.getLogger(__name__)

SCROLL_STEP_JS = "window.scrollBy(0, 300)"
POLL_INTERVAL_MS = 250

_WHITESPACE = re.compile(r"\s+")


async def find_first(root: Any, selectors: tuple[str, ...]) -> Any | None:
    """Return the first element matching any selector, in order."""
    for selector in selectors:
        try:
            element = await root.query_selector(selector)
        except Exception:
            logger.debug("Selector failed: %s", selector, exc_info=True)
            continue
        if element is not None:
            return element
    return None


async def find_all_first(root: Any, selectors: tuple[str, ...]) -> list[Any]:
    """Return all elements for the first selector that matches anything."""
    for selector in selectors:
        try:
            elements = await root.query_selector_all(selector)
        except Exception:
            logger.debug("Selector failed: %s", selector, exc_info=True)
            continue
        if elements:
            return list(elements)
    return []


async def wait_for_any(
    page: Any,
    selectors: tuple[str, ...],
    *,
    timeout_ms: int = 10000,
) -> Any | None:
    """Poll until one of ``selectors`` matches or the timeout budget is spent."""
    attempts = max(1, timeout_ms // POLL_INTERVAL_MS)
    for _ in range(attempts):
        element = await find_first(page, selectors)
        if element is not None:
            return element
        await page.wait_for_timeout(POLL_INTERVAL_MS)
    return None


async def wait_for_element_with_retry(
    page: Any,
    selector: str,
    *,
    timeout_ms: int = 5000,
    retries: int = 2,
) -> bool:
    """Wait for ``selector``, scrolling between tries to trigger lazy loading."""
    for attempt in range(retries + 1):
        try:
            await page.wait_for_selector(selector, timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.debug("Selector %s not found (try %d/%d)", selector, attempt + 1, retries + 1)
            if attempt < retries:
                await page.evaluate(SCROLL_STEP_JS)
                await asyncio.sleep(0.5)
    return False


async def safe_click(page: Any, selector: str, *, timeout_ms: int = 10000) -> bool:
    """Click the element once it is visible. Returns False instead of raising."""
    try:
        element = await page.wait_for_selector(selector, timeout=timeout_ms, state="visible")
        if element is None:
            return False
        await element.scroll_into_view_if_needed()
        await element.click(timeout=5000)
        return True
    except Exception:
        logger.debug("Safe click failed for %s", selector, exc_info=True)
        return False


async def safe_fill(page: Any, selector: str, value: str, *, timeout_ms: int = 10000) -> bool:
    """Fill the element once it is visible. Returns False instead of raising."""
    try:
        element = await page.wait_for_selector(selector, timeout=timeout_ms, state="visible")
        if element is None:
            return False
        await element.fill(value)
        return True
    except Exception:
        logger.debug("Safe fill failed for %s", selector, exc_info=True)
        return False


async def safe_navigate(
    page: Any,
    url: str,
    *,
    timeout_ms: int = 30000,
    wait_until: str = "domcontentloaded",
) -> Any:
    """Load ``url``; raise NavigationError on a missing response or HTTP error.

    5xx responses are retryable, 4xx are not. Transport errors from the
    browser propagate unchanged for classify_error to handle.
    """
    response = await page.goto(url, timeout=timeout_ms, wait_until=wait_until)
    if response is None:
        msg = "No response from server"
        raise NavigationError(msg, "NO_RESPONSE", retryable=True)
    status = response.status
    if status >= 400:
        msg = f"HTTP error: {status}"
        raise NavigationError(msg, f"HTTP_{status}", retryable=status >= 500)
    return response


async def human_pause(page: Any, min_ms: int = 300, max_ms: int = 800) -> int:
    """Wait a random duration between min_ms and max_ms. Returns the duration."""
    floor = max(min_ms, 0)
    duration = random.randint(floor, max(max_ms, floor))
    await page.wait_for_timeout(duration)
    return duration


def collapse_whitespace(text: str | None) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


def clean_label(text: str | None) -> str:
    """Label text without required-field asterisks or surrounding whitespace."""
    return collapse_whitespace((text or "").replace("*", ""))


async def read_label(container: Any, selectors: tuple[str, ...]) -> str:
    """Raw label text (asterisks kept) of the first matching label element."""
    label = await find_first(container, selectors)
    if label is None:
        return ""
    return collapse_whitespace(await label.text_content())


async def is_required(control: Any, label_text: str = "") -> bool:
    """A control is required if marked so in the DOM or its label has an asterisk."""
    if await control.get_attribute("required") is not None:
        return True
    if (await control.get_attribute("aria-required") or "").lower() == "true":
        return True
    return "*" in label_text


async def select_options(select: Any) -> list[tuple[str, str]]:
    """(value, text) pairs for every <option> of a select."""
    options: list[tuple[str, str]] = []
    for option in await select.query_selector_all("option"):
        value = await option.get_attribute("value")
        text = collapse_whitespace(await option.text_content())
        options.append((value if value is not None else text, text))
    return options


def is_placeholder_option(value: str, text: str) -> bool:
    lowered = text.lower()
    return not value or "select" in lowered or lowered.startswith("--")


async def select_is_unset(select: Any) -> bool:
    """True when a select still shows its placeholder option."""
    value = await select.input_value()
    if not value:
        return True
    for option_value, text in await select_options(select):
        if option_value == value:
            return is_placeholder_option(option_value, text)
    return False
