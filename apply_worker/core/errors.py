"""Error classification, page-level blocking detection and retry.

Design rules:
  - Every exception raised during a run maps to exactly one ErrorCategory.
  - Only NETWORK, TIMEOUT and ELEMENT_NOT_FOUND are retryable, each with its
    own retry cap. Policy blocks (CAPTCHA, rate limit, already applied) are
    never retried.
  - A captcha <script> tag alone is not a challenge; only a rendered,
    visible challenge or explicit challenge copy counts.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeVar

from patchright.async_api import TimeoutError as PlaywrightTimeoutError

from apply_worker.core.config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCategory(StrEnum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    VALIDATION = "validation"
    CAPTCHA = "captcha"
    RATE_LIMITED = "rate_limited"
    ALREADY_APPLIED = "already_applied"
    SESSION_EXPIRED = "session_expired"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    category: ErrorCategory
    code: str
    message: str
    retryable: bool
    max_retries: int
    original_error: BaseException | None = None


class BrowserCapacityError(RuntimeError):
    """Raised when the browser pool has no free context slot."""


class ResumeDownloadError(RuntimeError):
    """Raised when the resume file cannot be fetched from storage."""


class StorageError(RuntimeError):
    """Raised by the file store on missing objects or write failures."""


class NavigationError(RuntimeError):
    """Raised when a page load returns no response or an HTTP error status."""

    def __init__(self, message: str, code: str, *, retryable: bool) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable


# --- Exception message patterns (matched lowercase) ---
_NETWORK_PATTERNS: tuple[str, ...] = ("net::", "network", "connection refused", "econnrefused")
_ELEMENT_PATTERNS: tuple[str, ...] = (
    "waiting for selector",
    "element not found",
    "no element matching",
)
_CAPTCHA_PATTERNS: tuple[str, ...] = ("captcha",)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = ("too many requests", "429")
_SESSION_PATTERNS: tuple[str, ...] = ("session", "login", "unauthorized")

# --- Page text patterns ---
CAPTCHA_PHRASES: tuple[str, ...] = (
    "verify you are human",
    "prove you are not a robot",
    "complete the captcha",
    "solve this captcha",
    "security check",
    "please verify",
)
RATE_LIMIT_PHRASES: tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "slow down",
    "please try again later",
)
ALREADY_APPLIED_PHRASES: tuple[str, ...] = (
    "already applied",
    "duplicate application",
    "previously applied",
    "you have applied",
)
ACCESS_DENIED_PHRASES: tuple[str, ...] = (
    "access denied",
    "forbidden",
    "you have been blocked",
    "request blocked",
)

# Visible challenge widgets. Each match is checked with is_visible().
CAPTCHA_SELECTORS: tuple[str, ...] = (
    'iframe[src*="recaptcha"]',
    'iframe[src*="hcaptcha"]',
    "div.g-recaptcha",
    "div.h-captcha",
    '[class*="captcha-overlay"]',
    '[class*="captcha-modal"]',
    '[id*="captcha-container"]',
)


def _contains_any(text: str, patterns: tuple[str, ...]) -> bool:
    return any(p in text for p in patterns)


def classify_error(error: BaseException) -> ClassifiedError:
    """Map an exception to its category, code and retry policy."""
    message = str(error)
    lowered = message.lower()

    if isinstance(error, NavigationError):
        return ClassifiedError(
            ErrorCategory.NETWORK, error.code, message,
            retryable=error.retryable, max_retries=2 if error.retryable else 0,
            original_error=error,
        )
    if isinstance(error, (PlaywrightTimeoutError, TimeoutError)):
        return ClassifiedError(
            ErrorCategory.TIMEOUT, "TIMEOUT", message or "Operation timed out",
            retryable=True, max_retries=2, original_error=error,
        )
    if _contains_any(lowered, _NETWORK_PATTERNS):
        return ClassifiedError(
            ErrorCategory.NETWORK, "NETWORK_ERROR", message,
            retryable=True, max_retries=3, original_error=error,
        )
    if _contains_any(lowered, _ELEMENT_PATTERNS):
        return ClassifiedError(
            ErrorCategory.ELEMENT_NOT_FOUND, "ELEMENT_NOT_FOUND", message,
            retryable=True, max_retries=1, original_error=error,
        )
    if _contains_any(lowered, _CAPTCHA_PATTERNS):
        return ClassifiedError(
            ErrorCategory.CAPTCHA, "CAPTCHA_DETECTED", message,
            retryable=False, max_retries=0, original_error=error,
        )
    if _contains_any(lowered, _RATE_LIMIT_PATTERNS):
        return ClassifiedError(
            ErrorCategory.RATE_LIMITED, "RATE_LIMITED", message,
            retryable=False, max_retries=0, original_error=error,
        )
    if _contains_any(lowered, _SESSION_PATTERNS):
        return ClassifiedError(
            ErrorCategory.SESSION_EXPIRED, "SESSION_EXPIRED", message,
            retryable=False, max_retries=0, original_error=error,
        )
    return ClassifiedError(
        ErrorCategory.UNKNOWN, "UNKNOWN_ERROR", message or type(error).__name__,
        retryable=False, max_retries=0, original_error=error,
    )


@dataclass(frozen=True)
class PageState:
    """Snapshot of what the blocking detector looks at."""

    text: str
    url: str
    captcha_visible: bool = False


async def read_page_state(page: Any) -> PageState:
    text = (await page.text_content("body")) or ""
    captcha_visible = False
    for selector in CAPTCHA_SELECTORS:
        element = await page.query_selector(selector)
        if element is not None and await element.is_visible():
            captcha_visible = True
            break
    return PageState(text=text.lower(), url=page.url.lower(), captcha_visible=captcha_visible)


def classify_page_state(state: PageState) -> ClassifiedError | None:
    """Pure check of a page snapshot. Order: captcha, rate limit, already applied, access."""
    if state.captcha_visible or _contains_any(state.text, CAPTCHA_PHRASES):
        return ClassifiedError(
            ErrorCategory.CAPTCHA, "CAPTCHA_DETECTED",
            "CAPTCHA or human verification required",
            retryable=False, max_retries=0,
        )
    if _contains_any(state.text, RATE_LIMIT_PHRASES):
        return ClassifiedError(
            ErrorCategory.RATE_LIMITED, "RATE_LIMITED", "Rate limited by the website",
            retryable=False, max_retries=0,
        )
    if _contains_any(state.text, ALREADY_APPLIED_PHRASES):
        return ClassifiedError(
            ErrorCategory.ALREADY_APPLIED, "ALREADY_APPLIED", "Already applied to this position",
            retryable=False, max_retries=0,
        )
    if _contains_any(state.text, ACCESS_DENIED_PHRASES) or "/blocked" in state.url:
        return ClassifiedError(
            ErrorCategory.RATE_LIMITED, "ACCESS_BLOCKED", "Access to the page was blocked",
            retryable=False, max_retries=0,
        )
    return None


async def detect_blocking_condition(page: Any) -> ClassifiedError | None:
    """Inspect the rendered page for a condition that should stop the run.

    Returns None when the page looks usable or could not be read.
    """
    try:
        state = await read_page_state(page)
    except Exception:
        logger.debug("Could not read page state for blocking check", exc_info=True)
        return None
    return classify_page_state(state)


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retry number ``attempt`` (1-based), capped at max_delay_s."""
    delay = config.base_delay_s * config.multiplier ** (attempt - 1)
    return min(delay, config.max_delay_s)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    label: str = "operation",
) -> T:
    """Run ``operation`` with classified, bounded exponential-backoff retry.

    Non-retryable errors and errors whose category retry cap is exhausted
    are re-raised unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            classified = classify_error(e)
            if (
                not classified.retryable
                or attempt > classified.max_retries
                or attempt >= config.max_attempts
            ):
                raise
            delay = backoff_delay(attempt, config)
            logger.warning(
                "%s failed (%s, attempt %d/%d), retrying in %.1fs",
                label, classified.code, attempt, config.max_attempts, delay,
            )
            await asyncio.sleep(delay)


def error_summary(error: ClassifiedError) -> str:
    summary = f"[{error.code}] {error.message}"
    if error.retryable:
        summary += f" (retryable, max {error.max_retries} retries)"
    return summary
