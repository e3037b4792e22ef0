"""Browser pool management using patchright.

Hard rules:
  - One browser process per worker, launched lazily and reused.
  - One fresh context per run; contexts never share cookies or storage.
  - Context count is bounded; at capacity new_context() fails fast with
    BrowserCapacityError instead of queueing.
  - patchright, not vanilla playwright
"""

import logging
from types import TracebackType

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from apply_worker.core.config import BrowserConfig
from apply_worker.core.errors import BrowserCapacityError
from apply_worker.pipeline.metrics import WorkerMetrics

logger = logging.getLogger(__name__)


class BrowserPool:
    """Owns one patchright browser and hands out isolated contexts.

    Usage::

        async with BrowserPool(config) as pool:
            context = await pool.new_context()
            page = await pool.new_page(context)
            ...
            await pool.close_context(context)
    """

    def __init__(self, config: BrowserConfig, metrics: WorkerMetrics | None = None) -> None:
        self._config = config
        self._metrics = metrics
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._contexts: set[BrowserContext] = set()

    @property
    def active_contexts(self) -> int:
        return len(self._contexts)

    def can_create_context(self) -> bool:
        return self.active_contexts < self._config.max_concurrent_contexts

    async def _ensure_browser(self) -> Browser:
        if self._browser is not None and self._browser.is_connected():
            return self._browser
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._config.headless,
            args=self._config.launch_args,
        )
        if self._metrics is not None:
            self._metrics.record_browser_launch()
        logger.info("Browser launched (headless=%s)", self._config.headless)
        return self._browser

    async def new_context(self) -> BrowserContext:
        """Create an isolated context. Raises BrowserCapacityError at capacity."""
        if not self.can_create_context():
            msg = (
                f"Max concurrent browser contexts "
                f"({self._config.max_concurrent_contexts}) reached"
            )
            raise BrowserCapacityError(msg)

        browser = await self._ensure_browser()
        context = await browser.new_context(
            viewport={
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
            user_agent=self._config.user_agent,
            locale=self._config.locale,
            timezone_id=self._config.timezone_id,
        )
        context.set_default_timeout(self._config.timeout_ms)
        context.set_default_navigation_timeout(self._config.navigation_timeout_ms)
        self._contexts.add(context)
        logger.debug("Context created (%d active)", self.active_contexts)
        return context

    async def new_page(self, context: BrowserContext) -> Page:
        return await context.new_page()

    async def close_context(self, context: BrowserContext) -> None:
        """Close a context and release its slot. Safe to call twice."""
        if context not in self._contexts:
            return
        self._contexts.discard(context)
        try:
            await context.close()
        except Exception:
            logger.warning("Error closing browser context", exc_info=True)
        logger.debug("Context closed (%d active)", self.active_contexts)

    async def close(self) -> None:
        for context in list(self._contexts):
            await self.close_context(context)
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
            logger.info("Browser closed")
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> "BrowserPool":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
