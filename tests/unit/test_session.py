"""Tests for the browser pool: lazy launch, capacity, context lifecycle."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from apply_worker.browser import session
from apply_worker.browser.session import BrowserPool
from apply_worker.core.config import BrowserConfig
from apply_worker.core.errors import BrowserCapacityError
from apply_worker.pipeline.metrics import WorkerMetrics


def _context() -> MagicMock:
    context = MagicMock()
    context.close = AsyncMock()
    context.new_page = AsyncMock(return_value=MagicMock(name="page"))
    return context


@pytest.fixture()
def fake_playwright():  # type: ignore[no-untyped-def]
    """Patch async_playwright so no real browser is launched."""
    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.new_context = AsyncMock(side_effect=lambda **kwargs: _context())
    browser.close = AsyncMock()

    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()

    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    with patch.object(session, "async_playwright", return_value=starter):
        yield playwright, browser


# ---------------------------------------------------------------------------
# TestBrowserPool
# ---------------------------------------------------------------------------


class TestBrowserPool:
    async def test_launch_is_lazy_and_reused(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        playwright, browser = fake_playwright
        metrics = WorkerMetrics()
        pool = BrowserPool(BrowserConfig(headless=False), metrics)
        playwright.chromium.launch.assert_not_called()

        await pool.new_context()
        await pool.new_context()
        playwright.chromium.launch.assert_awaited_once()
        assert playwright.chromium.launch.await_args.kwargs["headless"] is False
        assert metrics.browser_launches == 1
        assert browser.new_context.await_count == 2

    async def test_context_configuration(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        _, browser = fake_playwright
        config = BrowserConfig(viewport_width=1280, viewport_height=720, locale="en-GB", timeout_ms=5000)
        pool = BrowserPool(config)
        context = await pool.new_context()

        kwargs = browser.new_context.await_args.kwargs
        assert kwargs["viewport"] == {"width": 1280, "height": 720}
        assert kwargs["locale"] == "en-GB"
        assert kwargs["user_agent"] == config.user_agent
        context.set_default_timeout.assert_called_once_with(5000)
        context.set_default_navigation_timeout.assert_called_once_with(config.navigation_timeout_ms)

    async def test_capacity_fails_fast(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        pool = BrowserPool(BrowserConfig(max_concurrent_contexts=2))
        first = await pool.new_context()
        await pool.new_context()
        assert pool.can_create_context() is False
        with pytest.raises(BrowserCapacityError, match=r"\(2\) reached"):
            await pool.new_context()

        await pool.close_context(first)
        assert pool.active_contexts == 1
        await pool.new_context()

    async def test_close_context_is_idempotent(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        pool = BrowserPool(BrowserConfig())
        context = await pool.new_context()
        await pool.close_context(context)
        await pool.close_context(context)
        context.close.assert_awaited_once()
        assert pool.active_contexts == 0

    async def test_close_error_still_releases_slot(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        pool = BrowserPool(BrowserConfig(max_concurrent_contexts=1))
        context = await pool.new_context()
        context.close.side_effect = RuntimeError("Target closed")
        await pool.close_context(context)
        assert pool.can_create_context() is True

    async def test_new_page(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        pool = BrowserPool(BrowserConfig())
        context = await pool.new_context()
        page = await pool.new_page(context)
        assert page is context.new_page.return_value

    async def test_relaunch_after_disconnect(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        playwright, browser = fake_playwright
        pool = BrowserPool(BrowserConfig())
        await pool.new_context()
        browser.is_connected.return_value = False
        await pool.new_context()
        assert playwright.chromium.launch.await_count == 2

    async def test_async_context_manager_closes_everything(self, fake_playwright) -> None:  # type: ignore[no-untyped-def]
        playwright, browser = fake_playwright
        async with BrowserPool(BrowserConfig()) as pool:
            context = await pool.new_context()
        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert pool.active_contexts == 0
