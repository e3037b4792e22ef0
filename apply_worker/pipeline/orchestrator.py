"""Orchestrator: wires adapter lookup, rate limiting, browser, and artifacts.

Data flow for one run:
  1. Adapter lookup (unsupported site fails before any browser work)
  2. Per-domain rate-limit wait
  3. Resume download into a scoped temp dir
  4. Fresh browser context + page, console capture
  5. Navigation with classified retry
  6. Pre-flight blocking check (captcha, rate limit, already applied)
  7. Adapter apply (dry run = request flag OR worker flag)
  8. Screenshots uploaded, artifact metadata stored

Cleanup (context, resume dir, artifact dir) always runs.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Any

from apply_worker.browser.actions import safe_navigate
from apply_worker.browser.session import BrowserPool
from apply_worker.core.config import Settings
from apply_worker.core.errors import (
    BrowserCapacityError,
    ResumeDownloadError,
    classify_error,
    detect_blocking_condition,
    error_summary,
    with_retry,
)
from apply_worker.core.logging_utils import run_logger
from apply_worker.core.schemas import ApplyRequest, ApplyResult, ApplyStatus, ArtifactType, Resume
from apply_worker.core.store import TaskStore
from apply_worker.pipeline.artifacts import ArtifactCollector
from apply_worker.pipeline.rate_limiter import RateLimiter
from apply_worker.platforms.base import ApplyContext, SiteAdapter
from apply_worker.platforms.registry import default_adapters, resolve_adapter

logger = logging.getLogger(__name__)


class ApplyOrchestrator:
    """Runs one application end to end and always returns an ApplyResult."""

    def __init__(
        self,
        store: TaskStore,
        pool: BrowserPool,
        rate_limiter: RateLimiter,
        settings: Settings,
        adapters: list[SiteAdapter] | None = None,
    ) -> None:
        self._store = store
        self._pool = pool
        self._rate_limiter = rate_limiter
        self._settings = settings
        self._adapters = adapters if adapters is not None else default_adapters()

    async def apply(self, request: ApplyRequest) -> ApplyResult:
        log = run_logger(logger, request.run_id)
        url = request.job.url

        # Step 1: Adapter lookup
        adapter = resolve_adapter(url, self._adapters)
        if adapter is None:
            log.warning("No adapter supports %s", url)
            return ApplyResult.failed("UNSUPPORTED_ATS", f"No adapter available for URL: {url}")
        log.info("Using %s adapter for %s", adapter.name, url)

        # Step 2: Rate limit
        waited = await self._rate_limiter.wait_for_slot(url)
        if waited > 0:
            log.info("Rate limited: waited %.1fs", waited)

        collector: ArtifactCollector | None = None
        if self._settings.artifacts.enabled:
            collector = ArtifactCollector(request.run_id)
        resume_dir = Path(tempfile.mkdtemp(prefix=f"resume-{request.run_id}-"))
        context: Any = None
        page: Any = None
        try:
            # Step 3: Resume
            try:
                resume_path = self._download_resume(request.resume, resume_dir)
            except ResumeDownloadError as e:
                log.error("Resume download failed: %s", e)
                return ApplyResult.failed("RESUME_DOWNLOAD_FAILED", str(e))

            # Step 4: Browser
            try:
                context = await self._pool.new_context()
            except BrowserCapacityError as e:
                log.warning("Browser at capacity: %s", e)
                return ApplyResult.failed("BROWSER_CAPACITY", str(e))
            page = await self._pool.new_page(context)
            if collector is not None:
                collector.setup_console_capture(page)

            # Step 5: Navigate
            timeout_ms = self._settings.browser.navigation_timeout_ms
            await with_retry(
                lambda: safe_navigate(page, url, timeout_ms=timeout_ms),
                self._settings.retry,
                label=f"navigate {url}",
            )

            # Step 6: Pre-flight blocking check
            blocking = await detect_blocking_condition(page)
            if blocking is not None:
                log.warning("Blocked before apply: %s", error_summary(blocking))
                screenshots: list[str] = []
                if collector is not None:
                    await collector.capture_screenshot(page, "blocked")
                    screenshots = self._publish(collector)
                return ApplyResult.blocked(blocking.code, blocking.message, screenshots=screenshots)

            # Step 7: Adapter
            ctx = ApplyContext(
                page=page,
                job_url=url,
                profile=request.profile,
                resume_path=resume_path,
                dry_run=request.dry_run or self._settings.worker.dry_run,
                user_inputs=dict(request.user_inputs),
                use_generic_answers=self._settings.worker.use_generic_answers,
                screenshot_dir=collector.temp_dir if collector is not None else resume_dir,
            )
            result = await adapter.apply(ctx)
            log.info("Adapter finished: %s (%d fields)", result.status, result.fields_filled_count)

            # Step 8: Artifacts
            if collector is None:
                return result.model_copy(update={"screenshots": []})
            for path in result.screenshots:
                collector.add_file(path, metadata={"name": Path(path).stem, "status": result.status.value})
            if result.status == ApplyStatus.FAILED:
                collector.save_console_logs()
            return result.model_copy(update={"screenshots": self._publish(collector)})
        except Exception as e:
            classified = classify_error(e)
            log.error("Run failed: %s", error_summary(classified), exc_info=True)
            screenshots = []
            if collector is not None and page is not None:
                await collector.create_debug_package(page, e)
                screenshots = self._publish(collector)
            return ApplyResult.failed(classified.code, classified.message, screenshots=screenshots)
        finally:
            if context is not None:
                await self._pool.close_context(context)
            shutil.rmtree(resume_dir, ignore_errors=True)
            if collector is not None:
                collector.cleanup()

    def _download_resume(self, resume: Resume, target_dir: Path) -> Path:
        try:
            data = self._store.download_file(resume.storage_path)
        except Exception as e:
            msg = f"Failed to download resume {resume.storage_path}: {e}"
            raise ResumeDownloadError(msg) from e
        filename = Path(resume.filename).name or f"resume-{resume.id}.pdf"
        path = target_dir / filename
        path.write_bytes(data)
        return path

    def _publish(self, collector: ArtifactCollector) -> list[str]:
        """Upload collected artifacts; return storage paths of the screenshots."""
        if not self._settings.artifacts.upload:
            return []
        uploaded = collector.upload(self._store)
        collector.store_metadata(self._store, uploaded)
        return [a.storage_path for a in uploaded if a.type == ArtifactType.SCREENSHOT and a.storage_path]
