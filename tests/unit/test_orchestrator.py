"""Tests for ApplyOrchestrator with a stub adapter and a fake browser pool."""

import tempfile
from pathlib import Path
from types import SimpleNamespace

import pytest

from apply_worker.core import db
from apply_worker.core.config import ArtifactConfig, RateLimitConfig, RetryConfig, Settings, WorkerConfig
from apply_worker.core.errors import BrowserCapacityError
from apply_worker.core.schemas import ApplyRequest, ApplyResult, ApplyStatus, Profile
from apply_worker.core.store import SqliteTaskStore
from apply_worker.pipeline.orchestrator import ApplyOrchestrator
from apply_worker.pipeline.rate_limiter import RateLimiter
from apply_worker.platforms.base import ApplyContext, SiteAdapter
from tests.fakes import FakePage

GREENHOUSE_URL = "https://boards.greenhouse.io/acme/jobs/1"


class _FakePool:
    def __init__(self, page: FakePage, *, full: bool = False) -> None:
        self.page = page
        self.full = full
        self.opened = 0
        self.closed: list[str] = []

    async def new_context(self) -> str:
        if self.full:
            msg = "Max concurrent browser contexts (1) reached"
            raise BrowserCapacityError(msg)
        self.opened += 1
        return f"context-{self.opened}"

    async def new_page(self, context: str) -> FakePage:
        return self.page

    async def close_context(self, context: str) -> None:
        self.closed.append(context)


class _StubAdapter(SiteAdapter):
    """Takes one screenshot, then returns ``result`` or raises ``error``."""

    def __init__(self, result: ApplyResult | None = None, error: Exception | None = None) -> None:
        self.result = result or ApplyResult(status=ApplyStatus.SUCCEEDED, fields_filled_count=3)
        self.error = error
        self.ctx: ApplyContext | None = None
        self.resume_bytes = b""

    @property
    def name(self) -> str:
        return "Stub"

    def supports(self, url: str) -> bool:
        return "greenhouse.io" in url

    async def apply(self, ctx: ApplyContext) -> ApplyResult:
        self.ctx = ctx
        self.resume_bytes = ctx.resume_path.read_bytes()
        shot = ctx.screenshot_dir / "stub-pre-submit-1.png"
        await ctx.page.screenshot(path=str(shot))
        ctx.page.emit("console", SimpleNamespace(type="error", text="Uncaught TypeError"))
        if self.error is not None:
            raise self.error
        return self.result.model_copy(update={"screenshots": [str(shot)]})


@pytest.fixture(autouse=True)
def scratch(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect temp dirs so cleanup can be checked."""
    d = tmp_path / "scratch"
    d.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(d))
    return d


@pytest.fixture()
def store(tmp_path: Path) -> SqliteTaskStore:
    return SqliteTaskStore(db.init_db(tmp_path / "w.db"), tmp_path / "storage")


def _request(
    store: SqliteTaskStore,
    url: str = GREENHOUSE_URL,
    *,
    upload_resume: bool = True,
    dry_run: bool = False,
    user_inputs: dict[str, str] | None = None,
) -> ApplyRequest:
    conn = store.conn
    db.upsert_profile(conn, Profile(user_id="u1", full_name="Ada Lovelace", email="ada@example.com"))
    if upload_resume:
        store.upload_file("resumes/u1/cv.pdf", b"%PDF-1.4 resume", "application/pdf")
    resume_id = db.insert_resume(conn, "u1", "resumes/u1/cv.pdf", "cv.pdf", is_primary=True)
    job_id, _ = db.upsert_job_target(conn, "u1", url)
    run_id = db.enqueue_run(conn, "u1", job_id, resume_id)
    return ApplyRequest(
        run_id=run_id,
        job=db.get_job_target(conn, job_id),  # type: ignore[arg-type]
        resume=db.get_resume(conn, resume_id),  # type: ignore[arg-type]
        profile=db.get_profile(conn, "u1"),  # type: ignore[arg-type]
        dry_run=dry_run,
        user_inputs=user_inputs or {},
    )


def _orchestrator(
    store: SqliteTaskStore,
    pool: _FakePool,
    adapter: SiteAdapter,
    **settings: object,
) -> ApplyOrchestrator:
    return ApplyOrchestrator(
        store,
        pool,  # type: ignore[arg-type]
        RateLimiter(RateLimitConfig(default_interval_s=0.0, domain_intervals={})),
        Settings(retry=RetryConfig(base_delay_s=0.0), **settings),  # type: ignore[arg-type]
        adapters=[adapter],
    )


def _artifact_types(store: SqliteTaskStore) -> list[str]:
    return [row["type"] for row in store.conn.execute("SELECT type FROM artifacts ORDER BY id")]


# ---------------------------------------------------------------------------
# TestEarlyFailures
# ---------------------------------------------------------------------------


class TestEarlyFailures:
    async def test_unsupported_site_does_no_browser_work(self, store: SqliteTaskStore) -> None:
        url = "https://acme.wd5.myworkdayjobs.com/careers/job/1"
        pool = _FakePool(FakePage())
        result = await _orchestrator(store, pool, _StubAdapter()).apply(_request(store, url))
        assert result.status == ApplyStatus.FAILED
        assert result.error_code == "UNSUPPORTED_ATS"
        assert result.error_message == f"No adapter available for URL: {url}"
        assert pool.opened == 0

    async def test_resume_download_failure(self, store: SqliteTaskStore, scratch: Path) -> None:
        pool = _FakePool(FakePage())
        result = await _orchestrator(store, pool, _StubAdapter()).apply(_request(store, upload_resume=False))
        assert result.error_code == "RESUME_DOWNLOAD_FAILED"
        assert "resumes/u1/cv.pdf" in (result.error_message or "")
        assert pool.opened == 0
        assert list(scratch.iterdir()) == []

    async def test_browser_at_capacity(self, store: SqliteTaskStore) -> None:
        pool = _FakePool(FakePage(), full=True)
        adapter = _StubAdapter()
        result = await _orchestrator(store, pool, adapter).apply(_request(store))
        assert result.error_code == "BROWSER_CAPACITY"
        assert adapter.ctx is None
        assert pool.closed == []


# ---------------------------------------------------------------------------
# TestSuccessfulRun
# ---------------------------------------------------------------------------


class TestSuccessfulRun:
    async def test_publishes_screenshots_and_cleans_up(self, store: SqliteTaskStore, scratch: Path) -> None:
        pool = _FakePool(FakePage())
        adapter = _StubAdapter()
        request = _request(store)
        result = await _orchestrator(store, pool, adapter).apply(request)

        assert result.status == ApplyStatus.SUCCEEDED
        assert result.fields_filled_count == 3
        expected = f"runs/{request.run_id}/stub-pre-submit-1.png"
        assert result.screenshots == [expected]
        assert store.download_file(expected) == b"\x89PNG fake"
        assert _artifact_types(store) == ["screenshot"]

        assert adapter.resume_bytes == b"%PDF-1.4 resume"
        assert adapter.ctx is not None and adapter.ctx.resume_path.name == "cv.pdf"
        assert pool.closed == ["context-1"]
        assert list(scratch.iterdir()) == []

    async def test_retries_server_errors(self, store: SqliteTaskStore) -> None:
        page = FakePage()
        page.goto_results = [503, 200]
        result = await _orchestrator(store, _FakePool(page), _StubAdapter()).apply(_request(store))
        assert result.status == ApplyStatus.SUCCEEDED
        assert page.visited == [GREENHOUSE_URL, GREENHOUSE_URL]

    async def test_effective_dry_run(self, store: SqliteTaskStore) -> None:
        adapter = _StubAdapter()
        await _orchestrator(store, _FakePool(FakePage()), adapter).apply(_request(store, dry_run=True))
        assert adapter.ctx is not None and adapter.ctx.dry_run is True

        adapter = _StubAdapter()
        orchestrator = _orchestrator(
            store, _FakePool(FakePage()), adapter, worker=WorkerConfig(dry_run=True),
        )
        await orchestrator.apply(_request(store))
        assert adapter.ctx is not None and adapter.ctx.dry_run is True

    async def test_passes_inputs_and_generic_flag(self, store: SqliteTaskStore) -> None:
        adapter = _StubAdapter()
        orchestrator = _orchestrator(
            store, _FakePool(FakePage()), adapter, worker=WorkerConfig(use_generic_answers=True),
        )
        await orchestrator.apply(_request(store, user_inputs={"Years of experience": "7"}))
        assert adapter.ctx is not None
        assert adapter.ctx.user_inputs == {"Years of experience": "7"}
        assert adapter.ctx.use_generic_answers is True
        assert adapter.ctx.job_url == GREENHOUSE_URL

    async def test_failed_result_keeps_console_logs(self, store: SqliteTaskStore) -> None:
        adapter = _StubAdapter(ApplyResult.failed("VALIDATION_ERROR", "Form validation failed: Email"))
        result = await _orchestrator(store, _FakePool(FakePage()), adapter).apply(_request(store))
        assert result.error_code == "VALIDATION_ERROR"
        assert len(result.screenshots) == 1
        assert _artifact_types(store) == ["screenshot", "console_log"]

    async def test_artifacts_disabled(self, store: SqliteTaskStore, scratch: Path) -> None:
        orchestrator = _orchestrator(
            store, _FakePool(FakePage()), _StubAdapter(), artifacts=ArtifactConfig(enabled=False),
        )
        result = await orchestrator.apply(_request(store))
        assert result.status == ApplyStatus.SUCCEEDED
        assert result.screenshots == []
        assert _artifact_types(store) == []
        assert list(scratch.iterdir()) == []

    async def test_upload_disabled(self, store: SqliteTaskStore) -> None:
        orchestrator = _orchestrator(
            store, _FakePool(FakePage()), _StubAdapter(), artifacts=ArtifactConfig(upload=False),
        )
        result = await orchestrator.apply(_request(store))
        assert result.screenshots == []
        assert _artifact_types(store) == []


# ---------------------------------------------------------------------------
# TestFailures
# ---------------------------------------------------------------------------


class TestFailures:
    async def test_client_error_not_retried(self, store: SqliteTaskStore) -> None:
        page = FakePage()
        page.goto_results = [404]
        pool = _FakePool(page)
        adapter = _StubAdapter()
        request = _request(store)
        result = await _orchestrator(store, pool, adapter).apply(request)

        assert result.status == ApplyStatus.FAILED
        assert result.error_code == "HTTP_404"
        assert page.visited == [GREENHOUSE_URL]
        assert adapter.ctx is None
        assert len(result.screenshots) == 1
        assert result.screenshots[0].startswith(f"runs/{request.run_id}/error-state-")
        assert pool.closed == ["context-1"]

    async def test_blocked_before_apply(self, store: SqliteTaskStore) -> None:
        page = FakePage(body_text="Too many requests. Please slow down.")
        adapter = _StubAdapter()
        result = await _orchestrator(store, _FakePool(page), adapter).apply(_request(store))
        assert result.status == ApplyStatus.BLOCKED
        assert result.error_code == "RATE_LIMITED"
        assert adapter.ctx is None
        assert len(result.screenshots) == 1
        assert "/blocked-" in result.screenshots[0]

    async def test_captcha_before_apply(self, store: SqliteTaskStore) -> None:
        page = FakePage(body_text="Please verify you are human")
        result = await _orchestrator(store, _FakePool(page), _StubAdapter()).apply(_request(store))
        assert result.status == ApplyStatus.BLOCKED
        assert result.error_code == "CAPTCHA_DETECTED"

    async def test_adapter_exception_is_classified(self, store: SqliteTaskStore, scratch: Path) -> None:
        adapter = _StubAdapter(error=RuntimeError("net::ERR_CONNECTION_RESET"))
        pool = _FakePool(FakePage())
        result = await _orchestrator(store, pool, adapter).apply(_request(store))

        assert result.status == ApplyStatus.FAILED
        assert result.error_code == "NETWORK_ERROR"
        assert any("/error-state-" in s for s in result.screenshots)
        types = _artifact_types(store)
        assert "html_snapshot" in types
        assert "console_log" in types
        assert pool.closed == ["context-1"]
        assert list(scratch.iterdir()) == []
