"""Tests for the per-run artifact collector."""

import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from apply_worker.core import db
from apply_worker.core.schemas import ArtifactType
from apply_worker.core.store import SqliteTaskStore
from apply_worker.pipeline.artifacts import ArtifactCollector
from tests.fakes import FakePage


@pytest.fixture()
def collector(tmp_path: Path):  # type: ignore[no-untyped-def]
    c = ArtifactCollector(7, base_dir=tmp_path)
    yield c
    c.cleanup()


@pytest.fixture()
def store(tmp_path: Path) -> SqliteTaskStore:
    return SqliteTaskStore(db.init_db(tmp_path / "w.db"), tmp_path / "storage")


class TestCapture:
    def test_scoped_temp_dir(self, collector: ArtifactCollector, tmp_path: Path) -> None:
        assert collector.temp_dir.parent == tmp_path
        assert collector.temp_dir.name.startswith("artifacts-7-")

    async def test_screenshot(self, collector: ArtifactCollector) -> None:
        page = FakePage("https://jobs.lever.co/acme/1")
        artifact = await collector.capture_screenshot(page, "form-loaded", full_page=True)
        assert artifact is not None
        assert artifact.type == ArtifactType.SCREENSHOT
        assert artifact.local_path.exists()
        assert artifact.metadata["url"] == "https://jobs.lever.co/acme/1"

    async def test_screenshot_failure_is_skipped(self, collector: ArtifactCollector) -> None:
        page = MagicMock()
        page.screenshot.side_effect = RuntimeError("Target closed")
        assert await collector.capture_screenshot(page, "x") is None
        assert collector.artifacts == []

    async def test_html_snapshot(self, collector: ArtifactCollector) -> None:
        artifact = await collector.capture_html_snapshot(FakePage(), "error-state")
        assert artifact is not None
        assert artifact.local_path.read_text() == "<html><body></body></html>"

    def test_add_file_dedups_and_ignores_missing(self, collector: ArtifactCollector) -> None:
        path = collector.temp_dir / "shot.png"
        path.write_bytes(b"x")
        first = collector.add_file(path)
        assert collector.add_file(path) is first
        assert collector.add_file(collector.temp_dir / "missing.png") is None
        assert len(collector.artifacts) == 1

    def test_console_capture(self, collector: ArtifactCollector) -> None:
        page = FakePage()
        collector.setup_console_capture(page)
        page.emit("console", SimpleNamespace(type="log", text="hello"))
        page.emit("pageerror", SimpleNamespace(message="boom"))
        artifact = collector.save_console_logs()
        assert artifact is not None
        entries = json.loads(artifact.local_path.read_text())
        assert [e["text"] for e in entries] == ["hello", "Page Error: boom"]

    def test_no_console_logs_no_artifact(self, collector: ArtifactCollector) -> None:
        assert collector.save_console_logs() is None

    async def test_debug_package(self, collector: ArtifactCollector) -> None:
        page = FakePage()
        collector.setup_console_capture(page)
        page.emit("console", SimpleNamespace(type="error", text="bad"))
        await collector.create_debug_package(page, ValueError("exploded"))
        types = [a.type for a in collector.artifacts]
        assert types.count(ArtifactType.SCREENSHOT) == 1
        assert ArtifactType.HTML_SNAPSHOT in types
        report = json.loads((collector.temp_dir / "error.json").read_text())
        assert report["type"] == "ValueError"
        assert report["message"] == "exploded"


class TestUpload:
    async def test_upload_and_metadata(self, collector: ArtifactCollector, store: SqliteTaskStore) -> None:
        await collector.capture_screenshot(FakePage(), "pre-submit")
        uploaded = collector.upload(store)
        assert len(uploaded) == 1
        storage_path = uploaded[0].storage_path
        assert storage_path is not None and storage_path.startswith("runs/7/pre-submit-")
        assert store.download_file(storage_path) == b"\x89PNG fake"

        collector.store_metadata(store)
        row = store.conn.execute("SELECT run_id, type FROM artifacts").fetchone()
        assert (row["run_id"], row["type"]) == (7, "screenshot")

    async def test_upload_skips_already_uploaded(self, collector: ArtifactCollector, store: SqliteTaskStore) -> None:
        await collector.capture_screenshot(FakePage(), "a")
        collector.upload(store)
        assert collector.upload(store) == []

    async def test_upload_failure_logged_not_raised(self, collector: ArtifactCollector) -> None:
        await collector.capture_screenshot(FakePage(), "a")
        failing = MagicMock()
        failing.upload_file.side_effect = OSError("disk full")
        assert collector.upload(failing) == []
        assert collector.artifacts[0].storage_path is None


class TestCleanup:
    def test_removes_dir(self, tmp_path: Path) -> None:
        c = ArtifactCollector(1, base_dir=tmp_path)
        (c.temp_dir / "x.png").write_bytes(b"x")
        c.cleanup()
        assert not c.temp_dir.exists()
