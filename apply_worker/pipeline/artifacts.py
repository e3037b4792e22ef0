"""Debug artifact capture for one run: screenshots, HTML, console logs.

Every capture is best effort: a failed screenshot is logged and skipped,
it never fails the run. Files live in a per-run temp directory until they
are uploaded to the store under ``runs/<run_id>/``; cleanup() deletes the
directory.
"""

import json
import logging
import shutil
import tempfile
import time
import traceback
from pathlib import Path
from typing import Any

from apply_worker.core.schemas import Artifact, ArtifactType, ConsoleLogEntry
from apply_worker.core.store import TaskStore

logger = logging.getLogger(__name__)

CONTENT_TYPES: dict[ArtifactType, str] = {
    ArtifactType.SCREENSHOT: "image/png",
    ArtifactType.HTML_SNAPSHOT: "text/html",
    ArtifactType.CONSOLE_LOG: "application/json",
}


def _stamp() -> int:
    return int(time.time() * 1000)


class ArtifactCollector:
    """Collects artifacts for one run in a scoped temp directory."""

    def __init__(self, run_id: int, base_dir: str | Path | None = None) -> None:
        self.run_id = run_id
        self.temp_dir = Path(tempfile.mkdtemp(prefix=f"artifacts-{run_id}-", dir=base_dir))
        self.artifacts: list[Artifact] = []
        self.console_logs: list[ConsoleLogEntry] = []

    def add_file(
        self,
        path: str | Path,
        artifact_type: ArtifactType = ArtifactType.SCREENSHOT,
        metadata: dict[str, Any] | None = None,
    ) -> Artifact | None:
        """Register a file written by someone else (e.g. an adapter screenshot)."""
        path = Path(path)
        if not path.is_file():
            logger.debug("Artifact file missing, not collected: %s", path)
            return None
        for existing in self.artifacts:
            if existing.local_path == path:
                return existing
        artifact = Artifact(
            type=artifact_type,
            local_path=path,
            metadata=metadata or {"name": path.stem},
        )
        self.artifacts.append(artifact)
        return artifact

    async def capture_screenshot(
        self,
        page: Any,
        name: str,
        *,
        full_page: bool = False,
    ) -> Artifact | None:
        local_path = self.temp_dir / f"{name}-{_stamp()}.png"
        try:
            await page.screenshot(path=str(local_path), full_page=full_page)
        except Exception:
            logger.warning("Screenshot capture failed: %s", name, exc_info=True)
            return None
        artifact = Artifact(
            type=ArtifactType.SCREENSHOT,
            local_path=local_path,
            metadata={"name": name, "full_page": full_page, "url": page.url},
        )
        self.artifacts.append(artifact)
        logger.debug("Screenshot captured: %s", local_path.name)
        return artifact

    async def capture_html_snapshot(self, page: Any, name: str) -> Artifact | None:
        local_path = self.temp_dir / f"{name}-{_stamp()}.html"
        try:
            html = await page.content()
            title = await page.title()
            local_path.write_text(html, encoding="utf-8")
        except Exception:
            logger.warning("HTML snapshot failed: %s", name, exc_info=True)
            return None
        artifact = Artifact(
            type=ArtifactType.HTML_SNAPSHOT,
            local_path=local_path,
            metadata={"name": name, "url": page.url, "title": title},
        )
        self.artifacts.append(artifact)
        return artifact

    def setup_console_capture(self, page: Any) -> None:
        """Record console messages and uncaught page errors for this run."""

        def on_console(message: Any) -> None:
            self.console_logs.append(ConsoleLogEntry(type=message.type, text=message.text))

        def on_page_error(error: Any) -> None:
            text = getattr(error, "message", None) or str(error)
            self.console_logs.append(ConsoleLogEntry(type="error", text=f"Page Error: {text}"))

        page.on("console", on_console)
        page.on("pageerror", on_page_error)

    def save_console_logs(self) -> Artifact | None:
        if not self.console_logs:
            return None
        local_path = self.temp_dir / f"console-logs-{_stamp()}.json"
        payload = [entry.model_dump(mode="json") for entry in self.console_logs]
        try:
            local_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            logger.warning("Console log save failed", exc_info=True)
            return None
        artifact = Artifact(
            type=ArtifactType.CONSOLE_LOG,
            local_path=local_path,
            metadata={"entry_count": len(self.console_logs)},
        )
        self.artifacts.append(artifact)
        return artifact

    def write_error_report(self, error: BaseException) -> Artifact | None:
        local_path = self.temp_dir / "error.json"
        report = {
            "type": type(error).__name__,
            "message": str(error),
            "traceback": "".join(traceback.format_exception(error)),
            "timestamp": _stamp(),
        }
        try:
            local_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        except OSError:
            logger.warning("Error report write failed", exc_info=True)
            return None
        artifact = Artifact(
            type=ArtifactType.CONSOLE_LOG,
            local_path=local_path,
            metadata={"is_error": True},
        )
        self.artifacts.append(artifact)
        return artifact

    async def create_debug_package(self, page: Any, error: BaseException | None = None) -> None:
        """Capture the error state: full-page screenshot, HTML, console and error report."""
        await self.capture_screenshot(page, "error-state", full_page=True)
        await self.capture_html_snapshot(page, "error-state")
        self.save_console_logs()
        if error is not None:
            self.write_error_report(error)

    def upload(self, store: TaskStore) -> list[Artifact]:
        """Upload every artifact not yet stored. Returns the uploaded ones."""
        uploaded: list[Artifact] = []
        for artifact in self.artifacts:
            if artifact.storage_path is not None:
                continue
            storage_path = f"runs/{self.run_id}/{artifact.local_path.name}"
            try:
                artifact.storage_path = store.upload_file(
                    storage_path, artifact.local_path.read_bytes(), CONTENT_TYPES[artifact.type],
                )
            except Exception:
                logger.warning("Artifact upload failed: %s", artifact.local_path.name, exc_info=True)
                continue
            uploaded.append(artifact)
        logger.info("Uploaded %d/%d artifacts", len(uploaded), len(self.artifacts))
        return uploaded

    def store_metadata(self, store: TaskStore, artifacts: list[Artifact] | None = None) -> None:
        records = [
            {
                "run_id": self.run_id,
                "type": a.type.value,
                "storage_path": a.storage_path,
                "metadata": a.metadata,
            }
            for a in (artifacts if artifacts is not None else self.artifacts)
            if a.storage_path is not None
        ]
        try:
            store.insert_artifact_records(records)
        except Exception:
            logger.warning("Failed to store artifact metadata", exc_info=True)

    def cleanup(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)
        logger.debug("Cleaned up artifact dir %s", self.temp_dir)
