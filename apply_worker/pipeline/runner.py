"""Task runner: claims queued runs and drives them to a terminal status.

Design rules:
  - Claiming is fetch-then-CAS; losing the race is not an error.
  - One task is processed to completion before the next poll.
  - A claimed task never stays ``running`` after an exception: anything
    unhandled becomes failed / UNEXPECTED_ERROR.
  - needs_input is a pause, not a terminal state: finished_at stays unset.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from apply_worker.core.config import Settings
from apply_worker.core.logging_utils import run_logger
from apply_worker.core.schemas import (
    ApplyRequest,
    ApplyResult,
    ApplyStatus,
    EventLevel,
    JobStatus,
    Task,
    TaskStatus,
)
from apply_worker.core.store import TaskStore
from apply_worker.pipeline.metrics import WorkerMetrics
from apply_worker.pipeline.orchestrator import ApplyOrchestrator

logger = logging.getLogger(__name__)


class TaskRunner:
    def __init__(
        self,
        store: TaskStore,
        orchestrator: ApplyOrchestrator,
        settings: Settings,
        metrics: WorkerMetrics | None = None,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._settings = settings
        self.metrics = metrics or WorkerMetrics()

    # --- Claim ---

    def claim_next(self) -> Task | None:
        """Claim the oldest queued task, or None if there is none or it was taken."""
        candidate = self._store.fetch_one_queued()
        if candidate is None:
            return None
        task = self._store.compare_and_set_running(candidate.id, TaskStatus.QUEUED)
        if task is None:
            logger.debug("Run %d was claimed by another worker", candidate.id)
            return None
        self._event(task.id, EventLevel.INFO, "Run claimed by worker", {"attempt": task.attempt})
        return task

    # --- Run ---

    async def run(self, task: Task) -> TaskStatus:
        """Process a claimed task. Returns its outcome (blocked runs are stored as failed)."""
        log = run_logger(logger, task.id)
        self.metrics.record_run_start()
        status = TaskStatus.FAILED
        try:
            status = await self._run(task, log)
        except Exception as e:
            log.exception("Unexpected error")
            self._finish_failed(task, "UNEXPECTED_ERROR", str(e) or type(e).__name__)
            status = TaskStatus.FAILED
        finally:
            self.metrics.record_run_end(status.value)
        return status

    async def _run(self, task: Task, log: logging.LoggerAdapter) -> TaskStatus:
        job = self._store.get_job_target(task.job_target_id)
        if job is None:
            return self._finish_failed(task, "JOB_NOT_FOUND", f"Job target {task.job_target_id} not found")
        resume = self._store.get_resume(task.resume_id)
        if resume is None:
            return self._finish_failed(task, "RESUME_NOT_FOUND", f"Resume {task.resume_id} not found")
        profile = self._store.get_profile(task.user_id)
        if profile is None:
            return self._finish_failed(task, "PROFILE_NOT_FOUND", f"Profile for {task.user_id} not found")

        self._store.update_job_target_status(job.id, JobStatus.APPLYING)
        dry_run = task.dry_run or self._settings.worker.dry_run
        self._event(task.id, EventLevel.INFO, "Starting application", {
            "url": job.url,
            "ats_type": job.ats_type,
            "dry_run": dry_run,
        })
        log.info("Applying to %s (%s)", job.url, job.ats_type)

        request = ApplyRequest(
            run_id=task.id,
            job=job,
            resume=resume,
            profile=profile,
            dry_run=dry_run,
            user_inputs=task.user_inputs,
        )
        timeout_s = self._settings.worker.max_run_duration_s
        try:
            result = await asyncio.wait_for(self._orchestrator.apply(request), timeout=timeout_s)
        except TimeoutError:
            log.error("Run exceeded %.0fs", timeout_s)
            result = ApplyResult.failed("RUN_TIMEOUT", f"Run exceeded {timeout_s:.0f}s")
        return self._record_result(task, job.id, result, dry_run, log)

    def _record_result(
        self,
        task: Task,
        job_target_id: int,
        result: ApplyResult,
        dry_run: bool,
        log: logging.LoggerAdapter,
    ) -> TaskStatus:
        payload = _result_payload(result, dry_run)

        if result.status in (ApplyStatus.SUCCEEDED, ApplyStatus.DRY_RUN_COMPLETE):
            self._store.update_task_status(
                task.id, TaskStatus.SUCCEEDED,
                finished_at=datetime.now(), result_json=payload,
            )
            if not dry_run:
                self._store.update_job_target_status(job_target_id, JobStatus.APPLIED)
            message = "Dry run completed" if dry_run else "Application submitted"
            self._event(task.id, EventLevel.INFO, message, {
                "fields_filled": result.fields_filled_count,
                "confirmation": result.confirmation_message,
            })
            log.info("%s (%d fields)", message, result.fields_filled_count)
            return TaskStatus.SUCCEEDED

        if result.status == ApplyStatus.NEEDS_INPUT:
            self._store.update_task_status(
                task.id, TaskStatus.NEEDS_INPUT,
                error_code="NEEDS_INPUT",
                error_message=result.error_message or "Application requires additional input",
                required_inputs=result.required_inputs,
                result_json=payload,
            )
            self._store.update_job_target_status(job_target_id, JobStatus.NEEDS_INPUT)
            self._event(task.id, EventLevel.WARN, "Application needs user input", {
                "fields": [r.field_name for r in result.required_inputs],
            })
            log.info("Paused for %d required input(s)", len(result.required_inputs))
            return TaskStatus.NEEDS_INPUT

        if result.status == ApplyStatus.BLOCKED:
            code = result.error_code or "BLOCKED"
            self._store.update_task_status(
                task.id, TaskStatus.FAILED,
                finished_at=datetime.now(),
                error_code=code,
                error_message=result.error_message,
                result_json=payload,
            )
            self._store.update_job_target_status(job_target_id, JobStatus.BLOCKED)
            self._event(task.id, EventLevel.WARN, "Application blocked", {
                "error_code": code,
                "error_message": result.error_message,
            })
            log.warning("Blocked: %s", code)
            return TaskStatus.BLOCKED

        code = result.error_code or "UNKNOWN"
        self._store.update_task_status(
            task.id, TaskStatus.FAILED,
            finished_at=datetime.now(),
            error_code=code,
            error_message=result.error_message,
            result_json=payload,
        )
        self._store.update_job_target_status(job_target_id, JobStatus.FAILED)
        self._event(task.id, EventLevel.ERROR, "Application failed", {
            "error_code": code,
            "error_message": result.error_message,
            "fields_failed": result.fields_failed,
        })
        log.warning("Failed: %s %s", code, result.error_message or "")
        return TaskStatus.FAILED

    def _finish_failed(self, task: Task, code: str, message: str) -> TaskStatus:
        self._store.update_task_status(
            task.id, TaskStatus.FAILED,
            finished_at=datetime.now(), error_code=code, error_message=message,
        )
        try:
            self._store.update_job_target_status(task.job_target_id, JobStatus.FAILED)
        except Exception:
            logger.warning("Could not mark job target %d failed", task.job_target_id, exc_info=True)
        self._event(task.id, EventLevel.ERROR, message, {"error_code": code})
        return TaskStatus.FAILED

    def _event(
        self,
        task_id: int,
        level: EventLevel,
        message: str,
        data: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._store.append_event(task_id, level, message, data)
        except Exception:
            logger.warning("Failed to append event for run %d", task_id, exc_info=True)

    # --- Loop ---

    async def run_once(self) -> bool:
        """Claim and process at most one task. Returns True if one was processed."""
        task = self.claim_next()
        if task is None:
            return False
        await self.run(task)
        return True

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Poll until ``stop_event`` is set. Loop errors are logged, never fatal."""
        poll_s = self._settings.worker.poll_interval_s
        logger.info("Worker started (poll every %.1fs)", poll_s)
        while not stop_event.is_set():
            processed = False
            try:
                processed = await self.run_once()
            except Exception:
                logger.exception("Worker loop error")
                self.metrics.record_loop_error()
            if processed:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=poll_s)
            except TimeoutError:
                pass
        logger.info("Worker stopped: %s", self.metrics.snapshot())


def _result_payload(result: ApplyResult, dry_run: bool) -> dict[str, Any]:
    payload = result.model_dump(mode="json", exclude={"required_inputs"})
    payload["dry_run"] = dry_run
    return payload
