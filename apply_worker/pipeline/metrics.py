"""In-process worker counters and a coarse health verdict."""

from dataclasses import dataclass, field
from datetime import datetime

# Health turns "degraded" once enough runs exist to judge the success rate.
MIN_RUNS_FOR_HEALTH = 10
MIN_HEALTHY_SUCCESS_RATE = 0.5


@dataclass
class WorkerMetrics:
    started_at: datetime = field(default_factory=datetime.now)
    runs_processed: int = 0
    runs_succeeded: int = 0
    runs_failed: int = 0
    runs_blocked: int = 0
    runs_needs_input: int = 0
    runs_in_flight: int = 0
    browser_launches: int = 0
    loop_errors: int = 0
    last_run_at: datetime | None = None

    def record_run_start(self) -> None:
        self.runs_in_flight += 1

    def record_run_end(self, outcome: str) -> None:
        """Count a finished run. ``outcome`` is a terminal task status."""
        self.runs_in_flight = max(0, self.runs_in_flight - 1)
        self.runs_processed += 1
        self.last_run_at = datetime.now()
        if outcome == "succeeded":
            self.runs_succeeded += 1
        elif outcome == "blocked":
            self.runs_blocked += 1
        elif outcome == "needs_input":
            self.runs_needs_input += 1
        else:
            self.runs_failed += 1

    def record_browser_launch(self) -> None:
        self.browser_launches += 1

    def record_loop_error(self) -> None:
        self.loop_errors += 1

    @property
    def success_rate(self) -> float:
        if self.runs_processed == 0:
            return 1.0
        return self.runs_succeeded / self.runs_processed

    @property
    def status(self) -> str:
        if self.runs_processed >= MIN_RUNS_FOR_HEALTH and self.success_rate < MIN_HEALTHY_SUCCESS_RATE:
            return "degraded"
        return "healthy"

    def snapshot(self) -> dict[str, object]:
        return {
            "status": self.status,
            "uptime_s": round((datetime.now() - self.started_at).total_seconds(), 1),
            "runs_processed": self.runs_processed,
            "runs_succeeded": self.runs_succeeded,
            "runs_failed": self.runs_failed,
            "runs_blocked": self.runs_blocked,
            "runs_needs_input": self.runs_needs_input,
            "runs_in_flight": self.runs_in_flight,
            "browser_launches": self.browser_launches,
            "loop_errors": self.loop_errors,
            "success_rate": round(self.success_rate, 3),
        }
