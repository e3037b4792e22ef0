"""Core data models for the apply worker.

Persisted records (Task, JobTarget, Resume, Profile) mirror the database
rows. ApplyResult, RequiredInput and Artifact only live in memory during
one run; ApplyResult is flattened into the task row by the runner.
"""

from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"
    NEEDS_INPUT = "needs_input"


class JobStatus(StrEnum):
    NEW = "new"
    QUEUED = "queued"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    BLOCKED = "blocked"
    NEEDS_INPUT = "needs_input"


class ApplyStatus(StrEnum):
    """Outcome reported by an adapter or the orchestrator."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    BLOCKED = "blocked"
    DRY_RUN_COMPLETE = "dry_run_complete"
    NEEDS_INPUT = "needs_input"


class WorkAuthorization(StrEnum):
    US_CITIZEN = "us_citizen"
    PERMANENT_RESIDENT = "permanent_resident"
    GREEN_CARD = "green_card"
    VISA_HOLDER = "visa_holder"
    H1B = "h1b"
    OPT = "opt"
    EAD = "ead"
    OTHER = "other"


class EventLevel(StrEnum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ArtifactType(StrEnum):
    SCREENSHOT = "screenshot"
    HTML_SNAPSHOT = "html_snapshot"
    CONSOLE_LOG = "console_log"


class RequiredInput(BaseModel):
    """A required form field the worker could not answer on its own."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    field_type: str = "text"
    options: list[str] | None = None
    required: bool = True


class Task(BaseModel):
    """One attempt to apply to one job target with one resume."""

    id: int
    user_id: str
    job_target_id: int
    resume_id: int
    status: TaskStatus = TaskStatus.QUEUED
    attempt: int = 1
    dry_run: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_code: str | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None
    required_inputs: list[RequiredInput] = Field(default_factory=list)
    user_inputs: dict[str, str] = Field(default_factory=dict)


class JobTarget(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    url: str
    normalized_url: str
    ats_type: str = "unknown"
    company_name: str = ""
    job_title: str = ""
    status: JobStatus = JobStatus.NEW


class Resume(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    storage_path: str
    filename: str
    content_type: str = "application/pdf"
    is_primary: bool = False


class Profile(BaseModel):
    """Applicant data used to fill forms. Read-only for adapters."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    full_name: str
    email: str
    phone: str | None = None
    location_city: str | None = None
    location_state: str | None = None
    location_country: str | None = "United States"
    linkedin_url: str | None = None
    github_url: str | None = None
    website_url: str | None = None
    work_authorization: WorkAuthorization | None = None

    @field_validator("full_name")
    @classmethod
    def full_name_not_empty(cls, v: str) -> str:
        if not v.strip():
            msg = "full_name must not be empty"
            raise ValueError(msg)
        return v.strip()

    @property
    def first_name(self) -> str:
        return self.full_name.split()[0]

    @property
    def last_name(self) -> str:
        return " ".join(self.full_name.split()[1:])

    @property
    def location(self) -> str:
        """City and state joined with a comma, skipping missing parts."""
        return ", ".join(p for p in (self.location_city, self.location_state) if p)


class ApplyResult(BaseModel):
    """Outcome of one adapter run, before it is flattened into the task row."""

    status: ApplyStatus
    fields_filled_count: int = 0
    fields_failed: list[str] = Field(default_factory=list)
    screenshots: list[str] = Field(default_factory=list)
    error_code: str | None = None
    error_message: str | None = None
    confirmation_message: str | None = None
    required_inputs: list[RequiredInput] = Field(default_factory=list)
    generic_answers: list[str] = Field(default_factory=list)

    @classmethod
    def failed(cls, code: str, message: str, **kwargs: Any) -> "ApplyResult":
        return cls(status=ApplyStatus.FAILED, error_code=code, error_message=message, **kwargs)

    @classmethod
    def blocked(cls, code: str, message: str, **kwargs: Any) -> "ApplyResult":
        return cls(status=ApplyStatus.BLOCKED, error_code=code, error_message=message, **kwargs)


class ApplyRequest(BaseModel):
    """Everything the orchestrator needs for one run."""

    run_id: int
    job: JobTarget
    resume: Resume
    profile: Profile
    dry_run: bool = False
    user_inputs: dict[str, str] = Field(default_factory=dict)


class Artifact(BaseModel):
    type: ArtifactType
    local_path: Path
    timestamp: datetime = Field(default_factory=datetime.now)
    storage_path: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConsoleLogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    text: str
    timestamp: datetime = Field(default_factory=datetime.now)


class RunEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int
    level: EventLevel
    message: str
    data: dict[str, Any] | None = None
    ts: datetime = Field(default_factory=datetime.now)
