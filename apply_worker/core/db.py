"""SQLite database layer for profiles, resumes, job targets and application runs.

Design rules:
  - Every write commits immediately; no transaction spans an await.
  - The queued -> running transition is a compare-and-swap
    (``UPDATE ... WHERE status = 'queued'``) inside BEGIN IMMEDIATE, so at
    most one connection ever wins a given row.
  - JSON payloads (result, required inputs, user inputs, artifacts) are
    stored as TEXT and decoded into schema models on read.
"""

import json
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from apply_worker.core.schemas import (
    JobStatus,
    JobTarget,
    Profile,
    RequiredInput,
    Resume,
    RunEvent,
    Task,
    TaskStatus,
)
from apply_worker.core.urls import detect_ats_type, normalize_url

_PROFILES_TABLE = """
CREATE TABLE IF NOT EXISTS profiles (
    user_id             TEXT PRIMARY KEY,
    full_name           TEXT NOT NULL,
    email               TEXT NOT NULL,
    phone               TEXT,
    location_city       TEXT,
    location_state      TEXT,
    location_country    TEXT,
    linkedin_url        TEXT,
    github_url          TEXT,
    website_url         TEXT,
    work_authorization  TEXT,
    updated_at          TEXT NOT NULL
);
"""

_RESUMES_TABLE = """
CREATE TABLE IF NOT EXISTS resumes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    storage_path    TEXT    NOT NULL,
    filename        TEXT    NOT NULL,
    content_type    TEXT    NOT NULL DEFAULT 'application/pdf',
    is_primary      INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT    NOT NULL
);
"""

_JOB_TARGETS_TABLE = """
CREATE TABLE IF NOT EXISTS job_targets (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    company_name    TEXT NOT NULL DEFAULT '',
    job_title       TEXT NOT NULL DEFAULT '',
    url             TEXT NOT NULL,
    normalized_url  TEXT NOT NULL,
    ats_type        TEXT NOT NULL DEFAULT 'unknown',
    status          TEXT NOT NULL DEFAULT 'new',
    created_at      TEXT NOT NULL,
    UNIQUE(user_id, normalized_url)
);
"""

_RUNS_TABLE = """
CREATE TABLE IF NOT EXISTS application_runs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    job_target_id   INTEGER NOT NULL REFERENCES job_targets(id),
    resume_id       INTEGER NOT NULL REFERENCES resumes(id),
    status          TEXT    NOT NULL DEFAULT 'queued',
    attempt         INTEGER NOT NULL DEFAULT 1,
    dry_run         INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT    NOT NULL,
    started_at      TEXT,
    finished_at     TEXT,
    error_code      TEXT,
    error_message   TEXT,
    result_json     TEXT,
    artifacts_json  TEXT,
    required_inputs TEXT    NOT NULL DEFAULT '[]',
    user_inputs     TEXT    NOT NULL DEFAULT '{}'
);
"""

_RUNS_STATUS_INDEX = """
CREATE INDEX IF NOT EXISTS idx_runs_status_created
    ON application_runs (status, created_at, id);
"""

_RUN_EVENTS_TABLE = """
CREATE TABLE IF NOT EXISTS run_events (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id      INTEGER NOT NULL REFERENCES application_runs(id),
    ts          TEXT    NOT NULL,
    level       TEXT    NOT NULL,
    message     TEXT    NOT NULL,
    data        TEXT
);
"""

_ARTIFACTS_TABLE = """
CREATE TABLE IF NOT EXISTS artifacts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id          INTEGER NOT NULL REFERENCES application_runs(id),
    type            TEXT    NOT NULL,
    storage_path    TEXT    NOT NULL,
    metadata        TEXT    NOT NULL DEFAULT '{}',
    created_at      TEXT    NOT NULL
);
"""

# Columns update_run may touch besides status. JSON columns are encoded.
_RUN_COLUMNS: frozenset[str] = frozenset({
    "started_at",
    "finished_at",
    "error_code",
    "error_message",
    "result_json",
    "artifacts_json",
    "required_inputs",
    "user_inputs",
})
_JSON_COLUMNS: frozenset[str] = frozenset({
    "result_json",
    "artifacts_json",
    "required_inputs",
    "user_inputs",
})


def init_db(path: str | Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10.0, check_same_thread=check_same_thread)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    for ddl in (
        _PROFILES_TABLE,
        _RESUMES_TABLE,
        _JOB_TARGETS_TABLE,
        _RUNS_TABLE,
        _RUNS_STATUS_INDEX,
        _RUN_EVENTS_TABLE,
        _ARTIFACTS_TABLE,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


def _now() -> str:
    return datetime.now().isoformat()


def _encode(column: str, value: Any) -> Any:
    if value is None or column not in _JSON_COLUMNS:
        return value.isoformat() if isinstance(value, datetime) else value
    if column == "required_inputs":
        value = [r.model_dump() if isinstance(r, RequiredInput) else r for r in value]
    return json.dumps(value)


# --- Profiles & resumes ---


def upsert_profile(conn: sqlite3.Connection, profile: Profile) -> None:
    """Insert or replace the profile for ``profile.user_id``."""
    data = profile.model_dump(mode="json")
    conn.execute(
        """
        INSERT INTO profiles
            (user_id, full_name, email, phone, location_city, location_state,
             location_country, linkedin_url, github_url, website_url,
             work_authorization, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(user_id) DO UPDATE SET
            full_name = excluded.full_name,
            email = excluded.email,
            phone = excluded.phone,
            location_city = excluded.location_city,
            location_state = excluded.location_state,
            location_country = excluded.location_country,
            linkedin_url = excluded.linkedin_url,
            github_url = excluded.github_url,
            website_url = excluded.website_url,
            work_authorization = excluded.work_authorization,
            updated_at = excluded.updated_at
        """,
        (
            data["user_id"],
            data["full_name"],
            data["email"],
            data["phone"],
            data["location_city"],
            data["location_state"],
            data["location_country"],
            data["linkedin_url"],
            data["github_url"],
            data["website_url"],
            data["work_authorization"],
            _now(),
        ),
    )
    conn.commit()


def get_profile(conn: sqlite3.Connection, user_id: str) -> Profile | None:
    row = conn.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    data = dict(row)
    data.pop("updated_at", None)
    return Profile.model_validate(data)


def insert_resume(
    conn: sqlite3.Connection,
    user_id: str,
    storage_path: str,
    filename: str,
    content_type: str = "application/pdf",
    *,
    is_primary: bool = False,
) -> int:
    """Record an uploaded resume. A new primary resume demotes the old one."""
    if is_primary:
        conn.execute("UPDATE resumes SET is_primary = 0 WHERE user_id = ?", (user_id,))
    cursor = conn.execute(
        """
        INSERT INTO resumes (user_id, storage_path, filename, content_type, is_primary, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (user_id, storage_path, filename, content_type, int(is_primary), _now()),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_resume(conn: sqlite3.Connection, resume_id: int) -> Resume | None:
    row = conn.execute("SELECT * FROM resumes WHERE id = ?", (resume_id,)).fetchone()
    if row is None:
        return None
    return Resume(
        id=row["id"],
        user_id=row["user_id"],
        storage_path=row["storage_path"],
        filename=row["filename"],
        content_type=row["content_type"],
        is_primary=bool(row["is_primary"]),
    )


def get_primary_resume_id(conn: sqlite3.Connection, user_id: str) -> int | None:
    row = conn.execute(
        """
        SELECT id FROM resumes WHERE user_id = ?
        ORDER BY is_primary DESC, created_at DESC, id DESC
        LIMIT 1
        """,
        (user_id,),
    ).fetchone()
    return None if row is None else row["id"]


# --- Job targets ---


def upsert_job_target(
    conn: sqlite3.Connection,
    user_id: str,
    url: str,
    *,
    company_name: str = "",
    job_title: str = "",
) -> tuple[int, bool]:
    """Insert a job target deduplicated on (user_id, normalized_url).

    Returns (job_target_id, created).
    """
    normalized = normalize_url(url)
    try:
        cursor = conn.execute(
            """
            INSERT INTO job_targets
                (user_id, company_name, job_title, url, normalized_url, ats_type, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                company_name,
                job_title,
                url,
                normalized,
                detect_ats_type(normalized),
                JobStatus.NEW.value,
                _now(),
            ),
        )
        conn.commit()
        return cursor.lastrowid or 0, True
    except sqlite3.IntegrityError:
        row = conn.execute(
            "SELECT id FROM job_targets WHERE user_id = ? AND normalized_url = ?",
            (user_id, normalized),
        ).fetchone()
        return row["id"], False


def get_job_target(conn: sqlite3.Connection, job_target_id: int) -> JobTarget | None:
    row = conn.execute("SELECT * FROM job_targets WHERE id = ?", (job_target_id,)).fetchone()
    if row is None:
        return None
    data = dict(row)
    data.pop("created_at", None)
    return JobTarget.model_validate(data)


def update_job_target_status(
    conn: sqlite3.Connection,
    job_target_id: int,
    status: JobStatus,
) -> None:
    conn.execute(
        "UPDATE job_targets SET status = ? WHERE id = ?",
        (JobStatus(status).value, job_target_id),
    )
    conn.commit()


# --- Application runs ---


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        user_id=row["user_id"],
        job_target_id=row["job_target_id"],
        resume_id=row["resume_id"],
        status=row["status"],
        attempt=row["attempt"],
        dry_run=bool(row["dry_run"]),
        created_at=row["created_at"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
        error_code=row["error_code"],
        error_message=row["error_message"],
        result=json.loads(row["result_json"]) if row["result_json"] else None,
        required_inputs=json.loads(row["required_inputs"] or "[]"),
        user_inputs=json.loads(row["user_inputs"] or "{}"),
    )


def enqueue_run(
    conn: sqlite3.Connection,
    user_id: str,
    job_target_id: int,
    resume_id: int | None = None,
    *,
    dry_run: bool = False,
) -> int:
    """Queue an application run. Uses the user's primary resume if none given."""
    if resume_id is None:
        resume_id = get_primary_resume_id(conn, user_id)
        if resume_id is None:
            msg = f"No resume on file for user {user_id}"
            raise ValueError(msg)
    cursor = conn.execute(
        """
        INSERT INTO application_runs (user_id, job_target_id, resume_id, status, dry_run, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (user_id, job_target_id, resume_id, TaskStatus.QUEUED.value, int(dry_run), _now()),
    )
    conn.execute(
        "UPDATE job_targets SET status = ? WHERE id = ?",
        (JobStatus.QUEUED.value, job_target_id),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_run(conn: sqlite3.Connection, run_id: int) -> Task | None:
    row = conn.execute("SELECT * FROM application_runs WHERE id = ?", (run_id,)).fetchone()
    return None if row is None else _row_to_task(row)


def fetch_one_queued(conn: sqlite3.Connection) -> Task | None:
    """Oldest queued run, or None. Does not claim it."""
    row = conn.execute(
        """
        SELECT * FROM application_runs
        WHERE status = ?
        ORDER BY created_at ASC, id ASC
        LIMIT 1
        """,
        (TaskStatus.QUEUED.value,),
    ).fetchone()
    return None if row is None else _row_to_task(row)


def compare_and_set_running(
    conn: sqlite3.Connection,
    run_id: int,
    expected_status: TaskStatus = TaskStatus.QUEUED,
) -> Task | None:
    """Atomically move a run from ``expected_status`` to running.

    Returns the claimed run, or None if another worker got there first.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        cursor = conn.execute(
            """
            UPDATE application_runs
            SET status = ?, started_at = ?, finished_at = NULL
            WHERE id = ? AND status = ?
            """,
            (TaskStatus.RUNNING.value, _now(), run_id, TaskStatus(expected_status).value),
        )
        claimed = cursor.rowcount == 1
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    if not claimed:
        return None
    return get_run(conn, run_id)


def update_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: TaskStatus,
    **fields: Any,
) -> None:
    """Set the run status plus any of the known columns in ``fields``."""
    unknown = set(fields) - _RUN_COLUMNS
    if unknown:
        msg = f"Unknown application_runs columns: {sorted(unknown)}"
        raise ValueError(msg)
    assignments = ["status = ?"]
    params: list[Any] = [TaskStatus(status).value]
    for column, value in fields.items():
        assignments.append(f"{column} = ?")
        params.append(_encode(column, value))
    params.append(run_id)
    conn.execute(
        f"UPDATE application_runs SET {', '.join(assignments)} WHERE id = ?",  # noqa: S608
        params,
    )
    conn.commit()


def provide_user_inputs(
    conn: sqlite3.Connection,
    run_id: int,
    user_inputs: dict[str, str],
) -> bool:
    """Resume a needs_input run with human answers. Returns False if not paused."""
    cursor = conn.execute(
        """
        UPDATE application_runs
        SET status = ?, user_inputs = ?, attempt = attempt + 1,
            error_code = NULL, error_message = NULL, required_inputs = '[]',
            started_at = NULL, finished_at = NULL
        WHERE id = ? AND status = ?
        """,
        (
            TaskStatus.QUEUED.value,
            json.dumps(user_inputs),
            run_id,
            TaskStatus.NEEDS_INPUT.value,
        ),
    )
    if cursor.rowcount != 1:
        conn.commit()
        return False
    conn.execute(
        """
        UPDATE job_targets SET status = ?
        WHERE id = (SELECT job_target_id FROM application_runs WHERE id = ?)
        """,
        (JobStatus.QUEUED.value, run_id),
    )
    conn.commit()
    return True


def reclaim_stale_runs(
    conn: sqlite3.Connection,
    max_age_s: float,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Fail runs stuck in running longer than ``max_age_s``. Returns their ids."""
    cutoff = ((now or datetime.now()) - timedelta(seconds=max_age_s)).isoformat()
    rows = conn.execute(
        "SELECT id, job_target_id FROM application_runs WHERE status = ? AND started_at < ?",
        (TaskStatus.RUNNING.value, cutoff),
    ).fetchall()
    finished = _now()
    for row in rows:
        conn.execute(
            """
            UPDATE application_runs
            SET status = ?, finished_at = ?, error_code = 'STALE_RUN',
                error_message = 'Run exceeded the stale threshold without finishing'
            WHERE id = ? AND status = ?
            """,
            (TaskStatus.FAILED.value, finished, row["id"], TaskStatus.RUNNING.value),
        )
        conn.execute(
            "UPDATE job_targets SET status = ? WHERE id = ?",
            (JobStatus.FAILED.value, row["job_target_id"]),
        )
    conn.commit()
    return [row["id"] for row in rows]


# --- Events & artifacts ---


def append_event(conn: sqlite3.Connection, event: RunEvent) -> int:
    cursor = conn.execute(
        "INSERT INTO run_events (run_id, ts, level, message, data) VALUES (?, ?, ?, ?, ?)",
        (
            event.run_id,
            event.ts.isoformat(),
            event.level.value,
            event.message,
            json.dumps(event.data) if event.data is not None else None,
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def list_events(conn: sqlite3.Connection, run_id: int) -> list[RunEvent]:
    rows = conn.execute(
        "SELECT * FROM run_events WHERE run_id = ? ORDER BY id ASC", (run_id,),
    ).fetchall()
    return [
        RunEvent(
            run_id=row["run_id"],
            ts=row["ts"],
            level=row["level"],
            message=row["message"],
            data=json.loads(row["data"]) if row["data"] else None,
        )
        for row in rows
    ]


def insert_artifacts(conn: sqlite3.Connection, records: list[dict[str, Any]]) -> int:
    """Insert artifact metadata rows ({run_id, type, storage_path, metadata}). Returns count."""
    created = _now()
    conn.executemany(
        """
        INSERT INTO artifacts (run_id, type, storage_path, metadata, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (r["run_id"], r["type"], r["storage_path"], json.dumps(r.get("metadata", {})), created)
            for r in records
        ],
    )
    conn.commit()
    return len(records)
