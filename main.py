"""CLI entry point for the job application worker."""

import argparse
import asyncio
import json
import logging
import mimetypes
import signal
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from apply_worker.browser.session import BrowserPool
from apply_worker.core import db
from apply_worker.core.config import Settings
from apply_worker.core.logging_utils import JsonFormatter
from apply_worker.core.schemas import Profile
from apply_worker.core.store import SqliteTaskStore
from apply_worker.pipeline.metrics import WorkerMetrics
from apply_worker.pipeline.orchestrator import ApplyOrchestrator
from apply_worker.pipeline.rate_limiter import RateLimiter
from apply_worker.pipeline.runner import TaskRunner

logger = logging.getLogger(__name__)


def _add_common(parser: argparse.ArgumentParser) -> None:
    # SUPPRESS keeps a value given before the subcommand
    parser.add_argument(
        "--config",
        default=argparse.SUPPRESS,
        help="Path to settings YAML file (default: environment / .env only)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
        default=argparse.SUPPRESS,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job application worker - claims queued runs and fills ATS forms",
    )
    subparsers = parser.add_subparsers(dest="command")

    # --- work subcommand (default) ---
    work_parser = subparsers.add_parser("work", help="Run the worker loop")
    work_parser.add_argument(
        "--once",
        action="store_true",
        help="Process at most one queued run, then exit",
    )
    _add_common(work_parser)

    # --- init-db subcommand ---
    init_parser = subparsers.add_parser("init-db", help="Create the database tables")
    _add_common(init_parser)

    # --- add-profile subcommand ---
    profile_parser = subparsers.add_parser("add-profile", help="Insert or update a profile from YAML")
    profile_parser.add_argument("--file", required=True, help="Path to profile YAML")
    _add_common(profile_parser)

    # --- add-resume subcommand ---
    resume_parser = subparsers.add_parser("add-resume", help="Store a resume file for a user")
    resume_parser.add_argument("--user", required=True, help="User id")
    resume_parser.add_argument("--file", required=True, help="Path to resume file")
    resume_parser.add_argument("--primary", action="store_true", help="Make it the primary resume")
    _add_common(resume_parser)

    # --- enqueue subcommand ---
    enqueue_parser = subparsers.add_parser("enqueue", help="Queue an application to a job URL")
    enqueue_parser.add_argument("--user", required=True, help="User id")
    enqueue_parser.add_argument("--url", required=True, help="Job posting URL")
    enqueue_parser.add_argument("--resume", type=int, help="Resume id (default: primary resume)")
    enqueue_parser.add_argument("--company", default="", help="Company name")
    enqueue_parser.add_argument("--title", default="", help="Job title")
    enqueue_parser.add_argument("--dry-run", action="store_true", help="Fill the form but do not submit")
    _add_common(enqueue_parser)

    # --- answer subcommand ---
    answer_parser = subparsers.add_parser("answer", help="Provide answers for a run waiting on input")
    answer_parser.add_argument("--run-id", type=int, required=True, help="Run id")
    answer_parser.add_argument(
        "--inputs",
        required=True,
        help='JSON object of label -> answer, e.g. \'{"Years of experience": "5"}\'',
    )
    _add_common(answer_parser)

    # --- reclaim subcommand ---
    reclaim_parser = subparsers.add_parser("reclaim", help="Fail runs stuck in running")
    reclaim_parser.add_argument(
        "--max-age",
        type=float,
        default=900.0,
        help="Seconds a run may stay running before it is failed (default: 900)",
    )
    _add_common(reclaim_parser)

    # --- top-level flags for the default command ---
    parser.add_argument("--config", default=None, help=argparse.SUPPRESS)
    parser.add_argument("--verbose", "-v", action="store_true", help=argparse.SUPPRESS)

    args = parser.parse_args(argv)

    # Default to work when no subcommand given
    if args.command is None:
        args.command = "work"
        args.once = False

    return args


def setup_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.log.level)
    handler = logging.StreamHandler()
    if settings.log.structured:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def load_settings(config_path: str | None) -> Settings:
    if config_path is None:
        return Settings()
    return Settings.from_yaml(config_path)


def open_store(settings: Settings) -> SqliteTaskStore:
    conn = db.init_db(settings.database.path)
    return SqliteTaskStore(conn, settings.database.storage_dir)


async def work(settings: Settings, once: bool) -> None:
    """Run the worker loop with a real browser until SIGINT/SIGTERM."""
    store = open_store(settings)
    if settings.worker.reclaim_stale_after_s is not None:
        reclaimed = db.reclaim_stale_runs(store.conn, settings.worker.reclaim_stale_after_s)
        if reclaimed:
            logger.warning("Reclaimed %d stale run(s): %s", len(reclaimed), reclaimed)

    metrics = WorkerMetrics()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    try:
        async with BrowserPool(settings.browser, metrics) as pool:
            orchestrator = ApplyOrchestrator(store, pool, RateLimiter(settings.rate_limit), settings)
            runner = TaskRunner(store, orchestrator, settings, metrics)
            if once:
                processed = await runner.run_once()
                print("Processed 1 run." if processed else "No queued runs.")
            else:
                await runner.run_forever(stop)
    finally:
        store.conn.close()
    print(f"Worker metrics: {json.dumps(metrics.snapshot(), default=str)}")


def cmd_init_db(settings: Settings) -> None:
    open_store(settings).conn.close()
    print(f"Database ready at {settings.database.path}")


def cmd_add_profile(settings: Settings, args: argparse.Namespace) -> None:
    path = Path(args.file)
    if not path.exists():
        msg = f"Profile file not found: {path}"
        raise FileNotFoundError(msg)
    profile = Profile.model_validate(yaml.safe_load(path.read_text()) or {})
    store = open_store(settings)
    db.upsert_profile(store.conn, profile)
    store.conn.close()
    print(f"Profile saved for {profile.user_id} ({profile.full_name})")


def cmd_add_resume(settings: Settings, args: argparse.Namespace) -> None:
    path = Path(args.file)
    if not path.is_file():
        msg = f"Resume file not found: {path}"
        raise FileNotFoundError(msg)
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    store = open_store(settings)
    storage_path = store.upload_file(f"resumes/{args.user}/{path.name}", path.read_bytes(), content_type)
    resume_id = db.insert_resume(
        store.conn, args.user, storage_path, path.name, content_type, is_primary=args.primary,
    )
    store.conn.close()
    print(f"Resume {resume_id} stored at {storage_path}")


def cmd_enqueue(settings: Settings, args: argparse.Namespace) -> None:
    store = open_store(settings)
    job_id, created = db.upsert_job_target(
        store.conn, args.user, args.url, company_name=args.company, job_title=args.title,
    )
    run_id = db.enqueue_run(store.conn, args.user, job_id, args.resume, dry_run=args.dry_run)
    store.conn.close()
    job_note = "new job target" if created else "existing job target"
    print(f"Queued run {run_id} ({job_note} {job_id}, dry_run={args.dry_run})")


def cmd_answer(settings: Settings, args: argparse.Namespace) -> None:
    inputs = json.loads(args.inputs)
    if not isinstance(inputs, dict):
        msg = "--inputs must be a JSON object"
        raise ValueError(msg)
    store = open_store(settings)
    resumed = db.provide_user_inputs(store.conn, args.run_id, {str(k): str(v) for k, v in inputs.items()})
    store.conn.close()
    if not resumed:
        msg = f"Run {args.run_id} is not waiting for input"
        raise ValueError(msg)
    print(f"Run {args.run_id} re-queued with {len(inputs)} answer(s)")


def cmd_reclaim(settings: Settings, args: argparse.Namespace) -> None:
    store = open_store(settings)
    reclaimed = db.reclaim_stale_runs(store.conn, args.max_age)
    store.conn.close()
    print(f"Reclaimed {len(reclaimed)} stale run(s): {reclaimed}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(settings, args.verbose)

    commands = {
        "init-db": lambda: cmd_init_db(settings),
        "add-profile": lambda: cmd_add_profile(settings, args),
        "add-resume": lambda: cmd_add_resume(settings, args),
        "enqueue": lambda: cmd_enqueue(settings, args),
        "answer": lambda: cmd_answer(settings, args),
        "reclaim": lambda: cmd_reclaim(settings, args),
    }
    if args.command in commands:
        try:
            commands[args.command]()
        except (FileNotFoundError, ValidationError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    try:
        asyncio.run(work(settings, args.once))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)


if __name__ == "__main__":
    main()
