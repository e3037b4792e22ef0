"""Logging helpers: per-run prefix adapter and a JSON line formatter."""

import json
import logging
from collections.abc import MutableMapping
from datetime import datetime, timezone
from typing import Any

# LogRecord attributes that are not user-supplied "extra" fields.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class RunLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[run:<id>]`` and attaches run_id as an extra."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        run_id = self.extra["run_id"] if self.extra else None
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("run_id", run_id)
        return f"[run:{run_id}] {msg}", kwargs


def run_logger(logger: logging.Logger, run_id: int) -> RunLoggerAdapter:
    return RunLoggerAdapter(logger, {"run_id": run_id})


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including any ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)
