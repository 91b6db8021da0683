"""
Logging setup for the proxy process.

Plain text logging by default; JSON lines when STPROXY_LOG_FORMAT=json so the
output can be shipped to a log collector. Per-request lines carry a request id.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

# LogRecord attributes that are not user supplied extras
_RESERVED_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "request_id",
}


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON objects.

    Fields: timestamp, level, logger, message, plus request_id, file,
    exception and any extra attributes passed through ``extra=``.
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        entry: dict[str, Any] = {
            "timestamp": dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            entry["request_id"] = request_id

        if record.pathname:
            entry["file"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_FIELDS and not key.startswith("_"):
                entry[key] = value

        return json.dumps(entry, default=str)


def is_json_logging_enabled() -> bool:
    """True if STPROXY_LOG_FORMAT=json."""
    return os.getenv("STPROXY_LOG_FORMAT", "text").lower() == "json"


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    verbose: bool = False,
    force: bool = True,
) -> None:
    """
    Configure the root logger from arguments or environment.

    Environment variables:
    - STPROXY_LOG_FORMAT: "json" or "text" (default: text)
    - STPROXY_LOG_LEVEL: Log level (default: INFO)
    - STPROXY_LOG_FILE: Optional log file path

    Args:
        level: Override log level
        log_file: Override log file
        verbose: Log every SSDP message at DEBUG level
        force: Replace handlers already installed on the root logger
    """
    if level is None:
        level = os.getenv("STPROXY_LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = os.getenv("STPROXY_LOG_FILE")

    formatter = JSONFormatter() if is_json_logging_enabled() else logging.Formatter(TEXT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            print(f"Warning: Could not open log file {log_file}: {e}", file=sys.stderr)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=force)

    if verbose:
        logging.getLogger("stproxy.ssdp").setLevel(logging.DEBUG)


class RequestLogger(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with a request id.

    Usage:
        log = RequestLogger(logging.getLogger("stproxy.router"), "ab12cd34")
        log.info("Forwarding to %s", url)  # text: "[ab12cd34] Forwarding to ..."
    """

    def __init__(self, logger: logging.Logger, request_id: str):
        super().__init__(logger, {"request_id": request_id})
        self.request_id = request_id

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["request_id"] = self.request_id
        kwargs["extra"] = extra
        return f"[{self.request_id}] {msg}", kwargs
