"""
Structured logging for the MedTag service.

One JSON object per line on stderr, tagged with the id of the HTTP request
being served. Structured fields that identify people (user ids, patient
ids) are masked before a record is emitted, so callers pass raw values.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

MASKED_FIELDS = ("user_id", "patient_id")
MAX_REQUEST_ID_LENGTH = 64
# Third-party loggers that log every outbound call at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "google_genai")


def start_request(header_value: Optional[str] = None) -> str:
    """Bind a request id to the current context and return it.

    The caller's X-Request-ID is adopted when present; otherwise a short
    random id is minted.
    """
    request_id = (header_value or "").strip()[:MAX_REQUEST_ID_LENGTH] or uuid.uuid4().hex[:8]
    request_id_var.set(request_id)
    return request_id


def mask_user_id(user_id: Optional[str]) -> str:
    """Keep only the first UUID group of an id."""
    if not user_id:
        return "xxx"
    head = user_id.split("-")[0]
    return f"{head[:8]}-xxxx"


def mask_fields(data: dict) -> dict:
    return {
        key: mask_user_id(str(value)) if key in MASKED_FIELDS and value else value
        for key, value in data.items()
    }


class JSONFormatter(logging.Formatter):

    def __init__(self, service_name: str = "medtag"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        data = getattr(record, "data", None)
        if data:
            entry["data"] = data

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StructuredLogger:
    """Logger whose keyword arguments become the record's structured data."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log(self, level: int, message: str, **data: Any) -> None:
        extra = {"data": mask_fields(data)} if data else None
        self.logger.log(level, message, extra=extra)

    def info(self, message: str, **data: Any) -> None:
        self.log(logging.INFO, message, **data)

    def warning(self, message: str, **data: Any) -> None:
        self.log(logging.WARNING, message, **data)

    def error(self, message: str, **data: Any) -> None:
        self.log(logging.ERROR, message, **data)


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    """Route all logging to stderr, as JSON unless use_json is False."""
    handler = logging.StreamHandler(sys.stderr)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


http_logger = StructuredLogger("medtag.http")


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    user_id: Optional[str] = None,
) -> None:
    """One access-log line per request. Server errors log at ERROR."""
    level = logging.ERROR if status_code >= 500 else logging.INFO
    http_logger.log(
        level,
        f"{method} {path} {status_code}",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
        user_id=user_id,
    )
