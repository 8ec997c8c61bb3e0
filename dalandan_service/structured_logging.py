"""
Structured logging for the DalandanCare guidance service.

One JSON object per line on stderr. Every record logged while a request is
being served carries that request's id; keyword extras passed to a
StructuredLogger land under "data" with secret-looking keys masked.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import partialmethod
from typing import Any, Optional, Union

SERVICE_NAME = "dalandan"

# Extra-data keys whose values must never reach the log stream
SENSITIVE_KEYS = frozenset({"api_key", "authorization", "password", "token", "secret"})

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_request_id: ContextVar[Optional[str]] = ContextVar("dalandan_request_id", default=None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id to the current context, generating one if needed."""
    request_id = request_id or uuid.uuid4().hex[:8]
    _request_id.set(request_id)
    return request_id


def redact(data: dict) -> dict:
    """Copy of data with sensitive values replaced, nested dicts included."""
    return {
        key: "***" if key.lower() in SENSITIVE_KEYS
        else redact(value) if isinstance(value, dict)
        else value
        for key, value in data.items()
    }


class RequestIdFilter(logging.Filter):
    """Stamp each record with the id of the request being served, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


class JSONFormatter(logging.Formatter):
    def __init__(self, service_name: str = SERVICE_NAME):
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
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            entry["request_id"] = request_id
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["data"] = redact(extra_data)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StructuredLogger:
    """logging.Logger facade taking structured fields as keyword arguments.

        logger.info("Chat request received", session_id="ab12...", stream=True)
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log(self, level: int, message: str, exc_info: bool = False, **fields: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extra = {"extra_data": fields} if fields else None
        self.logger.log(level, message, exc_info=exc_info, extra=extra)

    debug = partialmethod(log, logging.DEBUG)
    info = partialmethod(log, logging.INFO)
    warning = partialmethod(log, logging.WARNING)
    error = partialmethod(log, logging.ERROR)

    def exception(self, message: str, **fields: Any) -> None:
        """ERROR record with the active exception's traceback attached."""
        self.log(logging.ERROR, message, exc_info=True, **fields)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    service_name: str = SERVICE_NAME,
    use_json: bool = True,
) -> None:
    """Route all logging through a single stderr handler.

    Replaces any handlers already on the root logger, so calling it again
    (one app per test, for instance) does not duplicate output.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RequestIdFilter())
    if use_json:
        handler.setFormatter(JSONFormatter(service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"
        ))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_ip(ip: str) -> str:
    """Keep the first two IPv4 octets; anything else is fully masked."""
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.xxx.xxx"
    return "xxx"


def mask_session_id(session_id: str) -> str:
    """First 8 characters of a session id, for log lines."""
    return session_id[:8] + "..." if len(session_id) > 8 else session_id


_http_logger = StructuredLogger("http")


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_ip: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """One line per served request; level follows the status class."""
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
    }
    if client_ip:
        fields["client_ip"] = mask_ip(client_ip)
    if error:
        fields["error"] = error

    if error or status_code >= 500:
        level = logging.ERROR
    elif status_code >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    _http_logger.log(level, f"{method} {path} {status_code}", **fields)
