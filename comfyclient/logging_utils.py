"""
Structured logging for the ComfyUI client.

Each ComfySession gets its own StructuredLogger bound to the session's
client id, so records from concurrent sessions stay distinguishable. All
bound loggers share one stdlib handler on the ``comfy-client`` logger.

Environment variables:
- LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR) [default: INFO]
- LOG_JSON: Enable JSON output (1) or pretty text (0) [default: 1]
- LOG_HTTP_BODY: Include request/response bodies in logs [default: 0]
- LOG_HTTP_MAXLEN: Max length for HTTP body logging [default: 2000]
"""

import json
import logging
import os
import socket
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_JSON = os.getenv("LOG_JSON", "1") == "1"
LOG_HTTP_BODY = os.getenv("LOG_HTTP_BODY", "0") == "1"
LOG_HTTP_MAXLEN = int(os.getenv("LOG_HTTP_MAXLEN", "2000"))

HOSTNAME = socket.gethostname()
ROOT_LOGGER = "comfy-client"


def _record_time(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat()


class JSONFormatter(logging.Formatter):
    """One JSON object per line; plain records get the same envelope."""

    def format(self, record: logging.LogRecord) -> str:
        data = getattr(record, "structured", None)
        if data is None:
            data = {
                "ts": _record_time(record),
                "level": record.levelname,
                "event": "log",
                "logger": record.name,
                "message": record.getMessage(),
            }
            if record.exc_info:
                data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class PrettyFormatter(logging.Formatter):
    """Single-line text for terminals: ``time level event [client] [prompt] k=v``."""

    def format(self, record: logging.LogRecord) -> str:
        data = getattr(record, "structured", None)
        if data is None:
            return f"{_record_time(record)[:19]} {record.levelname:<7} {record.name}: {record.getMessage()}"

        line = [data["ts"][:19], f"{data['level']:<7}", data["event"]]
        if data.get("client_id"):
            line.append(f"[client:{data['client_id'][:8]}]")
        if data.get("prompt_id"):
            line.append(f"[prompt:{data['prompt_id'][:8]}]")
        line.extend(f"{key}={value}" for key, value in data.get("details", {}).items())
        if data.get("error"):
            line.append(f"error={data['error']!r}")
        return " ".join(line)


def configure_logging(json_output: Optional[bool] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Attach the stdout handler to the ``comfy-client`` logger.

    Idempotent: later calls only change the formatter and level.
    """
    if json_output is None:
        json_output = LOG_JSON
    level_no = getattr(logging, (level or LOG_LEVEL).upper())

    root = logging.getLogger(ROOT_LOGGER)
    handler = next((h for h in root.handlers if getattr(h, "_comfy_client", False)), None)
    if handler is None:
        handler = logging.StreamHandler(sys.stdout)
        handler._comfy_client = True
        root.addHandler(handler)
    handler.setFormatter(JSONFormatter() if json_output else PrettyFormatter())
    root.setLevel(level_no)
    root.propagate = False
    return root


def truncate_body(body: Any, max_len: int = LOG_HTTP_MAXLEN) -> Optional[str]:
    if body is None:
        return None
    text = f"<{len(body)} bytes>" if isinstance(body, bytes) else str(body)
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}... (truncated, {len(text)} total chars)"


class StructuredLogger:
    """
    Emits structured records tagged with one session's client id.

    Records carry ``ts``, ``level``, ``event``, ``client_id`` and ``hostname``;
    ``prompt_id``, ``request_id``, ``duration_ms`` and ``error`` are promoted
    to the top level when given, anything else lands under ``details``.
    """

    def __init__(self, client_id: Optional[str] = None, name: str = ROOT_LOGGER):
        self.client_id = client_id
        self.logger = logging.getLogger(name)

    def bind(self, client_id: str) -> "StructuredLogger":
        """A logger writing to the same stdlib logger under another client id."""
        return StructuredLogger(client_id, self.logger.name)

    def log(self, level: str, event: str, **fields: Any) -> None:
        level_no = getattr(logging, level)
        if not self.logger.isEnabledFor(level_no):
            return

        entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "client_id": self.client_id,
            "hostname": HOSTNAME,
        }
        for key in ("prompt_id", "request_id", "error"):
            value = fields.pop(key, None)
            if value:
                entry[key] = value
        duration_ms = fields.pop("duration_ms", None)
        if duration_ms is not None:
            entry["duration_ms"] = round(duration_ms, 2)
        if fields:
            entry["details"] = fields

        self.logger.log(level_no, event, extra={"structured": entry})

    def debug(self, event: str, **fields: Any) -> None:
        self.log("DEBUG", event, **fields)

    def info(self, event: str, **fields: Any) -> None:
        self.log("INFO", event, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.log("WARNING", event, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.log("ERROR", event, **fields)

    def http_out(
        self,
        response: Optional[Any],
        *,
        service: str,
        method: str,
        url: str,
        request_id: str,
        duration_ms: float,
        request_body: Any = None,
        error: Optional[str] = None,
    ) -> None:
        """Record one outbound request; ``response`` is None when it failed."""
        fields: Dict[str, Any] = {"service": service, "method": method, "url": url}
        if LOG_HTTP_BODY and request_body is not None:
            fields["request_body"] = truncate_body(request_body)

        if response is None:
            self.error("http_out_error", request_id=request_id, duration_ms=duration_ms, error=error, **fields)
            return

        fields["status_code"] = response.status_code
        if LOG_HTTP_BODY and response.status_code >= 400:
            fields["response_body"] = truncate_body(response.text)
        self.info("http_out", request_id=request_id, duration_ms=duration_ms, **fields)


def get_logger(client_id: Optional[str] = None) -> StructuredLogger:
    """A StructuredLogger for ``client_id``; configures output on first use."""
    root = logging.getLogger(ROOT_LOGGER)
    if not any(getattr(h, "_comfy_client", False) for h in root.handlers):
        configure_logging()
    return StructuredLogger(client_id)
