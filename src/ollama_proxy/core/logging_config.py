"""Root logger setup for the proxy process.

The CLI calls ``configure_logging`` before starting the server. Records go
to stderr as text lines or one JSON object per line, and optionally to a
file as well. Unset arguments fall back to OLLAMA_PROXY_LOG_LEVEL,
OLLAMA_PROXY_LOG_FORMAT and OLLAMA_PROXY_LOG_FILE.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any, Literal

# Line formats for text output
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TEXT_FORMAT_WITH_MS = "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that drown out proxy output at DEBUG
NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "aiohttp.server", "aiohttp.web")

_STANDARD_ATTRS = frozenset(
    {
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
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)

# Set by the first configure_logging() call
_configured = False


class JsonFormatter(logging.Formatter):
    """Render each record as a single JSON line.

    Attributes passed through ``extra=`` are collected under ``"extra"``:
    {
        "timestamp": "2025-12-28T14:30:00.123456",
        "level": "WARNING",
        "logger": "ollama_proxy.gateway.clients.ollama_client",
        "message": "[00001_...] Rate limited on key 1/2, rotating...",
        "extra": {...}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


def configure_logging(
    level: str | None = None,
    format: Literal["text", "json"] | None = None,
    file_path: str | None = None,
    include_ms: bool = True,
    force: bool = False,
) -> None:
    """Install stderr (and optional file) handlers on the root logger.

    Only the first call takes effect; pass ``force=True`` to replace the
    handlers again.

    Args:
        level: Level name, else OLLAMA_PROXY_LOG_LEVEL, else "INFO".
        format: "text" or "json", else OLLAMA_PROXY_LOG_FORMAT, else "text".
        file_path: Extra log file, else OLLAMA_PROXY_LOG_FILE.
        include_ms: Add milliseconds to text timestamps.
        force: Reconfigure after an earlier call.
    """
    global _configured
    if _configured and not force:
        return

    level = level or os.environ.get("OLLAMA_PROXY_LOG_LEVEL", "INFO")
    format = format or os.environ.get("OLLAMA_PROXY_LOG_FORMAT", "text")  # type: ignore
    file_path = file_path or os.environ.get("OLLAMA_PROXY_LOG_FILE")

    if format == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            TEXT_FORMAT_WITH_MS if include_ms else TEXT_FORMAT, datefmt=DATE_FORMAT
        )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if file_path:
        handlers.append(logging.FileHandler(file_path))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
