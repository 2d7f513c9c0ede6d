"""
Structured JSON Logging + Self-Diagnostics
------------------------------------------
Every log line the sink emits about itself is a JSON object, so it can be
ingested by the same aggregator that receives the formatted events.

Fields emitted on every log:
  - timestamp   ISO-8601 (UTC)
  - level       DEBUG | INFO | WARNING | ERROR
  - logger      module path
  - message     human-readable description
  - **kwargs    all structured data passed by the caller

SelfLog is the out-of-band channel for failures of the sink itself (an event
that could not be formatted, a batch that could not be delivered). It is
process-wide, write-only, and never raises.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, TextIO

from httpsink.core.config import get_settings

_RESERVED_ATTRS = frozenset({
    "args", "asctime", "created", "exc_info", "exc_text",
    "filename", "funcName", "id", "levelname", "levelno",
    "lineno", "module", "msecs", "message", "msg", "name",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "taskName", "thread", "threadName",
})


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Merge any extra structured fields the caller passed via `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def get_logger(name: str, stream: TextIO | None = None, level: str | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        if level is None:
            level = get_settings().log_level.upper()
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.setLevel(level)
        logger.propagate = False
    return logger


def log_sink_event(
    logger: logging.Logger,
    event: str,
    **kwargs: Any,
) -> None:
    """Helper that enforces a consistent log shape for sink activity."""
    logger.info(event, extra=kwargs)


class SelfLog:
    """
    Process-wide diagnostics channel.

    By default lines go to a JSON logger on stderr. `enable()` redirects them to
    a callable or text stream (tests use `lines.append`), `disable()` drops them.
    """

    _logger = get_logger("httpsink.selflog", stream=sys.stderr)
    _output: Callable[[str], None] | None = None
    _enabled: bool = True

    @classmethod
    def enable(cls, output: Callable[[str], None] | TextIO) -> None:
        if output is None:
            raise ValueError("output must not be None")

        if callable(output):
            cls._output = output
        else:
            stream = output

            def _write(line: str) -> None:
                stream.write(line + "\n")
                stream.flush()

            cls._output = _write
        cls._enabled = True

    @classmethod
    def disable(cls) -> None:
        cls._output = None
        cls._enabled = False

    @classmethod
    def reset(cls) -> None:
        """Route diagnostics back to the default stderr logger."""
        cls._output = None
        cls._enabled = True

    @classmethod
    def write_line(cls, template: str, *args: Any, **fields: Any) -> None:
        if not cls._enabled:
            return
        try:
            message = template.format(*args)
            if cls._output is None:
                cls._logger.warning(message, extra=fields)
            else:
                stamp = datetime.now(timezone.utc).isoformat()
                cls._output(f"{stamp} {message}")
        except Exception:  # diagnostics must never raise
            return
