"""Logging configuration for billing-service.

TWO KINDS OF LOG CONSUMERS
----------------------------
This service has two very different audiences for its logs:

  1. A developer running the API or a renewal pass locally.
     They read lines with their eyes in a terminal, so the output must
     be short and scannable:  timestamp, level, logger, message.

  2. The log pipeline in production.
     The renewal pass runs unattended once a day.  When a charge fails
     or a pass aborts, operators search and alert on FIELDS, not prose:

       {"level": "ERROR", "subscription_id": "…", "renewal_outcome": "failed"}

     Plain text would need regex to pull those fields back out.

So there are two formatters, selected by LOG_JSON:

  _ContainerFormatter: human-readable, single-line.
  _JsonFormatter     : one JSON object per line (JSON Lines).

CONTEXT FIELDS
----------------
Callers attach structured context through logging's ``extra=`` argument:

  logger.info("renewed", extra={"subscription_id": str(sub.id)})

The JSON formatter lifts a known set of keys to top-level fields.  The
request middleware adds the HTTP fields; the renewal engine adds the
billing fields.
"""

from __future__ import annotations

import json
import logging
import sys


class _ContainerFormatter(logging.Formatter):
    """Single-line formatter tuned for container stdout.

    - Always: ISO-8601 timestamp, level, logger name, message
    - WARNING+: appends [filename:lineno] so you can locate the guard clause
    - ERROR/CRITICAL: stack trace included when exc_info is present
      (caller passes exc_info=True or uses logger.exception())
    """

    _BASE_FMT = "%(asctime)s %(levelname)-8s %(name)s  %(message)s"
    _LOC_SUFFIX = "  [%(filename)s:%(lineno)d]"

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        base = super().formatTime(record, datefmt)
        ms = int(record.msecs)
        # Insert .NNN before the timezone offset (last 5 chars: +0000)
        return f"{base[:-5]}.{ms:03d}{base[-5:]}"

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.WARNING:
            self._style._fmt = self._BASE_FMT + self._LOC_SUFFIX
        else:
            self._style._fmt = self._BASE_FMT
        return super().format(record)


class _JsonFormatter(logging.Formatter):
    """JSON formatter for machine-parseable log output.

    Each log line is a single JSON object.  Context fields that callers
    attach via ``extra=`` appear as top-level keys so the log pipeline can
    filter on them directly.
    """

    _CONTEXT_FIELDS = (
        # HTTP request context (RequestContextMiddleware)
        "request_id",
        "method",
        "path",
        "user_id",
        "status_code",
        "duration_ms",
        # Billing context (renewal engine, entitlement resolver)
        "subscription_id",
        "organization_id",
        "renewal_outcome",
        "feature",
        "idempotency_reference",
    )

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, object] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self._CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Configure root logger for container environments.

    - Sends everything to stdout (Docker captures stdout/stderr)
    - Applies the appropriate formatter based on json_format
    - Quiets noisy third-party loggers

    Args:
        level_name: Log level string (debug/info/warning/error)
        json_format: If True, emit JSON lines. If False, human-readable.
                     Controlled by LOG_JSON env var in Settings.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _ContainerFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # The payment client logs every request at DEBUG; keep that out of
    # the renewal pass output unless explicitly asked for.
    for name in (
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "httpcore",
        "httpx",
        "sqlalchemy.engine",
    ):
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
