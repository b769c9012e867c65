"""
Logging setup for the Card Ledger API.

Modules never attach handlers themselves; they use
``logging.getLogger(__name__)`` and rely on ``setup_logging`` being called
once from the application lifespan (or a script entry point).

Two output formats:
  - "json": one JSON object per line, for log shippers
  - "standard": human-readable console lines for local development
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Extra fields surfaced in JSON output when a log call passes them via extra={...}
_EXTRA_FIELDS = (
    "transaction_id",
    "account_id",
    "failure_kind",
    "field",
    "access_path",
    "result_count",
    "caller",
    "attempt",
    "path",
)


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure the root logger. Safe to call more than once."""
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # SQL echo is controlled by settings.DEBUG, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
