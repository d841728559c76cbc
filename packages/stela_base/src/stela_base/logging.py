"""
Structured logging setup.

Modules log through logging.getLogger(__name__) and attach context with
extra={...}. The JSON formatter surfaces the known context keys.
"""

import json
import logging
from datetime import datetime, timezone

from stela_base.settings import get_settings

EXTRA_KEYS = (
    "block_number",
    "from_block",
    "to_block",
    "tx_hash",
    "event_type",
    "subject_type",
    "subject_id",
    "selector",
    "attempt",
    "agreement_id",
    "outcome",
    "count",
)


class JSONFormatter(logging.Formatter):
    """Format records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure the root logger. Defaults come from settings."""
    settings = get_settings()
    level = level or settings.log_level
    fmt = fmt or settings.log_format

    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s"))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
