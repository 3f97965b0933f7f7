from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str = "blockfraud", env: str = "") -> None:
        super().__init__()
        self.service = service
        self.env = env

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "service": self.service,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if self.env:
            log["env"] = self.env
        if record.exc_info:
            log["exc_info"] = self.formatException(record.exc_info)
        # Structured extras are passed as extra={"extra": {...}}
        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            log.update(extra)
        return json.dumps(log, ensure_ascii=False, default=str)


def init_logging(level: str = "INFO", env: str = "") -> None:
    """Route the root logger to stdout as one JSON object per line."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(env=env))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
    # One line per outbound request is noise at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
