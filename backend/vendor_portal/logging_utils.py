from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import re
import sys

from .config import settings

_EMAIL_MASK = re.compile(r"^(.{1,3}).*(@.*)$")


def mask_email(email: str | None) -> str | None:
    """Keep the first three characters and the domain: ``abc***@example.com``."""
    if not email:
        return email
    masked, replaced = _EMAIL_MASK.subn(r"\1***\2", email)
    if not replaced:
        return "***"
    return masked


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in (
            "event",
            "ip",
            "email",
            "reason",
            "submission_id",
            "path",
            "status",
            "removed",
        ):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def configure_logging() -> None:
    root = logging.getLogger()
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root.setLevel(getattr(logging, settings.log_level, logging.INFO))
    root.addHandler(handler)
