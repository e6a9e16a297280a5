from __future__ import annotations

import json
import logging as std_logging
import sys
import time
from typing import Any, Dict, List

import structlog

from .settings import settings

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = set(
    vars(std_logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class JsonFormatter(std_logging.Formatter):
    def format(self, record: std_logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "ts": int(time.time() * 1000),
            "level": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
            "service": settings.APP_NAME,
        }
        # Attach structured context passed as extra fields
        for key, val in vars(record).items():
            if key in _RECORD_ATTRS or key in base or val is None:
                continue
            base[key] = val
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def configure_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """Route structlog through stdlib logging with a console or JSON renderer."""
    level_name = (level or settings.LOG_LEVEL).upper()
    use_json = settings.LOG_JSON if json_output is None else json_output

    handler = std_logging.StreamHandler(sys.stdout)
    processors: List[Any] = [structlog.contextvars.merge_contextvars]
    if use_json:
        handler.setFormatter(JsonFormatter())
        processors += [
            structlog.processors.format_exc_info,
            structlog.stdlib.render_to_log_kwargs,
        ]
    else:
        handler.setFormatter(std_logging.Formatter("%(message)s"))
        processors += [
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    root = std_logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(std_logging, level_name, std_logging.INFO))

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
