from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from playground.trace import _trace_id_var

ROOT_LOGGER_NAME = "playground"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname.lower(),
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = getattr(record, "trace_id", None) or _trace_id_var.get()
        if trace_id:
            payload["trace_id"] = trace_id

        for key in (
            "model",
            "server",
            "tool_name",
            "tool_call_id",
            "round",
            "finish_reason",
            "connections",
            "tools",
            "duration_ms",
            "outcome",
            "path",
            "status",
            "method",
        ):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def get_runtime_logger(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
