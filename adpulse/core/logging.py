# adpulse/core/logging.py
# JSON-строки в stdout: одна запись = один объект {level, ts, name, msg[, exc]}.

from __future__ import annotations

import json
import logging
import sys

# шумные библиотеки поднимаем до WARNING
_QUIET_LOGGERS = ("httpx", "aiogram.event", "apscheduler.executors.default")


class JsonLineFormatter(logging.Formatter):
    """Сообщения свипов содержат кавычки (error="..."), поэтому собираем через json.dumps."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "ts": self.formatTime(record),
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLineFormatter())
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
