# adpulse/core/clock.py
# Всё время внутри движка: naive UTC (tzinfo=None), как и колонки DateTime в БД.
from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def ensure_naive_utc(dt: datetime) -> datetime:
    """Aware -> переводим в UTC и отбрасываем tzinfo; naive считаем уже UTC."""
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_naive_utc(dt).isoformat(timespec="seconds") + "Z"
