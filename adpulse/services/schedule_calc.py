# adpulse/services/schedule_calc.py
"""
Расчёт следующего запуска расписания.

Чистые функции без побочных эффектов: одинаковые (schedule, now) всегда дают
одинаковый результат. Время на входе и выходе: naive UTC.
"""
from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Iterable

from adpulse.core.clock import ensure_naive_utc

log = logging.getLogger(__name__)

DEFAULT_HOUR = 9
DEFAULT_MINUTE = 0
ALL_WEEKDAYS = (0, 1, 2, 3, 4, 5, 6)  # 0 = воскресенье

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_OFFSET_RE = re.compile(r"^([+-])(\d{1,2})(?::?(\d{2}))?$")


def parse_time_of_day(value: str | None) -> tuple[int, int]:
    """'HH:MM' -> (часы, минуты). Мусор -> 09:00."""
    m = _TIME_RE.match((value or "").strip())
    if not m:
        log.debug('schedule_time_invalid value="%s"', value)
        return DEFAULT_HOUR, DEFAULT_MINUTE
    hours = min(23, max(0, int(m.group(1))))
    minutes = min(59, max(0, int(m.group(2))))
    return hours, minutes


def parse_timezone_offset(value: str | None) -> int:
    """Смещение в минутах: '+05:00' -> 300, 'Z'/'UTC' -> 0, мусор -> 0 (UTC)."""
    if not value:
        return 0
    raw = value.strip()
    if raw.upper() in ("Z", "UTC"):
        return 0
    m = _OFFSET_RE.match(raw)
    if not m:
        log.warning('schedule_timezone_unsupported value="%s"', value)
        return 0
    sign = -1 if m.group(1) == "-" else 1
    hours = int(m.group(2))
    minutes = int(m.group(3) or 0)
    return sign * (hours * 60 + minutes)


def normalize_weekdays(weekdays: Iterable[int] | None) -> list[int]:
    """Пустой набор = каждый день. Значения зажимаются в 0..6."""
    out: set[int] = set()
    for day in weekdays or ():
        try:
            out.add(max(0, min(6, int(day))))
        except (TypeError, ValueError):
            continue
    if not out:
        return list(ALL_WEEKDAYS)
    return sorted(out)


def _weekday(dt: datetime) -> int:
    # isoweekday: пн=1 ... вс=7 -> вс=0 ... сб=6
    return dt.isoweekday() % 7


def calculate_next_run_at(schedule, now: datetime) -> datetime:
    """
    Ближайший момент строго после `now`, подходящий под время суток и дни недели
    расписания (в его локальном смещении). Возвращает naive UTC.

    schedule: любой объект с атрибутами time, timezone, frequency, weekdays.
    """
    now = ensure_naive_utc(now)
    offset = timedelta(minutes=parse_timezone_offset(getattr(schedule, "timezone", None)))
    hours, minutes = parse_time_of_day(getattr(schedule, "time", None))

    local_now = now + offset
    base_local = local_now.replace(hour=hours, minute=minutes, second=0, microsecond=0)

    if getattr(schedule, "frequency", None) == "weekly":
        weekdays = normalize_weekdays(getattr(schedule, "weekdays", None))
        start_day = _weekday(local_now)
        for i in range(8):
            if (start_day + i) % 7 not in weekdays:
                continue
            target = base_local + timedelta(days=i) - offset
            if target <= now:
                continue
            return target
        # до сюда не доходим при диапазоне 0..7, но пусть будет
        delta = (7 - start_day + weekdays[0]) % 7 or 7
        return base_local + timedelta(days=delta) - offset

    candidate = base_local - offset
    if candidate <= now:
        candidate = candidate + timedelta(days=1)
    return candidate
