# adpulse/services/periods.py
# Окна отчётов: today / yesterday / last_7d -> даты (UTC) и подпись.
from __future__ import annotations

from datetime import date, datetime, timedelta

WINDOW_LABELS = {
    "today": "сегодня",
    "yesterday": "вчера",
    "last_7d": "последние 7 дн.",
}


def resolve_window(window: str, now: datetime) -> tuple[date, date, str]:
    t = now.date()
    if window == "today":
        return (t, t, WINDOW_LABELS[window])
    if window == "yesterday":
        d = t - timedelta(days=1)
        return (d, d, WINDOW_LABELS[window])
    if window == "last_7d":
        return (t - timedelta(days=6), t, WINDOW_LABELS[window])
    raise ValueError(f"unknown window: {window}")


def window_for_frequency(frequency: str | None) -> str:
    # ежедневный отчёт за вчера (день закрыт), недельный за 7 дней
    return "last_7d" if frequency == "weekly" else "yesterday"
