# adpulse/core/config.py
# Конфиг без магии: читаем .env один раз при старте, отдаём типизированный объект.
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from dotenv import load_dotenv

log = logging.getLogger(__name__)

DEFAULT_META_GRAPH_URL = "https://graph.facebook.com/v19.0"


def _parse_admin_ids(raw: str | None) -> list[int]:
    if not raw:
        return []
    out: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        if part.lstrip("-").isdigit():
            out.append(int(part))
        else:
            # допускаем случайные пробелы и мусор
            num = "".join(ch for ch in part if ch.isdigit())
            if num:
                out.append(int(num))
    return out


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(float(raw))
    except ValueError:
        log.warning('config_invalid key="%s" value="%s" default=%s', key, raw, default)
        return default
    return max(0, value)


def _optional(env: Mapping[str, str], key: str) -> str | None:
    value = (env.get(key) or "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    bot_token: str
    database_url: str
    admin_ids: list[int]
    log_level: str = "INFO"
    sweep_interval_seconds: int = 60
    reminder_days_before: int = 1
    reminder_overdue_hours: int = 24
    auto_off_grace_hours: int = 24
    follow_up_minutes: int = 60
    lead_threshold_minutes: int = 60
    meta_access_token: str | None = None
    meta_graph_url: str = DEFAULT_META_GRAPH_URL
    http_timeout_seconds: int = 10
    campaign_cache_size: int = 256
    campaign_cache_ttl_seconds: int = 600

    @staticmethod
    def load(environ: Mapping[str, str] | None = None) -> "Settings":
        """
        Собирает настройки из окружения. Без аргумента подтягивает .env
        и читает os.environ.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ
        env = environ

        bot_token = (env.get("BOT_TOKEN") or "").strip()
        database_url = (env.get("DATABASE_URL") or "").strip()

        # Жёсткая валидация критичных полей
        if not bot_token:
            raise RuntimeError("BOT_TOKEN не задан в .env")
        if not database_url:
            raise RuntimeError("DATABASE_URL не задан в .env")

        return Settings(
            bot_token=bot_token,
            database_url=database_url,
            admin_ids=_parse_admin_ids(env.get("ADMIN_IDS")),
            log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
            sweep_interval_seconds=_parse_int(env, "SWEEP_INTERVAL_SECONDS", 60) or 60,
            reminder_days_before=_parse_int(env, "REMINDER_DAYS_BEFORE", 1),
            reminder_overdue_hours=_parse_int(env, "REMINDER_OVERDUE_HOURS", 24),
            auto_off_grace_hours=_parse_int(env, "AUTO_OFF_GRACE_HOURS", 24),
            follow_up_minutes=_parse_int(env, "FOLLOW_UP_MINUTES", 60),
            lead_threshold_minutes=_parse_int(env, "LEAD_REMINDER_MINUTES", 60),
            meta_access_token=_optional(env, "META_ACCESS_TOKEN"),
            meta_graph_url=(_optional(env, "META_GRAPH_URL") or DEFAULT_META_GRAPH_URL).rstrip("/"),
            http_timeout_seconds=_parse_int(env, "HTTP_TIMEOUT_SECONDS", 10) or 10,
            campaign_cache_size=_parse_int(env, "CAMPAIGN_CACHE_SIZE", 256),
            campaign_cache_ttl_seconds=_parse_int(env, "CAMPAIGN_CACHE_TTL_SECONDS", 600),
        )
