# adpulse/services/auto_reports.py
"""
Автоотчёты по проектам.

Каждый проход смотрит, попадает ли `now` в 5-минутное окно после одного из
времён (UTC) из настроек проекта: отдельно для ежедневного отчёта и для
понедельничного недельного. Повторная отправка блокируется кулдауном и
отметкой «этот слот уже отправлен», так что пересекающиеся проходы не
дублируют сообщения.

Тем же маршрутам уходят алерты проекта (см. services/alerts.py). Аккаунты
Meta для них запрашиваются один раз на проход.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from adpulse.core.clock import ensure_naive_utc
from adpulse.core.db import session_scope
from adpulse.core.errors import UpstreamUnavailable
from adpulse.models.project import AutoReportSettings, Project
from adpulse.repo.projects import list_autoreport_settings, list_projects, update_autoreport_settings
from adpulse.services.ad_platform import AdAccount
from adpulse.services.alerts import plan_alerts
from adpulse.services.reports import generate_with_fallback
from adpulse.services.routing import collect_targets
from adpulse.ui.messages import with_report_id

if TYPE_CHECKING:
    from adpulse.services.engine import SweepEngine

log = logging.getLogger(__name__)

AUTO_WINDOW_MINUTES = 5
AUTO_COOLDOWN = timedelta(minutes=4)
MONDAY = 1  # 0 = воскресенье

# каденция -> (поле отметки, окно отчёта)
CADENCES = {
    "daily": ("last_sent_daily", "today"),
    "weekly": ("last_sent_monday", "last_7d"),
}

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


@dataclass
class TriggerEvaluation:
    daily: str | None = None
    weekly: str | None = None


@dataclass
class AutoReportStats:
    processed: int = 0
    reports_sent: int = 0
    weekly_reports: int = 0
    alerts_sent: int = 0
    fallbacks: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: int = 0


def _parse_slot(value: str) -> int | None:
    """'HH:MM' -> минуты от полуночи; мусор -> None."""
    m = _TIME_RE.match((value or "").strip())
    if not m:
        return None
    hours = max(0, min(23, int(m.group(1))))
    minutes = max(0, min(59, int(m.group(2))))
    return hours * 60 + minutes


def _matching_slot(times, now: datetime) -> tuple[str, datetime] | None:
    """Первое время, в 5-минутное окно которого попадает now: (время, начало окна)."""
    now_minutes = now.hour * 60 + now.minute
    for value in times or ():
        slot = _parse_slot(value)
        if slot is None:
            continue
        if slot <= now_minutes < slot + AUTO_WINDOW_MINUTES:
            start = now.replace(hour=slot // 60, minute=slot % 60, second=0, microsecond=0)
            return value, start
    return None


def _already_sent(last_sent: datetime | None, slot_start: datetime, now: datetime) -> bool:
    if last_sent is None:
        return False
    if now - last_sent < AUTO_COOLDOWN:
        return True
    # в этом же окне уже отправляли
    return slot_start <= last_sent <= now


def _should_send(settings: AutoReportSettings, last_sent: datetime | None, now: datetime) -> str | None:
    match = _matching_slot(settings.times, now)
    if match is None:
        return None
    slot, start = match
    if _already_sent(last_sent, start, now):
        return None
    return slot


def evaluate_auto_report_trigger(settings: AutoReportSettings, now: datetime) -> TriggerEvaluation:
    """Какие каденции должны сработать сейчас. Чистая функция."""
    now = ensure_naive_utc(now)
    if not settings.enabled or not settings.times:
        return TriggerEvaluation()
    daily = _should_send(settings, settings.last_sent_daily, now)
    weekly = None
    if settings.monday_double_report and now.isoweekday() % 7 == MONDAY:
        weekly = _should_send(settings, settings.last_sent_monday, now)
    return TriggerEvaluation(daily=daily, weekly=weekly)


async def _claim(engine: "SweepEngine", settings: AutoReportSettings, now: datetime, **values) -> bool:
    async with session_scope(engine.sessions) as s:
        return await update_autoreport_settings(s, settings, now, **values)


async def _fetch_alert_accounts(engine: "SweepEngine") -> tuple[list[AdAccount] | None, str | None]:
    """Аккаунты Meta за сегодня, один запрос на проход. (аккаунты, ошибка)."""
    token = engine.settings.meta_access_token
    if engine.ad_client is None or not token:
        return None, "Meta OAuth не настроен"
    try:
        return await engine.ad_client.fetch_accounts_and_campaigns(token, "today"), None
    except UpstreamUnavailable as exc:
        log.warning('autoreport_meta_unavailable error="%s"', exc)
        return None, str(exc)


async def _send_auto_report(
    engine: "SweepEngine",
    project: Project,
    settings: AutoReportSettings,
    window: str,
) -> tuple[int, bool]:
    """Собирает и рассылает отчёт. Возвращает (доставлено чатов, был ли fallback)."""
    routes = collect_targets(project, settings.alerts_target)
    result, degraded = await generate_with_fallback(engine.reports, "summary", [project.id], window)
    delivered = await engine.gateway.send_many(routes, with_report_id(result.html, result.record.id))
    return delivered, degraded is not None


async def _run_reports(
    engine: "SweepEngine",
    project: Project,
    settings: AutoReportSettings,
    now: datetime,
    stats: AutoReportStats,
) -> bool:
    """Ежедневный и недельный отчёт проекта. False, если настройки забрал параллельный проход."""
    evaluation = evaluate_auto_report_trigger(settings, now)
    due = [name for name in ("daily", "weekly") if getattr(evaluation, name)]
    if not due:
        return True
    if not collect_targets(project, settings.alerts_target):
        stats.skipped += 1
        log.warning("autoreport_no_targets project=%s mode=%s", project.id, settings.alerts_target)
        return True

    for cadence in due:
        field, window = CADENCES[cadence]
        previous = getattr(settings, field)
        try:
            if not await _claim(engine, settings, now, **{field: now}):
                stats.conflicts += 1
                log.info("autoreport_claim_lost project=%s cadence=%s", project.id, cadence)
                return False
        except SQLAlchemyError:
            stats.errors += 1
            log.exception("autoreport_claim_failed project=%s cadence=%s", project.id, cadence)
            continue

        try:
            delivered, fallback = await _send_auto_report(engine, project, settings, window)
        except Exception as exc:
            delivered, fallback = 0, False
            stats.errors += 1
            log.error('autoreport_failed project=%s cadence=%s error="%s"', project.id, cadence, exc)

        if delivered == 0:
            # ничего не ушло, слот свободен для следующего прохода
            try:
                await _claim(engine, settings, now, **{field: previous})
            except SQLAlchemyError:
                log.exception("autoreport_release_failed project=%s cadence=%s", project.id, cadence)
            continue

        if fallback:
            stats.fallbacks += 1
        if cadence == "daily":
            stats.reports_sent += delivered
        else:
            stats.weekly_reports += delivered
    return True


async def _run_alerts(
    engine: "SweepEngine",
    project: Project,
    settings: AutoReportSettings,
    accounts: list[AdAccount] | None,
    meta_error: str | None,
    now: datetime,
    stats: AutoReportStats,
) -> None:
    plan = plan_alerts(project, settings, accounts, meta_error, now)
    if not plan.state:
        return
    # сначала фиксируем новое состояние: проигравший проход алерты не шлёт
    try:
        if not await _claim(engine, settings, now, **plan.state):
            stats.conflicts += 1
            log.info("alerts_claim_lost project=%s", project.id)
            return
    except SQLAlchemyError:
        stats.errors += 1
        log.exception("alerts_claim_failed project=%s", project.id)
        return

    routes = collect_targets(project, settings.alerts_target)
    if not routes:
        return
    for text in plan.messages:
        delivered = await engine.gateway.send_many(routes, text)
        if delivered == 0:
            stats.errors += 1
            log.error("alert_undelivered project=%s", project.id)
        stats.alerts_sent += delivered


async def run_auto_report_sweep(engine: "SweepEngine", now: datetime) -> AutoReportStats:
    now = ensure_naive_utc(now)
    stats = AutoReportStats()
    async with session_scope(engine.sessions) as s:
        projects = await list_projects(s)
        settings_map = await list_autoreport_settings(s)

    accounts, meta_error = None, None
    if any(settings_map.get(p.id) is not None and p.ad_account_id for p in projects):
        accounts, meta_error = await _fetch_alert_accounts(engine)

    for project in projects:
        settings = settings_map.get(project.id)
        if settings is None:
            continue
        stats.processed += 1
        if not await _run_reports(engine, project, settings, now, stats):
            # этим проектом в этом окне занимается другой проход
            continue
        await _run_alerts(engine, project, settings, accounts, meta_error, now, stats)

    log.info(
        "autoreports_sweep processed=%s sent=%s weekly=%s alerts=%s fallbacks=%s skipped=%s conflicts=%s errors=%s",
        stats.processed, stats.reports_sent, stats.weekly_reports, stats.alerts_sent, stats.fallbacks,
        stats.skipped, stats.conflicts, stats.errors,
    )
    return stats
