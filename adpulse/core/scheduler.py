# adpulse/core/scheduler.py
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from adpulse.core.clock import utc_now
from adpulse.core.errors import PersistenceError

log = logging.getLogger(__name__)


def start_scheduler(engine) -> AsyncIOScheduler:
    """
    Три интервальных джоба, по одному на вид прохода.
    max_instances=1: следующий тик не стартует, пока не закончился предыдущий.
    """
    scheduler = AsyncIOScheduler()
    interval = max(1, engine.settings.sweep_interval_seconds)

    @scheduler.scheduled_job("interval", seconds=interval, id="schedules_tick", max_instances=1, coalesce=True)
    async def tick_schedules() -> None:
        # naive UTC
        now = utc_now()
        try:
            res = await engine.run_schedules(now)
        except PersistenceError:
            log.error("schedules_tick persist failed at %s", now)
            return
        if res.triggered:
            log.debug("schedules triggered=%s", res.triggered)

    @scheduler.scheduled_job("interval", seconds=interval, id="autoreports_tick", max_instances=1, coalesce=True)
    async def tick_autoreports() -> None:
        now = utc_now()
        stats = await engine.run_auto_report_sweep(now)
        if stats.reports_sent or stats.weekly_reports or stats.alerts_sent:
            log.debug(
                "autoreports sent=%s weekly=%s alerts=%s",
                stats.reports_sent, stats.weekly_reports, stats.alerts_sent,
            )

    @scheduler.scheduled_job("interval", seconds=interval, id="reminders_tick", max_instances=1, coalesce=True)
    async def tick_reminders() -> None:
        # оплаты и лиды: независимые проходы, сбой одного не отменяет другой
        now = utc_now()
        try:
            stats = await engine.run_reminder_sweep(now)
            if stats.sent or stats.follow_ups:
                log.debug("reminders sent=%s follow_ups=%s", stats.sent, stats.follow_ups)
        except PersistenceError:
            log.error("reminders_tick persist failed at %s", now)
        try:
            leads = await engine.run_lead_reminder_sweep(now)
            if leads.sent:
                log.debug("lead reminders sent=%s", leads.sent)
        except PersistenceError:
            log.error("lead_reminders_tick persist failed at %s", now)

    scheduler.start()
    log.info("Scheduler started interval=%ss", interval)
    return scheduler
