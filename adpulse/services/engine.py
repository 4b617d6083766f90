# adpulse/services/engine.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adpulse.core.config import Settings
from adpulse.services import auto_reports, lead_reminders, reminders, schedule_runner
from adpulse.services.ad_platform import MetaAdsClient
from adpulse.services.messaging import TelegramGateway
from adpulse.services.reports import ReportGenerator


@dataclass
class SweepEngine:
    """Связка коллабораторов и точки входа для таймера."""

    sessions: async_sessionmaker[AsyncSession]
    gateway: TelegramGateway
    reports: ReportGenerator
    ad_client: MetaAdsClient | None
    settings: Settings

    async def run_schedules(self, now: datetime) -> schedule_runner.ScheduleRunResult:
        return await schedule_runner.run_schedules(self, now)

    async def run_auto_report_sweep(self, now: datetime) -> auto_reports.AutoReportStats:
        return await auto_reports.run_auto_report_sweep(self, now)

    async def run_reminder_sweep(self, now: datetime) -> reminders.ReminderSweepStats:
        return await reminders.run_reminder_sweep(self, now)

    async def run_lead_reminder_sweep(self, now: datetime) -> lead_reminders.LeadReminderStats:
        return await lead_reminders.run_lead_reminder_sweep(self, now)
