# adpulse/services/lead_reminders.py
"""
Напоминания по лидам: новый лид, который ждёт ответа дольше порога,
один раз попадает во внутренний чат проекта. Запись на лид живёт, пока
лид не закрыт (status=done) и не удалён; порог 0 выключает напоминания
и очищает записи.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from adpulse.core.clock import ensure_naive_utc
from adpulse.core.db import session_scope
from adpulse.core.errors import NotFoundError, PersistenceError, UpstreamUnavailable
from adpulse.models.project import Lead, Project
from adpulse.models.reminder import LeadReminder
from adpulse.repo.projects import list_leads, list_projects
from adpulse.repo.reminders import list_lead_reminders, save_lead_reminders, write_lead_reminder
from adpulse.services.routing import resolve_reminder_route
from adpulse.ui.messages import lead_reminder_text

if TYPE_CHECKING:
    from adpulse.services.engine import SweepEngine

log = logging.getLogger(__name__)


@dataclass
class LeadReminderStats:
    processed: int = 0
    sent: int = 0
    removed: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: int = 0


def lead_wait_minutes(lead: Lead, now: datetime) -> float | None:
    if lead.created_at is None:
        return None
    return (now - lead.created_at) / timedelta(minutes=1)


def needs_lead_reminder(lead: Lead, record: LeadReminder | None, now: datetime, threshold_minutes: int) -> bool:
    if threshold_minutes <= 0 or lead.status == "done":
        return False
    if record is not None and record.status == "notified":
        return False
    wait = lead_wait_minutes(lead, now)
    return wait is not None and wait >= threshold_minutes


def _new_record(lead: Lead, now: datetime) -> LeadReminder:
    return LeadReminder(
        id=uuid.uuid4().hex,
        lead_id=lead.id,
        project_id=lead.project_id,
        status="pending",
        notified_count=0,
        last_notified_at=None,
        created_at=now,
        updated_at=now,
        version=None,
    )


async def _claim(engine: "SweepEngine", record: LeadReminder, now: datetime) -> bool:
    async with session_scope(engine.sessions) as s:
        return await write_lead_reminder(s, record, now)


async def run_lead_reminder_sweep(engine: "SweepEngine", now: datetime) -> LeadReminderStats:
    now = ensure_naive_utc(now)
    threshold = engine.settings.lead_threshold_minutes
    stats = LeadReminderStats()

    async with session_scope(engine.sessions) as s:
        existing = {r.lead_id: r for r in await list_lead_reminders(s)}
        projects: list[Project] = await list_projects(s) if threshold > 0 else []
        leads = await list_leads(s, [p.id for p in projects])

    by_project: dict[str, list[Lead]] = {}
    for lead in leads:
        by_project.setdefault(lead.project_id, []).append(lead)

    keep: set[str] = set()
    dirty: list[LeadReminder] = []
    failed: list[LeadReminder] = []

    for project in projects:
        project_leads = [lead for lead in by_project.get(project.id, ()) if lead.status != "done"]
        try:
            route, _ = resolve_reminder_route(project)
        except NotFoundError as exc:
            if project_leads:
                stats.skipped += 1
                log.warning('lead_reminder_route_missing project=%s reason="%s"', project.id, exc)
            keep.update(lead.id for lead in project_leads if lead.id in existing)
            continue

        for lead in project_leads:
            stats.processed += 1
            record = existing.get(lead.id)
            if record is not None:
                keep.add(lead.id)
            if not needs_lead_reminder(lead, record, now, threshold):
                continue

            is_new = record is None
            if is_new:
                record = _new_record(lead, now)
            previous = (record.status, record.notified_count, record.last_notified_at)
            record.status = "notified"
            record.notified_count = (record.notified_count or 0) + 1
            record.last_notified_at = now
            try:
                claimed = await _claim(engine, record, now)
            except IntegrityError:
                claimed = False
            except SQLAlchemyError:
                stats.errors += 1
                log.exception("lead_reminder_claim_failed lead=%s", lead.id)
                continue
            if not claimed:
                stats.conflicts += 1
                log.info("lead_reminder_claim_lost lead=%s", lead.id)
                continue
            keep.add(lead.id)

            wait = lead_wait_minutes(lead, now)
            try:
                await engine.gateway.send_message(
                    route.chat_id, lead_reminder_text(project, lead, wait), thread_id=route.thread_id,
                )
            except UpstreamUnavailable as exc:
                stats.errors += 1
                log.error('lead_reminder_send_failed lead=%s error="%s"', lead.id, exc)
                if is_new:
                    failed.append(record)
                else:
                    record.status, record.notified_count, record.last_notified_at = previous
                    dirty.append(record)
                continue

            stats.sent += 1
            log.info("lead_reminder_sent project=%s lead=%s", project.id, lead.id)

    removed = [r for lead_id, r in existing.items() if lead_id not in keep]
    stats.removed = len(removed)
    removed += failed

    persist_error: SQLAlchemyError | None = None
    try:
        async with session_scope(engine.sessions) as s:
            conflicts = await save_lead_reminders(s, dirty, removed, now)
        stats.conflicts += len(conflicts)
        for lead_id in conflicts:
            log.info("lead_reminder_save_conflict lead=%s", lead_id)
    except SQLAlchemyError as exc:
        log.exception("lead_reminders_persist_failed dirty=%s removed=%s", len(dirty), len(removed))
        persist_error = exc

    log.info(
        "lead_reminders_sweep processed=%s sent=%s removed=%s skipped=%s conflicts=%s errors=%s",
        stats.processed, stats.sent, stats.removed, stats.skipped, stats.conflicts, stats.errors,
    )
    if persist_error is not None:
        raise PersistenceError(f"failed to persist lead reminder sweep: {persist_error}") from persist_error
    return stats
