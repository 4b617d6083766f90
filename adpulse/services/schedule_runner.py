# adpulse/services/schedule_runner.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from adpulse.core.clock import ensure_naive_utc
from adpulse.core.db import session_scope
from adpulse.core.errors import PersistenceError, ValidationError
from adpulse.models.schedule import ReportDelivery, ReportSchedule
from adpulse.repo.projects import list_projects
from adpulse.repo.schedules import append_deliveries, claim_schedule, list_schedules, save_schedules
from adpulse.services.periods import window_for_frequency
from adpulse.services.reports import generate_with_fallback
from adpulse.services.routing import build_thread_index, ensure_chat_id
from adpulse.services.schedule_calc import calculate_next_run_at
from adpulse.ui.messages import with_report_id

if TYPE_CHECKING:
    from adpulse.services.engine import SweepEngine

log = logging.getLogger(__name__)

MINUTE = timedelta(minutes=1)


@dataclass
class ScheduleRunResult:
    total_schedules: int = 0
    triggered: int = 0
    sla_reports: int = 0
    errors: int = 0
    conflicts: int = 0


def _report_type(schedule: ReportSchedule) -> str:
    return schedule.type if schedule.type in ("detailed", "finance") else "summary"


async def _deliver(engine: "SweepEngine", schedule: ReportSchedule, thread_index: dict[str, int]) -> tuple[str, dict]:
    """
    Собирает отчёт и отправляет его в чат расписания.
    Возвращает (id отчёта, детали для журнала).
    """
    details: dict = {"project_ids": list(schedule.project_ids or [])}
    if schedule.type == "sla":
        result = await engine.reports.create_sla_report(
            schedule.project_ids,
            title=schedule.title or None,
            with_export=schedule.format == "xlsx",
        )
    else:
        result, degraded = await generate_with_fallback(
            engine.reports,
            _report_type(schedule),
            schedule.project_ids,
            window_for_frequency(schedule.frequency),
            title=schedule.title or None,
        )
        if degraded:
            details["degraded"] = degraded

    chat_id = ensure_chat_id(schedule.chat_id)
    if not chat_id:
        raise ValidationError(f"Schedule {schedule.id} is missing chat_id")
    thread_id = thread_index.get(chat_id)
    if thread_id is None and schedule.project_ids:
        log.warning("schedule_thread_missing id=%s chat_id=%s", schedule.id, chat_id)

    await engine.gateway.send_message(chat_id, with_report_id(result.html, result.record.id), thread_id=thread_id)
    if result.attachment is not None:
        filename, payload = result.attachment
        await engine.gateway.send_document(chat_id, filename, payload, thread_id=thread_id)

    details["chat_id"] = chat_id
    return result.record.id, details


async def run_schedules(engine: "SweepEngine", now: datetime) -> ScheduleRunResult:
    """
    Один проход по расписаниям: каждое включённое расписание с next_run_at <= now
    исполняется один раз; next_run_at пересчитывается при любом исходе.
    """
    now = ensure_naive_utc(now)
    async with session_scope(engine.sessions) as s:
        schedules = await list_schedules(s)
        projects = await list_projects(s)

    result = ScheduleRunResult(total_schedules=len(schedules))
    if not schedules:
        return result

    thread_index = build_thread_index(projects)
    changed: list[ReportSchedule] = []
    deliveries: list[ReportDelivery] = []

    for schedule in schedules:
        if not schedule.enabled:
            # отключённое: только готовим next_run_at на случай включения
            if schedule.next_run_at is None:
                schedule.next_run_at = calculate_next_run_at(schedule, now)
                changed.append(schedule)
            continue

        if schedule.next_run_at is None:
            schedule.next_run_at = calculate_next_run_at(schedule, now)
            changed.append(schedule)
            continue
        if schedule.next_run_at > now:
            continue

        # следующий слот считаем заранее: и успех, и ошибка ждут его
        next_run_at = calculate_next_run_at(schedule, now + MINUTE)
        try:
            async with session_scope(engine.sessions) as s:
                claimed = await claim_schedule(s, schedule, next_run_at, now)
        except SQLAlchemyError:
            result.errors += 1
            log.exception("schedule_claim_failed id=%s", schedule.id)
            continue
        if not claimed:
            result.conflicts += 1
            log.info("schedule_claim_lost id=%s", schedule.id)
            continue

        try:
            report_id, details = await _deliver(engine, schedule, thread_index)
        except Exception as exc:
            result.errors += 1
            schedule.last_run_at = now
            schedule.last_status = "error"
            schedule.last_error = str(exc)
            deliveries.append(ReportDelivery(
                id=uuid.uuid4().hex,
                schedule_id=schedule.id,
                type=schedule.type,
                channel="telegram",
                status="error",
                delivered_at=now,
                error=str(exc),
                details={"project_ids": list(schedule.project_ids or [])},
            ))
            log.error('schedule_failed id=%s error="%s"', schedule.id, exc)
        else:
            result.triggered += 1
            if schedule.type == "sla":
                result.sla_reports += 1
            schedule.last_run_at = now
            schedule.last_status = "success"
            schedule.last_error = None
            deliveries.append(ReportDelivery(
                id=uuid.uuid4().hex,
                schedule_id=schedule.id,
                report_id=report_id,
                type=schedule.type,
                channel="telegram",
                status="success",
                delivered_at=now,
                details=details,
            ))
        changed.append(schedule)

    conflicts: list[str] = []
    persist_error: SQLAlchemyError | None = None
    try:
        async with session_scope(engine.sessions) as s:
            conflicts = await save_schedules(s, changed, now) if changed else []
            await append_deliveries(s, deliveries)
    except SQLAlchemyError as exc:
        log.exception("schedules_persist_failed changed=%s deliveries=%s", len(changed), len(deliveries))
        persist_error = exc

    if conflicts:
        result.conflicts += len(conflicts)
        log.warning("schedule_save_conflicts ids=%s", ",".join(conflicts))

    log.info(
        "schedules_sweep total=%s triggered=%s sla=%s errors=%s conflicts=%s",
        result.total_schedules, result.triggered, result.sla_reports, result.errors, result.conflicts,
    )
    if persist_error is not None:
        raise PersistenceError(f"failed to persist schedule sweep: {persist_error}") from persist_error
    return result
