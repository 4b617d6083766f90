# adpulse/services/reminders.py
"""
Напоминания об оплате проектов.

Статус (pending/upcoming/overdue) каждый проход считается заново от
next_payment_date проекта, а стадия задаёт позицию в ручном воркфлоу:

    pending -> admin_notified -> awaiting_admin_confirmation -> declined | completed

Сдвиг даты оплаты сбрасывает стадию в pending. Completed-запись удаляется.
Проекты с auto_off блокируются один раз, минуя обычные напоминания.
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
from adpulse.core.errors import NotFoundError, PersistenceError, UpstreamUnavailable, ValidationError
from adpulse.models.project import Project
from adpulse.models.reminder import METHODS, SETTLED_STAGES, PaymentReminder
from adpulse.repo.projects import (
    get_autoreport_settings,
    get_project,
    list_projects,
    update_autoreport_settings,
    update_project,
)
from adpulse.repo.reminders import (
    delete_reminder,
    get_reminder_by_project,
    list_reminders,
    save_reminders,
    write_reminder,
)
from adpulse.services.routing import DeliveryRoute, resolve_reminder_route
from adpulse.ui.keyboards import confirmation_keyboard, reminder_keyboard
from adpulse.ui.messages import admin_confirmation_text, auto_off_text, payment_reminder_text

if TYPE_CHECKING:
    from adpulse.services.engine import SweepEngine

log = logging.getLogger(__name__)

ACTION_INITIAL = "initial"
ACTION_RESEND = "resend"
ACTION_FOLLOW_UP = "follow_up"

BILLING_PERIOD = timedelta(days=30)

OUTCOME_METHOD = "Способ оплаты отмечен, ждём подтверждения."
OUTCOME_PAID = "Оплата подтверждена, следующая дата перенесена на 30 дней."
OUTCOME_DECLINED = "Напоминание отклонено."
OUTCOME_STALE = "Уже обработано."
OUTCOME_NO_PROJECT = "Проект не найден."

_SNAPSHOT_FIELDS = ("stage", "method", "notified_count", "last_notified_at", "next_follow_up_at")
_STATE_FIELDS = _SNAPSHOT_FIELDS + ("status", "due_date", "admin_chat_id", "client_chat_id")


@dataclass(frozen=True)
class ReminderPolicy:
    days_before: int = 1
    overdue_hours: int = 24
    follow_up_minutes: int = 60
    auto_off_grace_hours: int = 24

    @classmethod
    def from_settings(cls, settings) -> "ReminderPolicy":
        return cls(
            days_before=settings.reminder_days_before,
            overdue_hours=settings.reminder_overdue_hours,
            follow_up_minutes=settings.follow_up_minutes,
            auto_off_grace_hours=settings.auto_off_grace_hours,
        )

    @property
    def disabled(self) -> bool:
        return self.days_before <= 0 and self.overdue_hours <= 0


@dataclass
class ReminderSweepStats:
    processed: int = 0
    sent: int = 0
    follow_ups: int = 0
    auto_off: int = 0
    removed: int = 0
    skipped: int = 0
    conflicts: int = 0
    errors: int = 0


def resolve_payment_status(due: datetime, now: datetime, days_before: int) -> str:
    diff = due - now
    if diff <= timedelta(0):
        return "overdue"
    if days_before > 0 and diff <= timedelta(days=days_before):
        return "upcoming"
    return "pending"


def _new_record(project: Project, status: str, due: datetime, now: datetime) -> PaymentReminder:
    return PaymentReminder(
        id=uuid.uuid4().hex,
        project_id=project.id,
        status=status,
        stage="pending",
        method=None,
        due_date=due,
        notified_count=0,
        last_notified_at=None,
        next_follow_up_at=None,
        created_at=now,
        updated_at=now,
        version=None,
    )


def plan_reminder(
    record: PaymentReminder | None,
    project: Project,
    now: datetime,
    policy: ReminderPolicy,
) -> tuple[PaymentReminder | None, str | None]:
    """
    Приводит запись к текущей дате оплаты и решает, что отправить.

    Возвращает (запись или None, если её нужно убрать; действие или None).
    Запись меняется на месте, отправка не выполняется.
    """
    due = project.next_payment_date
    if due is None:
        return None, None
    status = resolve_payment_status(due, now, policy.days_before)

    if record is None:
        if status == "pending":
            return None, None
        return _new_record(project, status, due, now), ACTION_INITIAL

    due_changed = record.due_date != due
    status_changed = record.status != status
    if due_changed:
        record.stage = "pending"
        record.method = None
        record.next_follow_up_at = None
    record.due_date = due
    record.status = status

    if record.stage == "completed":
        return None, None
    if status == "pending":
        if record.stage in SETTLED_STAGES:
            return None, None
        return record, None

    if record.stage == "awaiting_admin_confirmation":
        if record.next_follow_up_at is not None and record.next_follow_up_at <= now:
            return record, ACTION_FOLLOW_UP
        return record, None
    if record.stage == "pending" or status_changed:
        return record, ACTION_INITIAL
    if status == "overdue" and record.stage == "admin_notified" and policy.overdue_hours > 0:
        last = record.last_notified_at
        if last is None or now - last >= timedelta(hours=policy.overdue_hours):
            return record, ACTION_RESEND
    return record, None


def auto_off_due(project: Project, now: datetime, grace_hours: int) -> bool:
    if not project.auto_off or project.billing_status == "blocked":
        return False
    due = project.next_payment_date
    if due is None or due > now:
        return False
    reference = project.auto_off_at or due
    return now - reference > timedelta(hours=grace_hours)


def _snapshot(record: PaymentReminder) -> dict:
    return {name: getattr(record, name) for name in _SNAPSHOT_FIELDS}


def _state(record: PaymentReminder) -> tuple:
    return tuple(getattr(record, name) for name in _STATE_FIELDS)


def _restore(record: PaymentReminder, snapshot: dict) -> None:
    for name, value in snapshot.items():
        setattr(record, name, value)


def _advance(record: PaymentReminder, action: str, now: datetime, policy: ReminderPolicy) -> None:
    record.notified_count = (record.notified_count or 0) + 1
    record.last_notified_at = now
    if action == ACTION_FOLLOW_UP:
        record.next_follow_up_at = now + timedelta(minutes=policy.follow_up_minutes)
    else:
        record.stage = "admin_notified"


async def _send(engine: "SweepEngine", route: DeliveryRoute, project: Project, record: PaymentReminder, action: str, now: datetime) -> None:
    if action == ACTION_FOLLOW_UP:
        text = admin_confirmation_text(project, record.method, record.due_date)
        keyboard = confirmation_keyboard(project.id)
    else:
        text = payment_reminder_text(project, record.status, record.due_date, now)
        keyboard = reminder_keyboard(project.id)
    await engine.gateway.send_message(route.chat_id, text, thread_id=route.thread_id, keyboard=keyboard)


async def _claim(engine: "SweepEngine", record: PaymentReminder, now: datetime) -> bool:
    async with session_scope(engine.sessions) as s:
        return await write_reminder(s, record, now)


async def _apply_auto_off(engine: "SweepEngine", project: Project, now: datetime, stats: ReminderSweepStats) -> None:
    async with session_scope(engine.sessions) as s:
        if not await update_project(s, project, now, billing_status="blocked"):
            stats.conflicts += 1
            log.info("auto_off_conflict project=%s", project.id)
            return
        settings = await get_autoreport_settings(s, project.id)
        if settings is not None and settings.enabled:
            await update_autoreport_settings(s, settings, now, enabled=False)
    stats.auto_off += 1
    log.warning("auto_off_applied project=%s due=%s", project.id, project.next_payment_date)

    try:
        admin, client = resolve_reminder_route(project)
    except NotFoundError as exc:
        log.warning('auto_off_notify_skipped project=%s reason="%s"', project.id, exc)
        return
    route = client or admin
    try:
        await engine.gateway.send_message(route.chat_id, auto_off_text(project), thread_id=route.thread_id)
    except UpstreamUnavailable as exc:
        stats.errors += 1
        log.error('auto_off_notify_failed project=%s error="%s"', project.id, exc)


async def run_reminder_sweep(engine: "SweepEngine", now: datetime) -> ReminderSweepStats:
    now = ensure_naive_utc(now)
    policy = ReminderPolicy.from_settings(engine.settings)
    stats = ReminderSweepStats()

    async with session_scope(engine.sessions) as s:
        projects = await list_projects(s)
        existing = {r.project_id: r for r in await list_reminders(s)}

    keep: dict[str, PaymentReminder] = {}
    dirty: list[PaymentReminder] = []

    for project in projects:
        stats.processed += 1
        record = existing.get(project.id)

        if auto_off_due(project, now, policy.auto_off_grace_hours):
            try:
                await _apply_auto_off(engine, project, now, stats)
            except SQLAlchemyError:
                stats.errors += 1
                log.exception("auto_off_failed project=%s", project.id)
            if record is not None:
                keep[project.id] = record
            continue

        if policy.disabled:
            continue
        if project.next_payment_date is None:
            continue
        if record is None and resolve_payment_status(project.next_payment_date, now, policy.days_before) == "pending":
            continue

        try:
            admin, client = resolve_reminder_route(project)
        except NotFoundError as exc:
            stats.skipped += 1
            log.warning('reminder_route_missing project=%s reason="%s"', project.id, exc)
            if record is not None:
                keep[project.id] = record
            continue

        before = _state(record) if record is not None else None
        planned, action = plan_reminder(record, project, now, policy)
        if planned is None:
            continue
        planned.admin_chat_id = admin.chat_id
        planned.client_chat_id = client.chat_id if client else None
        keep[project.id] = planned

        if action is None:
            if before != _state(planned):
                dirty.append(planned)
            continue

        previous = _snapshot(planned)
        _advance(planned, action, now, policy)
        try:
            claimed = await _claim(engine, planned, now)
        except IntegrityError:
            claimed = False
        except SQLAlchemyError:
            stats.errors += 1
            log.exception("reminder_claim_failed project=%s", project.id)
            claimed = None
        if not claimed:
            if claimed is False:
                stats.conflicts += 1
                log.info("reminder_claim_lost project=%s action=%s", project.id, action)
            # чужая запись остаётся как есть: не пишем и не удаляем
            if record is None:
                keep.pop(project.id, None)
            continue

        try:
            await _send(engine, admin, project, planned, action, now)
        except UpstreamUnavailable as exc:
            stats.errors += 1
            log.error('reminder_send_failed project=%s action=%s error="%s"', project.id, action, exc)
            _restore(planned, previous)
            if action == ACTION_INITIAL:
                planned.stage = "pending"
            dirty.append(planned)
            continue

        if action == ACTION_FOLLOW_UP:
            stats.follow_ups += 1
        else:
            stats.sent += 1
        log.info("reminder_sent project=%s action=%s status=%s", project.id, action, planned.status)

    removed = [r for pid, r in existing.items() if pid not in keep]
    stats.removed = len(removed)

    persist_error: SQLAlchemyError | None = None
    try:
        async with session_scope(engine.sessions) as s:
            conflicts = await save_reminders(s, dirty, removed, now)
        stats.conflicts += len(conflicts)
        for pid in conflicts:
            log.info("reminder_save_conflict project=%s", pid)
    except SQLAlchemyError as exc:
        log.exception("reminders_persist_failed dirty=%s removed=%s", len(dirty), len(removed))
        persist_error = exc

    log.info(
        "reminders_sweep processed=%s sent=%s follow_ups=%s auto_off=%s removed=%s skipped=%s conflicts=%s errors=%s",
        stats.processed, stats.sent, stats.follow_ups, stats.auto_off,
        stats.removed, stats.skipped, stats.conflicts, stats.errors,
    )
    if persist_error is not None:
        raise PersistenceError(f"failed to persist reminder sweep: {persist_error}") from persist_error
    return stats


class _StaleAction(Exception):
    pass


async def apply_reminder_action(
    sessions,
    project_id: str,
    action: str,
    now: datetime,
    follow_up_minutes: int = 60,
) -> str:
    """
    Кнопка под напоминанием: transfer / cash / paid / decline.
    Возвращает текст ответа для админа.
    """
    if action not in METHODS and action not in ("paid", "decline"):
        raise ValidationError(f"unknown reminder action: {action}")
    now = ensure_naive_utc(now)
    try:
        async with session_scope(sessions) as s:
            project = await get_project(s, project_id)
            if project is None:
                return OUTCOME_NO_PROJECT
            record = await get_reminder_by_project(s, project_id)

            if action == "paid":
                base = project.next_payment_date or now
                if not await update_project(
                    s, project, now,
                    next_payment_date=base + BILLING_PERIOD,
                    billing_status="active",
                ):
                    raise _StaleAction()
                if record is not None and not await delete_reminder(s, record):
                    raise _StaleAction()
                outcome = OUTCOME_PAID

            elif action == "decline":
                if record is None or record.stage in ("declined", "completed"):
                    raise _StaleAction()
                record.stage = "declined"
                record.next_follow_up_at = None
                if not await write_reminder(s, record, now):
                    raise _StaleAction()
                outcome = OUTCOME_DECLINED

            else:
                if record is None or record.stage not in ("admin_notified", "awaiting_admin_confirmation"):
                    raise _StaleAction()
                record.method = action
                record.stage = "awaiting_admin_confirmation"
                record.next_follow_up_at = now + timedelta(minutes=follow_up_minutes)
                if not await write_reminder(s, record, now):
                    raise _StaleAction()
                outcome = OUTCOME_METHOD
    except _StaleAction:
        log.info("reminder_action_stale project=%s action=%s", project_id, action)
        return OUTCOME_STALE

    log.info("reminder_action project=%s action=%s", project_id, action)
    return outcome
