from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from adpulse.models.reminder import LeadReminder, PaymentReminder
from adpulse.repo.versioned import delete_versioned, update_versioned

_PAYMENT_FIELDS = (
    "status",
    "stage",
    "method",
    "due_date",
    "notified_count",
    "last_notified_at",
    "next_follow_up_at",
    "admin_chat_id",
    "client_chat_id",
)

_LEAD_FIELDS = ("status", "notified_count", "last_notified_at")


async def _write_row(
    session: AsyncSession,
    model: Any,
    fields: tuple[str, ...],
    identity: tuple[str, ...],
    record: Any,
    now: datetime,
) -> bool:
    """
    Новая запись (version is None): INSERT, дубликат поднимет IntegrityError.
    Существующая: UPDATE с проверкой версии.
    """
    values = {name: getattr(record, name) for name in fields}
    values["updated_at"] = now
    if record.version is None:
        created_at = record.created_at or now
        keys = {name: getattr(record, name) for name in identity}
        await session.execute(
            insert(model).values(id=record.id, created_at=created_at, version=1, **keys, **values)
        )
        record.created_at = created_at
        record.updated_at = now
        record.version = 1
        return True
    return await update_versioned(session, model, model.id, record, values)


async def _delete_row(session: AsyncSession, model: Any, record: Any) -> bool:
    if record.version is None:
        return True
    return await delete_versioned(session, model, model.id, record)


async def list_reminders(session: AsyncSession) -> list[PaymentReminder]:
    res = await session.execute(select(PaymentReminder).order_by(PaymentReminder.created_at.asc()))
    return list(res.scalars().all())


async def get_reminder_by_project(session: AsyncSession, project_id: str) -> PaymentReminder | None:
    res = await session.execute(select(PaymentReminder).where(PaymentReminder.project_id == project_id))
    return res.scalar_one_or_none()


async def write_reminder(session: AsyncSession, record: PaymentReminder, now: datetime) -> bool:
    return await _write_row(session, PaymentReminder, _PAYMENT_FIELDS, ("project_id",), record, now)


async def delete_reminder(session: AsyncSession, record: PaymentReminder) -> bool:
    return await _delete_row(session, PaymentReminder, record)


async def save_reminders(
    session: AsyncSession,
    records: Iterable[PaymentReminder],
    removed: Iterable[PaymentReminder],
    now: datetime,
) -> list[str]:
    """
    Пишет рабочий набор: новые вставляет, изменённые обновляет по версии,
    выбывшие удаляет. Возвращает project_id с конфликтом версий.
    """
    conflicts: list[str] = []
    for record in records:
        if not await write_reminder(session, record, now):
            conflicts.append(record.project_id)
    for record in removed:
        if not await delete_reminder(session, record):
            conflicts.append(record.project_id)
    return conflicts


async def list_lead_reminders(session: AsyncSession) -> list[LeadReminder]:
    res = await session.execute(select(LeadReminder).order_by(LeadReminder.created_at.asc()))
    return list(res.scalars().all())


async def write_lead_reminder(session: AsyncSession, record: LeadReminder, now: datetime) -> bool:
    return await _write_row(session, LeadReminder, _LEAD_FIELDS, ("lead_id", "project_id"), record, now)


async def save_lead_reminders(
    session: AsyncSession,
    records: Iterable[LeadReminder],
    removed: Iterable[LeadReminder],
    now: datetime,
) -> list[str]:
    """То же для лидов; возвращает lead_id с конфликтом версий."""
    conflicts: list[str] = []
    for record in records:
        if not await write_lead_reminder(session, record, now):
            conflicts.append(record.lead_id)
    for record in removed:
        if not await _delete_row(session, LeadReminder, record):
            conflicts.append(record.lead_id)
    return conflicts
