# adpulse/repo/schedules.py
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from adpulse.models.schedule import ReportDelivery, ReportSchedule
from adpulse.repo.versioned import update_versioned

MAX_REPORT_DELIVERIES = 200

# поля, которыми владеет раннер
_RUNNER_FIELDS = ("last_run_at", "last_status", "last_error", "next_run_at")


async def list_schedules(session: AsyncSession) -> list[ReportSchedule]:
    res = await session.execute(select(ReportSchedule).order_by(ReportSchedule.created_at.asc(), ReportSchedule.id.asc()))
    return list(res.scalars().all())


async def claim_schedule(
    session: AsyncSession,
    schedule: ReportSchedule,
    next_run_at: datetime,
    now: datetime,
) -> bool:
    """
    Забирает расписание на исполнение: сдвигает next_run_at и версию.
    False: параллельный проход успел первым.
    """
    return await update_versioned(
        session,
        ReportSchedule,
        ReportSchedule.id,
        schedule,
        {"next_run_at": next_run_at, "updated_at": now},
    )


async def save_schedules(
    session: AsyncSession,
    schedules: Iterable[ReportSchedule],
    now: datetime,
) -> list[str]:
    """
    Пишет поля раннера пачкой. Возвращает id расписаний с конфликтом версий.
    """
    conflicts: list[str] = []
    for schedule in schedules:
        values = {name: getattr(schedule, name) for name in _RUNNER_FIELDS}
        values["updated_at"] = now
        ok = await update_versioned(session, ReportSchedule, ReportSchedule.id, schedule, values)
        if not ok:
            conflicts.append(schedule.id)
    return conflicts


async def append_deliveries(
    session: AsyncSession,
    deliveries: Sequence[ReportDelivery],
    keep: int = MAX_REPORT_DELIVERIES,
) -> None:
    """
    Дописывает журнал и обрезает хвост: храним только последние `keep` записей.
    """
    if not deliveries:
        return
    session.add_all(list(deliveries))
    await session.flush()

    stale = await session.execute(
        select(ReportDelivery.id)
        .order_by(ReportDelivery.delivered_at.desc(), ReportDelivery.id.desc())
        .offset(keep)
    )
    stale_ids = [row[0] for row in stale.all()]
    if stale_ids:
        await session.execute(delete(ReportDelivery).where(ReportDelivery.id.in_(stale_ids)))


async def list_deliveries(
    session: AsyncSession,
    schedule_id: str | None = None,
    limit: int = 50,
) -> list[ReportDelivery]:
    stmt = select(ReportDelivery).order_by(ReportDelivery.delivered_at.desc(), ReportDelivery.id.desc()).limit(limit)
    if schedule_id:
        stmt = stmt.where(ReportDelivery.schedule_id == schedule_id)
    res = await session.execute(stmt)
    return list(res.scalars().all())
