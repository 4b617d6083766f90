# adpulse/repo/projects.py
from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adpulse.models.project import AutoReportSettings, Lead, Project
from adpulse.repo.versioned import update_versioned


async def list_projects(session: AsyncSession) -> list[Project]:
    res = await session.execute(select(Project).order_by(Project.created_at.asc(), Project.id.asc()))
    return list(res.scalars().all())


async def get_project(session: AsyncSession, project_id: str) -> Project | None:
    res = await session.execute(select(Project).where(Project.id == project_id))
    return res.scalar_one_or_none()


async def get_projects(session: AsyncSession, project_ids: Iterable[str]) -> list[Project]:
    ids = [pid for pid in project_ids if pid]
    stmt = select(Project).order_by(Project.name.asc())
    if ids:
        stmt = stmt.where(Project.id.in_(ids))
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def update_project(session: AsyncSession, project: Project, now: datetime, **values) -> bool:
    values["updated_at"] = now
    return await update_versioned(session, Project, Project.id, project, values)


async def list_autoreport_settings(session: AsyncSession) -> dict[str, AutoReportSettings]:
    res = await session.execute(select(AutoReportSettings))
    return {row.project_id: row for row in res.scalars().all()}


async def get_autoreport_settings(session: AsyncSession, project_id: str) -> AutoReportSettings | None:
    res = await session.execute(select(AutoReportSettings).where(AutoReportSettings.project_id == project_id))
    return res.scalar_one_or_none()


async def update_autoreport_settings(
    session: AsyncSession,
    settings: AutoReportSettings,
    now: datetime,
    **values,
) -> bool:
    values["updated_at"] = now
    return await update_versioned(session, AutoReportSettings, AutoReportSettings.project_id, settings, values)


async def list_leads(session: AsyncSession, project_ids: Iterable[str]) -> list[Lead]:
    ids = [pid for pid in project_ids if pid]
    if not ids:
        return []
    res = await session.execute(
        select(Lead).where(Lead.project_id.in_(ids)).order_by(Lead.created_at.asc())
    )
    return list(res.scalars().all())
