# adpulse/repo/versioned.py
# Оптимистичная запись: UPDATE ... WHERE id = :id AND version = :version.
# Ноль затронутых строк = кто-то успел раньше, запись не перетираем.
from __future__ import annotations

from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession


async def update_versioned(
    session: AsyncSession,
    model: Any,
    key_column: Any,
    record: Any,
    values: dict[str, Any],
) -> bool:
    """
    Пишет values в строку record, если её version не поменялась с момента чтения.
    При успехе переносит values и новую версию на объект в памяти.
    """
    current = record.version or 0
    stmt = (
        update(model)
        .where(key_column == getattr(record, key_column.key), model.version == current)
        .values(**values, version=current + 1)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        return False
    for name, value in values.items():
        setattr(record, name, value)
    record.version = current + 1
    return True


async def delete_versioned(session: AsyncSession, model: Any, key_column: Any, record: Any) -> bool:
    stmt = (
        delete(model)
        .where(key_column == getattr(record, key_column.key), model.version == (record.version or 0))
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1
