"""Reusable statement builders shared by the engines."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from eduplay.db.base import Base
from eduplay.db.models import Guild


async def insert_ignore(
    db: AsyncSession,
    model: type[Base],
    values: dict[str, Any] | Sequence[dict[str, Any]],
    conflict_columns: Sequence[str],
) -> int:
    """INSERT ... ON CONFLICT (conflict_columns) DO NOTHING.

    Returns the number of rows actually inserted.
    """
    if isinstance(values, dict):
        values = [values]
    if not values:
        return 0

    dialect = db.get_bind().dialect.name
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    inserted = 0
    for row in values:
        stmt = insert(model).values(**row).on_conflict_do_nothing(index_elements=list(conflict_columns))
        result = await db.execute(stmt)
        inserted += result.rowcount or 0
    return inserted


def active_guilds() -> Select[tuple[Guild]]:
    """Select guilds that have not been soft-deleted."""
    return select(Guild).where(Guild.is_active.is_(True))
