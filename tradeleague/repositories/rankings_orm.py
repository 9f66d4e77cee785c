"""Ranking repository - SQLAlchemy ORM async."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeleague.database.orm import RankingEntry


def entry_to_dict(e: RankingEntry) -> dict[str, Any]:
    return {
        "period": e.period,
        "rank": e.rank,
        "user_id": e.user_id,
        "username": e.username,
        "period_return": Decimal(e.period_return),
        "total_assets": Decimal(e.total_assets),
        "computed_at": e.computed_at,
    }


async def replace_period(
    session: AsyncSession, period: str, entries: Iterable[RankingEntry]
) -> int:
    """Delete the period's previous set and insert the new one."""
    await session.execute(delete(RankingEntry).where(RankingEntry.period == period))
    # Old ranks must be gone before new rows reuse them
    await session.flush()
    count = 0
    for entry in entries:
        session.add(entry)
        count += 1
    await session.flush()
    return count


async def list_period(
    session: AsyncSession, period: str, limit: int = 100, offset: int = 0
) -> list[dict[str, Any]]:
    result = await session.execute(
        select(RankingEntry)
        .where(RankingEntry.period == period)
        .order_by(RankingEntry.rank)
        .offset(offset)
        .limit(limit)
    )
    return [entry_to_dict(e) for e in result.scalars().all()]


async def get_user_entry(
    session: AsyncSession, period: str, user_id: str
) -> dict[str, Any] | None:
    result = await session.execute(
        select(RankingEntry).where(
            and_(RankingEntry.period == period, RankingEntry.user_id == user_id)
        )
    )
    entry = result.scalar_one_or_none()
    return entry_to_dict(entry) if entry else None
