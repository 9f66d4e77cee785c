"""Candle repository using SQLAlchemy ORM.

Read helpers for daily candles. Mutation rules (tick folding, backfill,
finalize) live in ``tradeleague.services.candle_store``.

Usage:
    from tradeleague.repositories import candles_orm as candles_repo

    candles = await candles_repo.get_candles(session, "005930", start, end)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeleague.database.orm import Candle


async def get_candle(session: AsyncSession, code: str, trading_date: date) -> Candle | None:
    result = await session.execute(
        select(Candle).where(
            and_(Candle.stock_code == code, Candle.trading_date == trading_date)
        )
    )
    return result.scalar_one_or_none()


async def get_candles(
    session: AsyncSession,
    code: str,
    start_date: date,
    end_date: date,
) -> Sequence[Candle]:
    """Candles for a security within a date range, oldest first.

    Args:
        code: Security code
        start_date: First trading day (inclusive)
        end_date: Last trading day (inclusive)
    """
    result = await session.execute(
        select(Candle)
        .where(
            and_(
                Candle.stock_code == code,
                Candle.trading_date >= start_date,
                Candle.trading_date <= end_date,
            )
        )
        .order_by(Candle.trading_date.asc())
    )
    return result.scalars().all()


async def get_latest_close(session: AsyncSession, code: str) -> Decimal | None:
    """Close of the most recent candle for a security."""
    result = await session.execute(
        select(Candle.close)
        .where(Candle.stock_code == code)
        .order_by(Candle.trading_date.desc())
        .limit(1)
    )
    close = result.scalar_one_or_none()
    return Decimal(close) if close is not None else None


async def codes_with_candle(session: AsyncSession, trading_date: date) -> set[str]:
    """Security codes that already have a candle on the given day."""
    result = await session.execute(
        select(Candle.stock_code).where(Candle.trading_date == trading_date)
    )
    return set(result.scalars().all())


def candle_to_dict(candle: Candle) -> dict[str, Any]:
    return {
        "stock_code": candle.stock_code,
        "trading_date": candle.trading_date.isoformat(),
        "open": Decimal(candle.open),
        "high": Decimal(candle.high),
        "low": Decimal(candle.low),
        "close": Decimal(candle.close),
        "volume": candle.volume,
        "is_final": candle.is_final,
    }
