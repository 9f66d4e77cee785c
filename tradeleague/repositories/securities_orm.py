"""Securities and live quote repository using SQLAlchemy ORM.

Functions take the caller's session; the caller owns the transaction.

Usage:
    from tradeleague.repositories import securities_orm as securities_repo

    codes = await securities_repo.list_active_codes(session)
    await securities_repo.upsert_live_quote(session, quote, trading_date)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeleague.database.orm import LiveQuote, Security
from tradeleague.services.quote_client import Quote


async def list_active_codes(session: AsyncSession) -> list[str]:
    """Codes of every tracked security, in code order."""
    result = await session.execute(
        select(Security.code).where(Security.is_active.is_(True)).order_by(Security.code)
    )
    return list(result.scalars().all())


async def get_security(session: AsyncSession, code: str) -> Security | None:
    return await session.get(Security, code)


async def upsert_security(
    session: AsyncSession,
    code: str,
    name: str,
    market: str = "KOSPI",
    is_active: bool = True,
) -> Security:
    """Create or update a tracked security's display fields."""
    security = await session.get(Security, code)
    if security is None:
        security = Security(code=code, name=name, market=market, is_active=is_active)
        session.add(security)
    else:
        security.name = name
        security.market = market
        security.is_active = is_active
    await session.flush()
    return security


async def get_live_quote(session: AsyncSession, code: str) -> LiveQuote | None:
    return await session.get(LiveQuote, code)


async def list_live_quotes(session: AsyncSession, trading_date: date) -> Sequence[LiveQuote]:
    """Live snapshots recorded for the given trading day."""
    result = await session.execute(
        select(LiveQuote)
        .where(LiveQuote.trading_date == trading_date)
        .order_by(LiveQuote.stock_code)
    )
    return result.scalars().all()


async def upsert_live_quote(
    session: AsyncSession, quote: Quote, trading_date: date
) -> LiveQuote:
    """Overwrite the live snapshot of one security with a fresh quote."""
    live = await session.get(LiveQuote, quote.code)
    if live is None:
        live = LiveQuote(stock_code=quote.code)
        session.add(live)

    live.trading_date = trading_date
    live.price = quote.price
    live.open = quote.open
    live.high = quote.high
    live.low = quote.low
    live.volume = quote.volume
    live.updated_at = quote.fetched_at
    await session.flush()
    return live


def live_quote_to_dict(live: LiveQuote) -> dict[str, Any]:
    return {
        "stock_code": live.stock_code,
        "trading_date": live.trading_date.isoformat(),
        "price": Decimal(live.price),
        "open": Decimal(live.open),
        "high": Decimal(live.high),
        "low": Decimal(live.low),
        "volume": live.volume,
        "updated_at": live.updated_at,
    }
