"""Portfolio repository - SQLAlchemy ORM async.

Functions take the caller's session; the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from tradeleague.database.orm import (
    CapitalHistory,
    Holding,
    Portfolio,
    PortfolioSnapshot,
    Transaction,
)


# ───────────────────────────────────────────────────────────────────────────────
# Portfolios
# ───────────────────────────────────────────────────────────────────────────────


def portfolio_to_dict(p: Portfolio) -> dict[str, Any]:
    """Convert Portfolio ORM object to dictionary (holdings included)."""
    return {
        "id": p.id,
        "user_id": p.user_id,
        "username": p.username,
        "initial_capital": Decimal(p.initial_capital),
        "cash": Decimal(p.cash),
        "total_assets": Decimal(p.total_assets),
        "total_return": Decimal(p.total_return),
        "realized_pl": Decimal(p.realized_pl),
        "weekly_start_assets": Decimal(p.weekly_start_assets),
        "monthly_start_assets": Decimal(p.monthly_start_assets),
        "league": p.league,
        "holdings": [holding_to_dict(h) for h in p.holdings],
    }


async def get_portfolio(
    session: AsyncSession, user_id: str, *, for_update: bool = False
) -> Portfolio | None:
    """Load a user's portfolio; ``for_update`` takes a row lock on it."""
    stmt = select(Portfolio).where(Portfolio.user_id == user_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_portfolios(session: AsyncSession) -> Sequence[Portfolio]:
    result = await session.execute(select(Portfolio).order_by(Portfolio.id))
    return result.scalars().all()


# ───────────────────────────────────────────────────────────────────────────────
# Holdings
# ───────────────────────────────────────────────────────────────────────────────


def holding_to_dict(h: Holding) -> dict[str, Any]:
    return {
        "stock_code": h.stock_code,
        "quantity": h.quantity,
        "avg_cost": Decimal(h.avg_cost),
    }


def find_holding(portfolio: Portfolio, code: str) -> Holding | None:
    return next((h for h in portfolio.holdings if h.stock_code == code), None)


# ───────────────────────────────────────────────────────────────────────────────
# Ledger rows
# ───────────────────────────────────────────────────────────────────────────────


def transaction_to_dict(t: Transaction) -> dict[str, Any]:
    return {
        "id": t.id,
        "type": t.type,
        "stock_code": t.stock_code,
        "quantity": t.quantity,
        "price": Decimal(t.price),
        "total_amount": Decimal(t.total_amount),
        "realized_pl": Decimal(t.realized_pl) if t.realized_pl is not None else None,
        "note": t.note,
        "created_at": t.created_at,
    }


async def list_transactions(
    session: AsyncSession, user_id: str, limit: int = 100
) -> list[dict[str, Any]]:
    """Most recent transactions for a user."""
    result = await session.execute(
        select(Transaction)
        .where(Transaction.user_id == user_id)
        .order_by(desc(Transaction.created_at), desc(Transaction.id))
        .limit(limit)
    )
    return [transaction_to_dict(t) for t in result.scalars().all()]


def add_capital_history(
    session: AsyncSession,
    user_id: str,
    amount: Decimal,
    new_total: Decimal,
    reason: str,
    created_at: datetime,
    description: str | None = None,
) -> CapitalHistory:
    entry = CapitalHistory(
        user_id=user_id,
        amount=amount,
        new_total=new_total,
        reason=reason,
        description=description,
        created_at=created_at,
    )
    session.add(entry)
    return entry


async def list_capital_history(session: AsyncSession, user_id: str) -> list[dict[str, Any]]:
    result = await session.execute(
        select(CapitalHistory)
        .where(CapitalHistory.user_id == user_id)
        .order_by(CapitalHistory.created_at, CapitalHistory.id)
    )
    return [
        {
            "amount": Decimal(c.amount),
            "new_total": Decimal(c.new_total),
            "reason": c.reason,
            "description": c.description,
            "created_at": c.created_at,
        }
        for c in result.scalars().all()
    ]


# ───────────────────────────────────────────────────────────────────────────────
# Snapshots
# ───────────────────────────────────────────────────────────────────────────────


async def upsert_snapshot(
    session: AsyncSession, portfolio: Portfolio, snapshot_date: date
) -> PortfolioSnapshot:
    """Record the portfolio's current valuation for a day, replacing any earlier one."""
    result = await session.execute(
        select(PortfolioSnapshot).where(
            and_(
                PortfolioSnapshot.portfolio_id == portfolio.id,
                PortfolioSnapshot.snapshot_date == snapshot_date,
            )
        )
    )
    snapshot = result.scalar_one_or_none()
    if snapshot is None:
        snapshot = PortfolioSnapshot(portfolio_id=portfolio.id, snapshot_date=snapshot_date)
        session.add(snapshot)

    snapshot.total_assets = portfolio.total_assets
    snapshot.total_return = portfolio.total_return
    snapshot.cash = portfolio.cash
    return snapshot


async def list_snapshots(
    session: AsyncSession, portfolio_id: int, limit: int = 30
) -> list[dict[str, Any]]:
    result = await session.execute(
        select(PortfolioSnapshot)
        .where(PortfolioSnapshot.portfolio_id == portfolio_id)
        .order_by(desc(PortfolioSnapshot.snapshot_date))
        .limit(limit)
    )
    return [
        {
            "snapshot_date": s.snapshot_date.isoformat(),
            "total_assets": Decimal(s.total_assets),
            "total_return": Decimal(s.total_return),
            "cash": Decimal(s.cash),
        }
        for s in result.scalars().all()
    ]
