"""
Ranking engine.

Each run recomputes a period's full ranking from the portfolios and replaces
the stored set in one transaction; nothing is patched incrementally.

Period returns, all in percent:
- ALL_TIME: the portfolio's stored total return
- WEEKLY / MONTHLY: change of total assets against the period baseline,
  0 when the baseline is 0

Ordering is by period return descending, then username, then user id, so
equal returns always rank the same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.core.logging import get_logger
from tradeleague.database.orm import Portfolio, RankingEntry
from tradeleague.repositories import portfolios_orm as portfolios_repo
from tradeleague.repositories import rankings_orm as rankings_repo
from tradeleague.services.trading_ledger import percent_return


logger = get_logger("services.ranking")


class RankingPeriod(str, Enum):
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    ALL_TIME = "ALL_TIME"


def period_return(portfolio: Portfolio, period: RankingPeriod) -> Decimal:
    if period is RankingPeriod.ALL_TIME:
        return Decimal(portfolio.total_return)
    baseline = (
        portfolio.weekly_start_assets
        if period is RankingPeriod.WEEKLY
        else portfolio.monthly_start_assets
    )
    return percent_return(Decimal(portfolio.total_assets), Decimal(baseline))


@dataclass(frozen=True)
class _Ranked:
    user_id: str
    username: str
    period_return: Decimal
    total_assets: Decimal


def rank_portfolios(
    portfolios: list[Portfolio], period: RankingPeriod
) -> list[_Ranked]:
    rows = [
        _Ranked(
            user_id=p.user_id,
            username=p.username,
            period_return=period_return(p, period),
            total_assets=Decimal(p.total_assets),
        )
        for p in portfolios
    ]
    rows.sort(key=lambda r: (r.username, r.user_id))
    # Stable sort keeps the username/user id order among equal returns
    rows.sort(key=lambda r: r.period_return, reverse=True)
    return rows


class RankingEngine:
    """Computes and stores period rankings."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def compute_ranking(self, period: RankingPeriod) -> int:
        """Recompute and replace the ranking for one period; returns entries written."""
        period = RankingPeriod(period)
        computed_at = datetime.now(timezone.utc)

        async with self.session_factory() as session, session.begin():
            portfolios = list(await portfolios_repo.list_portfolios(session))
            ranked = rank_portfolios(portfolios, period)
            count = await rankings_repo.replace_period(
                session,
                period.value,
                (
                    RankingEntry(
                        period=period.value,
                        user_id=row.user_id,
                        username=row.username,
                        rank=position,
                        period_return=row.period_return,
                        total_assets=row.total_assets,
                        computed_at=computed_at,
                    )
                    for position, row in enumerate(ranked, start=1)
                ),
            )

        logger.info(f"{period.value} ranking updated: {count} entries")
        return count

    async def compute_all(self) -> dict[str, Any]:
        """Recompute every period. One failing period does not stop the others."""
        results: dict[str, Any] = {}
        for period in RankingPeriod:
            try:
                results[period.value] = {"success": True, "count": await self.compute_ranking(period)}
            except Exception as e:
                logger.exception(f"{period.value} ranking failed")
                results[period.value] = {"success": False, "error": str(e)}
        return results

    async def get_rankings(self, period: RankingPeriod, limit: int = 100) -> list[dict[str, Any]]:
        async with self.session_factory() as session:
            return await rankings_repo.list_period(session, RankingPeriod(period).value, limit)

    async def get_user_rank(self, period: RankingPeriod, user_id: str) -> dict[str, Any] | None:
        async with self.session_factory() as session:
            return await rankings_repo.get_user_entry(session, RankingPeriod(period).value, user_id)
