"""Daily portfolio snapshots."""

from __future__ import annotations

from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.core.logging import get_logger
from tradeleague.repositories import portfolios_orm as portfolios_repo


logger = get_logger("services.snapshots")


class SnapshotService:
    """Records each portfolio's valuation once per trading day."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_daily_snapshots(self, snapshot_date: date) -> int:
        """Upsert a snapshot for every portfolio; re-running replaces the day's rows."""
        async with self.session_factory() as session, session.begin():
            portfolios = await portfolios_repo.list_portfolios(session)
            for portfolio in portfolios:
                await portfolios_repo.upsert_snapshot(session, portfolio, snapshot_date)

        logger.info(f"Snapshots for {snapshot_date}: {len(portfolios)} portfolios")
        return len(portfolios)
