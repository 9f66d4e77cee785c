"""
Period baseline resets.

A reset copies every portfolio's current total assets into the weekly or
monthly baseline with a single UPDATE statement, so the whole batch commits
or fails together. Re-running converges to the same state, which keeps a
failed run safe to trigger again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.core.logging import get_logger
from tradeleague.database.orm import Portfolio


logger = get_logger("services.period_reset")


@dataclass
class ResetResult:
    period: str
    success: bool
    updated: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "success": self.success,
            "updated": self.updated,
            **({"error": self.error} if self.error else {}),
        }


class PeriodResetService:
    """Rebases weekly and monthly ranking baselines."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _reset(self, period: str, column) -> ResetResult:
        try:
            async with self.session_factory() as session, session.begin():
                result = await session.execute(
                    update(Portfolio)
                    .values({column: Portfolio.total_assets})
                    .execution_options(synchronize_session=False)
                )
                updated = result.rowcount
        except SQLAlchemyError as e:
            logger.exception(f"{period} reset failed")
            return ResetResult(period=period, success=False, error=str(e))

        logger.info(f"{period} reset: {updated} baselines rebased")
        return ResetResult(period=period, success=True, updated=updated)

    async def reset_weekly_period(self) -> ResetResult:
        return await self._reset("WEEKLY", Portfolio.weekly_start_assets)

    async def reset_monthly_period(self) -> ResetResult:
        return await self._reset("MONTHLY", Portfolio.monthly_start_assets)
