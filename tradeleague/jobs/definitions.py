"""Scheduled job definitions.

Each job is invoked by an external clock through the cron router; the
expected windows are noted per job. Jobs receive the orchestrator, which
holds the services and runs them under the overlap lock.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from tradeleague.core.logging import get_logger
from tradeleague.core.market_calendar import (
    is_first_of_month,
    is_monday,
    iso_week_key,
    month_key,
)

from .registry import JobOutcome, register_job


if TYPE_CHECKING:
    from .orchestrator import ScheduleOrchestrator

logger = get_logger("jobs.definitions")


@register_job("intraday-update")
async def intraday_update_job(orchestrator: ScheduleOrchestrator) -> JobOutcome:
    """
    Poll live quotes and fold them into today's candles.

    Schedule: every 5 minutes, 09:00-15:30 exchange time, weekdays.
    Outside the session this is a no-op reporting the market as closed.
    """
    collector = orchestrator.require_collector()
    if not orchestrator.clock.is_market_open():
        return JobOutcome(success=True, data={"market_open": False, "message": "Market is closed"})

    result = await collector.run_intraday_update()
    return JobOutcome(success=True, data={"market_open": True, **result.to_dict()})


@register_job("daily-candle")
async def daily_candle_job(orchestrator: ScheduleOrchestrator) -> JobOutcome:
    """
    Settle the day's live ranges into candles and close them.

    Schedule: once, shortly after market close (15:35).
    """
    collector = orchestrator.require_collector()
    finalized = await collector.run_daily_candle_creation()
    return JobOutcome(
        success=True,
        data={"trading_date": orchestrator.clock.today().isoformat(), "finalized": finalized},
    )


@register_job("portfolio-snapshot")
async def portfolio_snapshot_job(orchestrator: ScheduleOrchestrator) -> JobOutcome:
    """
    Revalue every portfolio at closing prices and record the day's snapshot.

    Schedule: once, after the daily candle job (15:40).
    """
    today = orchestrator.clock.today()
    revalued = await orchestrator.ledger.revalue_all()
    snapshots = await orchestrator.snapshots.create_daily_snapshots(today)
    return JobOutcome(
        success=True,
        data={"snapshot_date": today.isoformat(), "revalued": revalued, "snapshots": snapshots},
    )


@register_job("ranking-update")
async def ranking_update_job(orchestrator: ScheduleOrchestrator) -> JobOutcome:
    """
    Recompute weekly, monthly and all-time rankings.

    Schedule: once, after the snapshot job (16:10).
    """
    results = await orchestrator.ranking.compute_all()
    failed = [period for period, result in results.items() if not result["success"]]
    return JobOutcome(
        success=not failed,
        data={"results": results},
        error=f"Ranking failed for {', '.join(failed)}" if failed else None,
    )


@register_job("midnight")
async def midnight_job(orchestrator: ScheduleOrchestrator) -> JobOutcome:
    """
    League reclassification plus the weekly and monthly baseline resets.

    Schedule: once daily at 00:00 exchange time. Resets run on Mondays and
    on the first of the month. The whole job, and each reset, runs at most
    once per window; a failed window can be re-triggered.
    """
    today = orchestrator.clock.today()

    async def tasks() -> JobOutcome:
        data: dict = {"date": today.isoformat()}
        errors: list[str] = []

        try:
            data["leagues"] = await orchestrator.leagues.classify_all()
        except Exception as e:
            logger.exception("League classification failed")
            errors.append(f"leagues: {e}")

        if is_monday(today):
            data["weekly_reset"] = await orchestrator.run_reset(
                "weekly-reset", iso_week_key(today), orchestrator.resets.reset_weekly_period
            )
            if not data["weekly_reset"].get("success", True):
                errors.append(f"weekly reset: {data['weekly_reset'].get('error')}")

        if is_first_of_month(today):
            data["monthly_reset"] = await orchestrator.run_reset(
                "monthly-reset", month_key(today), orchestrator.resets.reset_monthly_period
            )
            if not data["monthly_reset"].get("success", True):
                errors.append(f"monthly reset: {data['monthly_reset'].get('error')}")

        return JobOutcome(
            success=not errors,
            data=data,
            error="; ".join(errors) if errors else None,
        )

    return await orchestrator.run_once("midnight", today.isoformat(), tasks)
