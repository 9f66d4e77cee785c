"""
Schedule orchestrator.

Not a scheduler: an external clock calls the trigger endpoints, and each call
becomes one ``run(job_name)`` here. Every run:

1. takes a non-blocking lock named after the job (overlapping triggers are
   reported as skipped, not queued)
2. runs the registered job function against the services held here
3. reports a ``JobOutcome`` with counts and a duration

Jobs with once-per-window semantics additionally claim a ``job_runs`` row via
``run_once`` so duplicate deliveries within the window are no-ops.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from datetime import date, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.cache.distributed_lock import job_lock
from tradeleague.core.exceptions import ConfigurationError, InvalidInputError, NotFoundError
from tradeleague.core.logging import fields, get_logger, job_context
from tradeleague.core.market_calendar import MarketClock
from tradeleague.repositories import job_runs_orm as job_runs_repo
from tradeleague.services.leagues import LeagueService
from tradeleague.services.period_reset import PeriodResetService, ResetResult
from tradeleague.services.price_collector import PriceCollector
from tradeleague.services.ranking import RankingEngine
from tradeleague.services.snapshots import SnapshotService
from tradeleague.services.trading_ledger import TradingLedger

from . import definitions  # noqa: F401  (registers the jobs)
from .registry import JobOutcome, get_job, list_job_names


logger = get_logger("jobs.orchestrator")

LockFactory = Callable[[str], AbstractAsyncContextManager[bool]]


class ScheduleOrchestrator:
    """One-shot trigger entry points over the domain services."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: MarketClock,
        *,
        ledger: TradingLedger,
        ranking: RankingEngine,
        resets: PeriodResetService,
        snapshots: SnapshotService,
        leagues: LeagueService,
        collector: PriceCollector | None = None,
        lock_factory: LockFactory | None = None,
        lock_timeout: int = 600,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.ledger = ledger
        self.ranking = ranking
        self.resets = resets
        self.snapshots = snapshots
        self.leagues = leagues
        self.collector = collector
        self.lock_timeout = lock_timeout
        self._lock_factory = lock_factory or (lambda name: job_lock(name, timeout=lock_timeout))

    @staticmethod
    def job_names() -> list[str]:
        return list_job_names()

    def require_collector(self) -> PriceCollector:
        if self.collector is None:
            raise ConfigurationError(message="Quote provider is not configured")
        return self.collector

    async def run(self, job_name: str) -> JobOutcome:
        """Run a registered job by name under its overlap lock."""
        job = get_job(job_name)
        if job is None:
            raise NotFoundError(message=f"Unknown job: {job_name}")
        return await self._guarded(job_name, lambda: job(self))

    async def run_backfill(self, trading_date: date) -> JobOutcome:
        """Manual gap repair for one past trading day."""
        collector = self.require_collector()
        if trading_date >= self.clock.today():
            raise InvalidInputError(
                message=f"Backfill is limited to past trading days, got {trading_date}"
            )

        async def backfill() -> JobOutcome:
            updated = await collector.backfill_date(trading_date)
            return JobOutcome(
                success=True,
                data={"trading_date": trading_date.isoformat(), "updated": updated},
            )

        return await self._guarded("backfill", backfill)

    async def run_backfill_history(
        self, start: date, end: date | None = None, force: bool = False
    ) -> JobOutcome:
        """Fetch and store every past bar in ``start..end`` (default: up to yesterday).

        ``force`` overwrites candles that already exist.
        """
        collector = self.require_collector()
        today = self.clock.today()
        if start >= today:
            raise InvalidInputError(message=f"History backfill must start before {today}, got {start}")
        if end is not None and end < start:
            raise InvalidInputError(message=f"Empty backfill range {start}..{end}")

        async def backfill_history() -> JobOutcome:
            result = await collector.backfill_history(start, end, force=force)
            return JobOutcome(
                success=True,
                data={"start": start.isoformat(), "force": force, **result.to_dict()},
            )

        return await self._guarded("backfill-history", backfill_history)

    async def _guarded(self, name: str, body: Callable[[], Awaitable[JobOutcome]]) -> JobOutcome:
        started = time.monotonic()
        with job_context(name):
            outcome = await self._locked(name, body)
        outcome.data["duration_ms"] = int((time.monotonic() - started) * 1000)
        log = logger.info if outcome.success else logger.error
        log(
            f"Job {name} finished: success={outcome.success} {outcome.error or ''}".rstrip(),
            **fields(duration_ms=outcome.data["duration_ms"]),
        )
        return outcome

    async def _locked(self, name: str, body: Callable[[], Awaitable[JobOutcome]]) -> JobOutcome:
        async with self._lock_factory(name) as acquired:
            if not acquired:
                logger.warning(f"Job {name} skipped: previous run still in progress")
                return JobOutcome(success=True, data={"skipped": True, "reason": "already running"})

            try:
                outcome = await body()
            except ConfigurationError:
                raise
            except Exception as e:
                logger.exception(f"Job {name} failed")
                outcome = JobOutcome(success=False, error=str(e))
        return outcome

    async def run_once(
        self,
        job_name: str,
        run_key: str,
        body: Callable[[], Awaitable[JobOutcome]],
    ) -> JobOutcome:
        """Run ``body`` at most once successfully per ``(job_name, run_key)``."""
        stale_after = timedelta(seconds=self.lock_timeout)
        async with self.session_factory() as session:
            claimed = await job_runs_repo.claim_run(session, job_name, run_key, stale_after)
        if not claimed:
            logger.info(f"{job_name} already ran for {run_key}")
            return JobOutcome(success=True, data={"already_ran": True, "run_key": run_key})

        try:
            with job_context(job_name, run_key):
                outcome = await body()
        except Exception as e:
            await self._finish(job_name, run_key, False, str(e))
            raise

        await self._finish(job_name, run_key, outcome.success, outcome.error)
        return outcome

    async def _finish(self, job_name: str, run_key: str, success: bool, error: str | None) -> None:
        async with self.session_factory() as session:
            await job_runs_repo.finish_run(
                session, job_name, run_key, success, {"error": error} if error else None
            )

    async def run_reset(
        self,
        job_name: str,
        run_key: str,
        reset: Callable[[], Awaitable[ResetResult]],
    ) -> dict[str, Any]:
        """Run a period reset once per window and report it as a dict."""

        async def body() -> JobOutcome:
            result = await reset()
            return JobOutcome(success=result.success, data=result.to_dict(), error=result.error)

        outcome = await self.run_once(job_name, run_key, body)
        return {**outcome.data, "success": outcome.success}
