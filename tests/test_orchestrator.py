"""Tests for scheduled job orchestration."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from tradeleague.core.exceptions import ConfigurationError, InvalidInputError, NotFoundError
from tradeleague.repositories import candles_orm as candles_repo
from tradeleague.repositories import job_runs_orm as job_runs_repo
from tradeleague.repositories import portfolios_orm as portfolios_repo


# Monday 2026-11-02, 00:00 in Seoul
MONDAY_MIDNIGHT = datetime(2026, 11, 1, 15, 0, tzinfo=timezone.utc)
# Sunday 2026-11-01, 00:00 in Seoul
FIRST_OF_MONTH = datetime(2026, 10, 31, 15, 0, tzinfo=timezone.utc)
# Friday 2026-10-16, 16:00 in Seoul
AFTER_CLOSE = datetime(2026, 10, 16, 7, 0, tzinfo=timezone.utc)


async def _trade(services, market, user_id="user-1", price=70000, quantity=10) -> None:
    await services.ledger.open_account(user_id, user_id, Decimal("1000000"))
    await market.price("005930", price)
    result = await services.ledger.execute_buy(user_id, "005930", quantity)
    assert result.success


class TestRegistry:
    """Job lookup."""

    def test_all_jobs_registered(self, services):
        assert set(services.orchestrator.job_names()) == {
            "intraday-update",
            "daily-candle",
            "portfolio-snapshot",
            "ranking-update",
            "midnight",
        }

    @pytest.mark.asyncio
    async def test_unknown_job_raises_not_found(self, services):
        with pytest.raises(NotFoundError):
            await services.orchestrator.run("no-such-job")


class TestPriceJobs:
    """Jobs that need the quote provider."""

    @pytest.mark.asyncio
    async def test_unconfigured_provider_raises(self, services):
        assert services.collector is None

        with pytest.raises(ConfigurationError):
            await services.orchestrator.run("intraday-update")

    @pytest.mark.asyncio
    async def test_intraday_noop_when_market_closed(self, build_services, make_quote_client, provider, now):
        services = build_services(make_quote_client())
        now.at = AFTER_CLOSE

        outcome = await services.orchestrator.run("intraday-update")

        assert outcome.success
        assert outcome.data["market_open"] is False
        assert provider.data_requests == []

    @pytest.mark.asyncio
    async def test_intraday_reports_counts(self, build_services, make_quote_client, provider, market):
        services = build_services(make_quote_client())
        await market.list("005930", "000660")
        provider.set_quote("005930", 70000)
        provider.failing.add("000660")

        outcome = await services.orchestrator.run("intraday-update")

        assert outcome.success
        assert outcome.data["updated"] == 1
        assert outcome.data["failed"] == 1
        assert "duration_ms" in outcome.data

    @pytest.mark.asyncio
    async def test_daily_candle_job(self, build_services, make_quote_client, provider, market):
        services = build_services(make_quote_client())
        await market.list("005930")
        provider.set_quote("005930", 70000)
        await services.orchestrator.run("intraday-update")

        outcome = await services.orchestrator.run("daily-candle")

        assert outcome.data["finalized"] == 1
        assert outcome.data["trading_date"] == "2026-10-16"

    @pytest.mark.asyncio
    async def test_backfill_rejects_today(self, build_services, make_quote_client):
        services = build_services(make_quote_client())

        with pytest.raises(InvalidInputError):
            await services.orchestrator.run_backfill(date(2026, 10, 16))


    @pytest.mark.asyncio
    async def test_backfill_history_over_range(
        self, build_services, make_quote_client, provider, market, session_factory
    ):
        services = build_services(make_quote_client())
        await market.list("005930")
        provider.add_bar("005930", date(2026, 10, 14), 69000, 71000, 68000, 70000)
        provider.add_bar("005930", date(2026, 10, 15), 70000, 72000, 69500, 71500)

        outcome = await services.orchestrator.run_backfill_history(date(2026, 10, 14))

        assert outcome.success
        assert (outcome.data["updated"], outcome.data["failed"]) == (1, 0)
        assert outcome.data["force"] is False
        async with session_factory() as session:
            candles = await candles_repo.get_candles(
                session, "005930", date(2026, 10, 14), date(2026, 10, 15)
            )
        assert [c.close for c in candles] == [Decimal("70000"), Decimal("71500")]

    @pytest.mark.asyncio
    async def test_backfill_history_rejects_future_start(self, build_services, make_quote_client):
        services = build_services(make_quote_client())

        with pytest.raises(InvalidInputError):
            await services.orchestrator.run_backfill_history(date(2026, 10, 16))
        with pytest.raises(InvalidInputError):
            await services.orchestrator.run_backfill_history(date(2026, 10, 10), date(2026, 10, 9))


class TestLocking:
    """Overlapping triggers."""

    @pytest.mark.asyncio
    async def test_overlapping_run_is_skipped(self, services, locks):
        locks.held.add("ranking-update")

        outcome = await services.orchestrator.run("ranking-update")

        assert outcome.success
        assert outcome.data["skipped"] is True

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, services, locks):
        await services.orchestrator.run("ranking-update")
        await services.orchestrator.run("ranking-update")

        assert locks.acquired == ["ranking-update", "ranking-update"]
        assert locks.held == set()


class TestEndOfDayJobs:
    """Snapshot and ranking jobs."""

    @pytest.mark.asyncio
    async def test_snapshot_then_ranking(self, services, market, session_factory):
        await _trade(services, market)
        await market.price("005930", 77000)

        snapshot = await services.orchestrator.run("portfolio-snapshot")
        ranking = await services.orchestrator.run("ranking-update")

        assert snapshot.data["revalued"] == 1
        assert snapshot.data["snapshots"] == 1
        assert ranking.success
        assert ranking.data["results"]["ALL_TIME"] == {"success": True, "count": 1}
        entry = await services.ranking.get_user_rank("ALL_TIME", "user-1")
        assert entry["period_return"] == Decimal("7")
        account = await services.ledger.get_account("user-1")
        assert account["snapshots"][0]["snapshot_date"] == "2026-10-16"
        assert account["snapshots"][0]["total_assets"] == Decimal("1070000")


class TestMidnight:
    """League classification and period resets."""

    @pytest.mark.asyncio
    async def test_monday_resets_weekly_baseline(self, services, market, session_factory, now):
        await _trade(services, market)
        await market.price("005930", 77000)
        await services.ledger.revalue_all()
        now.at = MONDAY_MIDNIGHT

        outcome = await services.orchestrator.run("midnight")

        assert outcome.success
        assert outcome.data["weekly_reset"]["updated"] == 1
        assert "monthly_reset" not in outcome.data
        async with session_factory() as session:
            portfolio = await portfolios_repo.get_portfolio(session, "user-1")
        assert portfolio.weekly_start_assets == Decimal("1070000")
        assert portfolio.monthly_start_assets == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_first_of_month_resets_monthly_only(self, services, market, session_factory, now):
        await _trade(services, market)
        now.at = FIRST_OF_MONTH

        outcome = await services.orchestrator.run("midnight")

        assert outcome.data["monthly_reset"]["success"] is True
        assert "weekly_reset" not in outcome.data

    @pytest.mark.asyncio
    async def test_second_trigger_same_day_is_noop(self, services, market, session_factory, now):
        await _trade(services, market)
        now.at = MONDAY_MIDNIGHT
        await services.orchestrator.run("midnight")

        # Price moves after the reset; a duplicate trigger must not rebase again
        await market.price("005930", 90000)
        await services.ledger.revalue_all()
        outcome = await services.orchestrator.run("midnight")

        assert outcome.data["already_ran"] is True
        async with session_factory() as session:
            portfolio = await portfolios_repo.get_portfolio(session, "user-1")
            run = await job_runs_repo.get_run(session, "weekly-reset", "2026-W45")
        assert portfolio.weekly_start_assets == Decimal("1000000")
        assert run.status == job_runs_repo.STATUS_SUCCESS

    @pytest.mark.asyncio
    async def test_next_day_runs_again_without_reset(self, services, now):
        now.at = MONDAY_MIDNIGHT
        await services.orchestrator.run("midnight")
        now.at = MONDAY_MIDNIGHT + timedelta(days=1)

        outcome = await services.orchestrator.run("midnight")

        assert outcome.success
        assert outcome.data["date"] == "2026-11-03"
        assert "weekly_reset" not in outcome.data


class TestRunClaims:
    """Once-per-window claims."""

    @pytest.mark.asyncio
    async def test_failed_window_can_be_reclaimed(self, session_factory):
        async with session_factory() as session:
            assert await job_runs_repo.claim_run(session, "monthly-reset", "2026-11")
            await job_runs_repo.finish_run(session, "monthly-reset", "2026-11", False, {"error": "boom"})

        async with session_factory() as session:
            assert await job_runs_repo.claim_run(session, "monthly-reset", "2026-11")

    @pytest.mark.asyncio
    async def test_running_claim_blocks_until_stale(self, session_factory):
        async with session_factory() as session:
            assert await job_runs_repo.claim_run(session, "midnight", "2026-11-02")

        async with session_factory() as session:
            assert not await job_runs_repo.claim_run(
                session, "midnight", "2026-11-02", timedelta(minutes=10)
            )
            run = await job_runs_repo.get_run(session, "midnight", "2026-11-02")
            run.started_at = datetime.now(timezone.utc) - timedelta(hours=1)
            await session.commit()

        async with session_factory() as session:
            assert await job_runs_repo.claim_run(
                session, "midnight", "2026-11-02", timedelta(minutes=10)
            )

    @pytest.mark.asyncio
    async def test_concurrent_reclaims_have_one_winner(self, session_factory):
        async with session_factory() as session:
            assert await job_runs_repo.claim_run(session, "weekly-reset", "2026-W45")
            await job_runs_repo.finish_run(session, "weekly-reset", "2026-W45", False, {"error": "boom"})

        async def claim() -> bool:
            async with session_factory() as session:
                return await job_runs_repo.claim_run(session, "weekly-reset", "2026-W45")

        results = await asyncio.gather(claim(), claim())

        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_succeeded_window_is_not_reclaimed(self, session_factory):
        async with session_factory() as session:
            assert await job_runs_repo.claim_run(session, "monthly-reset", "2026-11")
            await job_runs_repo.finish_run(session, "monthly-reset", "2026-11", True)

        async with session_factory() as session:
            assert not await job_runs_repo.claim_run(
                session, "monthly-reset", "2026-11", timedelta(seconds=0)
            )
