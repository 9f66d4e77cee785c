"""Tests for rankings, period resets, leagues and snapshots."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from tradeleague.database.orm import Portfolio, PortfolioSnapshot
from tradeleague.repositories import portfolios_orm as portfolios_repo
from tradeleague.services.leagues import League, LeagueService, classify_league
from tradeleague.services.period_reset import PeriodResetService
from tradeleague.services.ranking import RankingEngine, RankingPeriod, period_return
from tradeleague.services.snapshots import SnapshotService


async def _portfolio(
    session_factory,
    user_id: str,
    username: str,
    total_assets: str,
    *,
    initial: str = "1000000",
    weekly: str | None = None,
    monthly: str | None = None,
) -> None:
    """Insert a portfolio with the given valuation directly."""
    total = Decimal(total_assets)
    capital = Decimal(initial)
    async with session_factory() as session, session.begin():
        session.add(
            Portfolio(
                user_id=user_id,
                username=username,
                initial_capital=capital,
                cash=total,
                total_assets=total,
                total_return=(total - capital) / capital * 100,
                realized_pl=Decimal("0"),
                weekly_start_assets=Decimal(weekly or initial),
                monthly_start_assets=Decimal(monthly or initial),
                league="ROOKIE",
                holdings=[],
            )
        )


async def _portfolios(session_factory) -> dict[str, Portfolio]:
    async with session_factory() as session:
        return {p.user_id: p for p in await portfolios_repo.list_portfolios(session)}


class TestPeriodReturn:
    """Per-period return selection."""

    def test_weekly_against_baseline(self):
        portfolio = Portfolio(
            total_assets=Decimal("1100000"),
            total_return=Decimal("10"),
            weekly_start_assets=Decimal("1000000"),
            monthly_start_assets=Decimal("1100000"),
        )

        assert period_return(portfolio, RankingPeriod.WEEKLY) == Decimal("10")
        assert period_return(portfolio, RankingPeriod.MONTHLY) == Decimal("0")
        assert period_return(portfolio, RankingPeriod.ALL_TIME) == Decimal("10")

    def test_zero_baseline_returns_zero(self):
        portfolio = Portfolio(
            total_assets=Decimal("5"),
            total_return=Decimal("0"),
            weekly_start_assets=Decimal("0"),
            monthly_start_assets=Decimal("0"),
        )

        assert period_return(portfolio, RankingPeriod.WEEKLY) == Decimal("0")


class TestRankingEngine:
    """Ranking computation and storage."""

    @pytest.mark.asyncio
    async def test_orders_by_return_descending(self, session_factory):
        await _portfolio(session_factory, "u1", "carol", "1050000")
        await _portfolio(session_factory, "u2", "alice", "1200000")
        await _portfolio(session_factory, "u3", "bob", "900000")
        engine = RankingEngine(session_factory)

        assert await engine.compute_ranking(RankingPeriod.ALL_TIME) == 3

        entries = await engine.get_rankings(RankingPeriod.ALL_TIME)
        assert [(e["rank"], e["user_id"]) for e in entries] == [(1, "u2"), (2, "u1"), (3, "u3")]
        assert entries[0]["period_return"] == Decimal("20")

    @pytest.mark.asyncio
    async def test_equal_returns_ordered_by_username(self, session_factory):
        await _portfolio(session_factory, "u1", "zed", "1100000")
        await _portfolio(session_factory, "u2", "amy", "1100000")
        await _portfolio(session_factory, "u3", "amy", "1100000")
        engine = RankingEngine(session_factory)

        await engine.compute_ranking(RankingPeriod.ALL_TIME)

        entries = await engine.get_rankings(RankingPeriod.ALL_TIME)
        assert [e["user_id"] for e in entries] == ["u2", "u3", "u1"]
        assert [e["rank"] for e in entries] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_recompute_replaces_previous_set(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "1100000")
        engine = RankingEngine(session_factory)
        await engine.compute_ranking(RankingPeriod.WEEKLY)

        await _portfolio(session_factory, "u2", "bob", "1300000")
        assert await engine.compute_ranking(RankingPeriod.WEEKLY) == 2

        entries = await engine.get_rankings(RankingPeriod.WEEKLY)
        assert [e["user_id"] for e in entries] == ["u2", "u1"]
        me = await engine.get_user_rank(RankingPeriod.WEEKLY, "u1")
        assert me["rank"] == 2

    @pytest.mark.asyncio
    async def test_compute_all_reports_each_period(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "1100000")
        engine = RankingEngine(session_factory)

        results = await engine.compute_all()

        assert set(results) == {"WEEKLY", "MONTHLY", "ALL_TIME"}
        assert all(r == {"success": True, "count": 1} for r in results.values())

    @pytest.mark.asyncio
    async def test_unranked_user(self, session_factory):
        engine = RankingEngine(session_factory)

        assert await engine.get_user_rank(RankingPeriod.MONTHLY, "nobody") is None


class TestPeriodReset:
    """Weekly and monthly baseline resets."""

    @pytest.mark.asyncio
    async def test_weekly_reset_zeroes_weekly_return(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "1200000")
        await _portfolio(session_factory, "u2", "bob", "800000")

        result = await PeriodResetService(session_factory).reset_weekly_period()

        assert result.success
        assert result.updated == 2
        portfolios = await _portfolios(session_factory)
        for portfolio in portfolios.values():
            assert portfolio.weekly_start_assets == portfolio.total_assets
            assert period_return(portfolio, RankingPeriod.WEEKLY) == 0
        # Monthly baseline is untouched
        assert portfolios["u1"].monthly_start_assets == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_monthly_reset_is_repeatable(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "1200000")
        service = PeriodResetService(session_factory)

        first = await service.reset_monthly_period()
        second = await service.reset_monthly_period()

        assert first.success and second.success
        portfolio = (await _portfolios(session_factory))["u1"]
        assert portfolio.monthly_start_assets == Decimal("1200000")
        assert portfolio.weekly_start_assets == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_weekly_ranking_after_reset(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "1200000")
        await PeriodResetService(session_factory).reset_weekly_period()
        engine = RankingEngine(session_factory)

        await engine.compute_ranking(RankingPeriod.WEEKLY)

        entry = await engine.get_user_rank(RankingPeriod.WEEKLY, "u1")
        assert entry["period_return"] == Decimal("0")


class TestLeagues:
    """League classification."""

    def test_threshold_is_inclusive(self):
        threshold = Decimal("100000000")
        assert classify_league(Decimal("99999999"), threshold) is League.ROOKIE
        assert classify_league(threshold, threshold) is League.HALL_OF_FAME

    @pytest.mark.asyncio
    async def test_classify_all_moves_portfolios(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "150000000", initial="10000000")
        await _portfolio(session_factory, "u2", "bob", "9000000", initial="10000000")

        moved = await LeagueService(session_factory, Decimal("100000000")).classify_all()

        assert moved == {"ROOKIE": 0, "HALL_OF_FAME": 1}
        portfolios = await _portfolios(session_factory)
        assert portfolios["u1"].league == "HALL_OF_FAME"
        assert portfolios["u2"].league == "ROOKIE"


class TestSnapshots:
    """Daily valuation snapshots."""

    @pytest.mark.asyncio
    async def test_one_snapshot_per_day(self, session_factory):
        await _portfolio(session_factory, "u1", "alice", "1100000")
        service = SnapshotService(session_factory)
        day = date(2026, 10, 16)

        assert await service.create_daily_snapshots(day) == 1
        assert await service.create_daily_snapshots(day) == 1

        async with session_factory() as session:
            rows = (await session.execute(select(PortfolioSnapshot))).scalars().all()
        assert len(rows) == 1
        assert rows[0].total_assets == Decimal("1100000")
