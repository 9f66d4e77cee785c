"""Service wiring.

Every service is constructed once here and receives its collaborators
explicitly; nothing reaches for a module-level singleton at call time.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.cache.cache import Cache
from tradeleague.core.config import Settings, settings
from tradeleague.core.exceptions import ConfigurationError
from tradeleague.core.logging import get_logger
from tradeleague.core.market_calendar import MarketClock
from tradeleague.jobs.orchestrator import LockFactory, ScheduleOrchestrator
from tradeleague.services.candle_store import CandleStore
from tradeleague.services.leagues import LeagueService
from tradeleague.services.period_reset import PeriodResetService
from tradeleague.services.price_collector import PriceCollector
from tradeleague.services.quote_client import QuoteClient
from tradeleague.services.ranking import RankingEngine
from tradeleague.services.snapshots import SnapshotService
from tradeleague.services.trading_ledger import TradingLedger


logger = get_logger("services.container")


@dataclass
class ServiceContainer:
    config: Settings
    session_factory: async_sessionmaker[AsyncSession]
    clock: MarketClock
    ledger: TradingLedger
    ranking: RankingEngine
    resets: PeriodResetService
    snapshots: SnapshotService
    leagues: LeagueService
    orchestrator: ScheduleOrchestrator
    quote_client: QuoteClient | None = None
    collector: PriceCollector | None = None
    chart_cache: Cache | None = None

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        config: Settings | None = None,
        *,
        clock: MarketClock | None = None,
        quote_client: QuoteClient | None = None,
        lock_factory: LockFactory | None = None,
        chart_cache: Cache | None = None,
    ) -> ServiceContainer:
        config = config or settings
        clock = clock or MarketClock.from_settings(config)

        if quote_client is None:
            try:
                quote_client = QuoteClient.from_settings(config)
            except ConfigurationError as e:
                # Trading and rankings still work; price jobs report the error
                logger.error(f"Price collection disabled: {e.message}")

        collector = (
            PriceCollector(quote_client, session_factory, clock, CandleStore())
            if quote_client is not None
            else None
        )
        ledger = TradingLedger(
            session_factory,
            clock,
            initial_capital=config.initial_capital,
            league_threshold=config.league_threshold,
        )
        ranking = RankingEngine(session_factory)
        resets = PeriodResetService(session_factory)
        snapshots = SnapshotService(session_factory)
        leagues = LeagueService(session_factory, config.league_threshold)
        orchestrator = ScheduleOrchestrator(
            session_factory,
            clock,
            ledger=ledger,
            ranking=ranking,
            resets=resets,
            snapshots=snapshots,
            leagues=leagues,
            collector=collector,
            lock_factory=lock_factory,
            lock_timeout=config.job_lock_timeout,
        )

        return cls(
            config=config,
            session_factory=session_factory,
            clock=clock,
            ledger=ledger,
            ranking=ranking,
            resets=resets,
            snapshots=snapshots,
            leagues=leagues,
            orchestrator=orchestrator,
            quote_client=quote_client,
            collector=collector,
            chart_cache=chart_cache,
        )

    async def aclose(self) -> None:
        if self.quote_client is not None:
            await self.quote_client.aclose()
