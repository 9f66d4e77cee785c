"""
Price collection pipeline.

Polls the quote provider for every tracked security and folds each quote
into the live snapshot and today's candle. Securities are fetched one after
another; the client's throttle spaces the requests, so a batch of N takes
roughly N intervals.

A failure for one security is logged and counted, never raised; the next
scheduled run retries it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tradeleague.core.exceptions import ExternalProviderError, InvalidInputError
from tradeleague.core.logging import get_logger
from tradeleague.core.market_calendar import MarketClock
from tradeleague.repositories import candles_orm as candles_repo
from tradeleague.repositories import securities_orm as securities_repo
from tradeleague.services.candle_store import CandleStore
from tradeleague.services.quote_client import QuoteClient


logger = get_logger("services.price_collector")

# Per-item failures that must not abort a batch
ITEM_ERRORS = (ExternalProviderError, InvalidInputError, SQLAlchemyError)


@dataclass
class CollectionResult:
    """Aggregate outcome of one batch."""

    updated: int = 0
    failed: int = 0
    skipped: int = 0
    errors: dict[str, str] = field(default_factory=dict)

    def record_failure(self, code: str, error: Exception) -> None:
        self.failed += 1
        self.errors[code] = str(error)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PriceCollector:
    """Drives QuoteClient and CandleStore for all tracked securities."""

    def __init__(
        self,
        quote_client: QuoteClient,
        session_factory: async_sessionmaker[AsyncSession],
        clock: MarketClock,
        candle_store: CandleStore | None = None,
    ):
        self.quote_client = quote_client
        self.session_factory = session_factory
        self.clock = clock
        self.candle_store = candle_store or CandleStore()

    async def _active_codes(self) -> list[str]:
        async with self.session_factory() as session:
            return await securities_repo.list_active_codes(session)

    async def run_intraday_update(self) -> CollectionResult:
        """Poll every tracked security once and fold the ticks into today."""
        result = CollectionResult()
        trading_date = self.clock.today()
        codes = await self._active_codes()

        for code in codes:
            try:
                quote = await self.quote_client.get_quote(code)
                async with self.session_factory() as session:
                    await securities_repo.upsert_live_quote(session, quote, trading_date)
                    await self.candle_store.upsert_tick(
                        session,
                        code,
                        trading_date,
                        quote.price,
                        quote.volume,
                        tick_at=quote.fetched_at,
                    )
                    await session.commit()
                result.updated += 1
            except ITEM_ERRORS as e:
                logger.warning(f"Intraday update failed for {code}: {e}")
                result.record_failure(code, e)

        logger.info(
            f"Intraday update for {trading_date}: {result.updated} updated, "
            f"{result.failed} failed of {len(codes)}"
        )
        return result

    async def run_daily_candle_creation(self) -> int:
        """Settle today's live ranges into candles and close the day.

        Returns the number of candles closed by this run; re-running after
        every candle is closed returns 0.
        """
        trading_date = self.clock.today()
        finalized = 0

        async with self.session_factory() as session:
            live_quotes = await securities_repo.list_live_quotes(session, trading_date)

        for live in live_quotes:
            try:
                async with self.session_factory() as session:
                    candle = await self.candle_store.settle_from_live(session, live)
                    if candle is None:
                        continue
                    if await self.candle_store.finalize(session, live.stock_code, trading_date):
                        finalized += 1
                    await session.commit()
            except SQLAlchemyError as e:
                logger.warning(f"Candle settlement failed for {live.stock_code}: {e}")

        logger.info(f"Daily candles for {trading_date}: {finalized} finalized")
        return finalized

    async def backfill_date(self, trading_date: date) -> int:
        """Fill missing candles for one past trading day.

        Only securities without a candle on that day are fetched, and the
        store never overwrites here. Returns the number of candles inserted.
        """
        if trading_date >= self.clock.today():
            raise InvalidInputError(
                message=f"Backfill is limited to past trading days, got {trading_date}"
            )

        async with self.session_factory() as session:
            codes = await securities_repo.list_active_codes(session)
            present = await candles_repo.codes_with_candle(session, trading_date)

        missing = [code for code in codes if code not in present]
        updated = 0
        for code in missing:
            try:
                bars = await self.quote_client.get_historical_series(
                    code, trading_date, trading_date
                )
                bar = next((b for b in bars if b.trading_date == trading_date), None)
                if bar is None:
                    logger.info(f"No provider bar for {code} on {trading_date}")
                    continue
                async with self.session_factory() as session:
                    if await self.candle_store.backfill(session, code, trading_date, bar):
                        updated += 1
                    await session.commit()
            except ITEM_ERRORS as e:
                logger.warning(f"Backfill failed for {code} on {trading_date}: {e}")

        logger.info(
            f"Backfill for {trading_date}: {updated} inserted, "
            f"{len(present)} already present, {len(missing) - updated} not filled"
        )
        return updated

    async def backfill_history(
        self,
        start: date,
        end: date | None = None,
        force: bool = False,
    ) -> CollectionResult:
        """Backfill every bar in ``start..end`` for all tracked securities.

        One provider call per security. ``end`` defaults to yesterday; today's
        candle is accumulated from ticks, never backfilled.
        """
        end = end or self.clock.today() - timedelta(days=1)
        if end >= self.clock.today():
            end = self.clock.today() - timedelta(days=1)
        if start > end:
            raise InvalidInputError(message=f"Empty backfill range {start}..{end}")

        result = CollectionResult()
        for code in await self._active_codes():
            try:
                bars = await self.quote_client.get_historical_series(code, start, end)
                written = 0
                async with self.session_factory() as session:
                    for bar in bars:
                        if not start <= bar.trading_date <= end:
                            continue
                        try:
                            if await self.candle_store.backfill(
                                session, code, bar.trading_date, bar, force=force
                            ):
                                written += 1
                        except InvalidInputError as e:
                            logger.warning(f"Skipping bad bar for {code}: {e}")
                    await session.commit()
                if written:
                    result.updated += 1
                else:
                    result.skipped += 1
            except ITEM_ERRORS as e:
                logger.warning(f"History backfill failed for {code}: {e}")
                result.record_failure(code, e)

        logger.info(
            f"History backfill {start}..{end}: {result.updated} updated, "
            f"{result.skipped} unchanged, {result.failed} failed"
        )
        return result
