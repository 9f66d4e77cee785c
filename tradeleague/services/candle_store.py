"""
Daily candle store.

Owns the rules for mutating ``Candle`` rows:

- ``upsert_tick`` folds one polled tick into the day's accumulating candle
- ``settle_from_live`` writes the provider's full day range at close
- ``finalize`` marks a day closed; closed candles ignore further ticks
- ``backfill`` inserts a historical bar, overwriting only when forced

Every method works inside the caller's session and only flushes; committing
is up to the caller so a tick and its live snapshot land together.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from tradeleague.core.exceptions import InvalidInputError
from tradeleague.core.logging import get_logger
from tradeleague.database.orm import Candle, LiveQuote
from tradeleague.repositories import candles_orm as candles_repo
from tradeleague.services.quote_client import DailyBar


logger = get_logger("services.candle_store")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def check_ohlc(open_: Decimal, high: Decimal, low: Decimal, close: Decimal) -> None:
    """Raise ``InvalidInputError`` unless low <= open, close <= high."""
    if not (low <= open_ <= high and low <= close <= high):
        raise InvalidInputError(
            message="Inconsistent OHLC values",
            details={"open": str(open_), "high": str(high), "low": str(low), "close": str(close)},
        )


class CandleStore:
    """Mutation rules for day-bucketed OHLCV candles."""

    async def upsert_tick(
        self,
        session: AsyncSession,
        code: str,
        trading_date: date,
        price: Decimal,
        cumulative_volume: int,
        tick_at: datetime | None = None,
    ) -> Candle:
        """Fold one tick into the candle for ``(code, trading_date)``.

        ``cumulative_volume`` is the provider's running total for the day. A
        tick carrying a smaller total than the candle already holds is late:
        it still widens the high/low range but cannot move close or volume.
        Equal totals are ordered by ``tick_at``, the most recent tick winning.
        Replaying a tick leaves the candle unchanged.
        """
        if price <= 0:
            raise InvalidInputError(message=f"Tick price must be positive for {code}")
        if cumulative_volume < 0:
            raise InvalidInputError(message=f"Tick volume must not be negative for {code}")

        tick_at = _as_utc(tick_at) or datetime.now(timezone.utc)
        candle = await candles_repo.get_candle(session, code, trading_date)

        if candle is None:
            candle = Candle(
                stock_code=code,
                trading_date=trading_date,
                open=price,
                high=price,
                low=price,
                close=price,
                volume=cumulative_volume,
                last_tick_at=tick_at,
                is_final=False,
            )
            session.add(candle)
            await session.flush()
            return candle

        if candle.is_final:
            logger.debug(f"Ignoring tick for closed candle {code} {trading_date}")
            return candle

        candle.high = max(Decimal(candle.high), price)
        candle.low = min(Decimal(candle.low), price)

        if self._is_newer(candle, cumulative_volume, tick_at):
            candle.close = price
            candle.volume = cumulative_volume
            candle.last_tick_at = tick_at

        await session.flush()
        return candle

    @staticmethod
    def _is_newer(candle: Candle, cumulative_volume: int, tick_at: datetime) -> bool:
        if cumulative_volume != candle.volume:
            return cumulative_volume > candle.volume
        last_tick_at = _as_utc(candle.last_tick_at)
        return last_tick_at is None or tick_at >= last_tick_at

    async def settle_from_live(
        self, session: AsyncSession, live: LiveQuote
    ) -> Candle | None:
        """Write the live snapshot's full day range into its candle.

        The provider's day high/low can be wider than the ticks we happened
        to poll, so they are merged in before the day is closed. An existing
        candle keeps the open of its first tick, and the snapshot moves close
        and volume only when it orders at or after the candle's last tick, the
        same rule ``upsert_tick`` applies.
        Already-closed candles are returned untouched.
        """
        price = Decimal(live.price)
        day_open = Decimal(live.open)
        high = max(Decimal(live.high), day_open, price)
        low = min(Decimal(live.low), day_open, price)
        if price <= 0 or low <= 0:
            logger.warning(f"Skipping settlement of {live.stock_code}: incomplete live range")
            return None

        candle = await candles_repo.get_candle(session, live.stock_code, live.trading_date)
        if candle is None:
            candle = Candle(
                stock_code=live.stock_code,
                trading_date=live.trading_date,
                open=day_open,
                high=high,
                low=low,
                close=price,
                volume=live.volume,
                last_tick_at=_as_utc(live.updated_at),
                is_final=False,
            )
            session.add(candle)
        elif candle.is_final:
            return candle
        else:
            candle.high = max(Decimal(candle.high), high)
            candle.low = min(Decimal(candle.low), low)
            live_at = _as_utc(live.updated_at) or datetime.now(timezone.utc)
            if self._is_newer(candle, live.volume, live_at):
                candle.close = price
                candle.volume = live.volume
                candle.last_tick_at = live_at

        await session.flush()
        return candle

    async def finalize(self, session: AsyncSession, code: str, trading_date: date) -> bool:
        """Mark the day closed. Returns False if absent or already closed."""
        candle = await candles_repo.get_candle(session, code, trading_date)
        if candle is None or candle.is_final:
            return False

        candle.is_final = True
        candle.finalized_at = datetime.now(timezone.utc)
        await session.flush()
        return True

    async def backfill(
        self,
        session: AsyncSession,
        code: str,
        trading_date: date,
        bar: DailyBar,
        force: bool = False,
    ) -> bool:
        """Insert a historical bar for a missing day.

        An existing candle is left exactly as it is unless ``force`` is set,
        in which case the bar replaces it. Returns True when a row was written.
        """
        if bar.trading_date != trading_date:
            raise InvalidInputError(
                message=f"Bar dated {bar.trading_date} cannot fill {trading_date}"
            )
        if bar.close <= 0:
            raise InvalidInputError(message=f"Bar for {code} on {trading_date} has no close")
        check_ohlc(bar.open, bar.high, bar.low, bar.close)

        candle = await candles_repo.get_candle(session, code, trading_date)
        if candle is not None and not force:
            return False

        if candle is None:
            candle = Candle(stock_code=code, trading_date=trading_date)
            session.add(candle)

        candle.open = bar.open
        candle.high = bar.high
        candle.low = bar.low
        candle.close = bar.close
        candle.volume = bar.volume
        candle.last_tick_at = None
        candle.is_final = True
        candle.finalized_at = datetime.now(timezone.utc)
        await session.flush()
        return True
