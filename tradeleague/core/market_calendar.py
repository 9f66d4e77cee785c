"""Exchange calendar helpers.

Candles, resets and idempotency keys are bucketed by the *calendar day* of the
exchange, never by the wall-clock zone of the process. Instants
(``datetime``) are converted to a trading day (``date``) exactly once, through
``to_trading_date``; everything downstream compares plain dates.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo

from .config import Settings, settings


def _parse_clock(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def to_trading_date(value: date | datetime, zone: ZoneInfo) -> date:
    """Map an instant to its calendar day in the exchange zone.

    Naive datetimes are interpreted as UTC. A plain ``date`` is already a
    calendar day and is returned unchanged.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(zone).date()
    return value


def is_monday(day: date) -> bool:
    return day.weekday() == 0


def is_first_of_month(day: date) -> bool:
    return day.day == 1


def iso_week_key(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def month_key(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


def parse_trading_date(value: str) -> date:
    """Parse ``YYYY-MM-DD`` or the provider's ``YYYYMMDD`` form."""
    if len(value) == 8 and value.isdigit():
        return date(int(value[:4]), int(value[4:6]), int(value[6:]))
    return date.fromisoformat(value)


class MarketClock:
    """Clock bound to the exchange zone and its regular session hours."""

    def __init__(
        self,
        zone: str = "Asia/Seoul",
        open_at: time = time(9, 0),
        close_at: time = time(15, 30),
        now: Callable[[], datetime] | None = None,
    ):
        self.zone = ZoneInfo(zone)
        self.open_at = open_at
        self.close_at = close_at
        self._now = now or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> MarketClock:
        config = config or settings
        return cls(
            zone=config.market_timezone,
            open_at=_parse_clock(config.market_open),
            close_at=_parse_clock(config.market_close),
        )

    def now(self) -> datetime:
        """Current instant expressed in the exchange zone."""
        current = self._now()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self.zone)

    def today(self) -> date:
        return self.now().date()

    def trading_date(self, instant: date | datetime) -> date:
        return to_trading_date(instant, self.zone)

    def is_market_open(self, at: datetime | None = None) -> bool:
        """Weekday regular session, inclusive of open and close minutes."""
        local = self.now() if at is None else at.astimezone(self.zone)
        if local.weekday() >= 5:
            return False
        current = local.time().replace(second=0, microsecond=0, tzinfo=None)
        return self.open_at <= current <= self.close_at
