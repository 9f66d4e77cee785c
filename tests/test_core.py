"""Tests for the market calendar, identity tokens, logging, cache and job locks."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, time, timedelta, timezone
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tradeleague.cache.cache import Cache, cache_key
from tradeleague.cache.distributed_lock import DistributedLock, job_lock
from tradeleague.core.exceptions import AuthenticationError
from tradeleague.core.logging import (
    SensitiveDataFilter,
    StructuredFormatter,
    fields,
    job_context,
)
from tradeleague.core.market_calendar import (
    MarketClock,
    iso_week_key,
    month_key,
    parse_trading_date,
    to_trading_date,
)
from tradeleague.core.security import (
    create_access_token,
    decode_access_token,
    verify_cron_secret,
)


SEOUL = ZoneInfo("Asia/Seoul")


class TestTradingDate:
    """Instants are bucketed by the exchange's calendar day."""

    def test_utc_evening_is_next_seoul_day(self):
        instant = datetime(2026, 10, 15, 16, 0, tzinfo=timezone.utc)

        assert to_trading_date(instant, SEOUL) == date(2026, 10, 16)

    def test_naive_datetime_treated_as_utc(self):
        assert to_trading_date(datetime(2026, 10, 15, 14, 59), SEOUL) == date(2026, 10, 15)
        assert to_trading_date(datetime(2026, 10, 15, 15, 0), SEOUL) == date(2026, 10, 16)

    def test_date_passes_through(self):
        assert to_trading_date(date(2026, 1, 1), SEOUL) == date(2026, 1, 1)

    def test_window_keys(self):
        assert iso_week_key(date(2026, 11, 2)) == "2026-W45"
        # 2026 has 53 ISO weeks
        assert iso_week_key(date(2026, 12, 28)) == "2026-W53"
        assert month_key(date(2026, 3, 1)) == "2026-03"

    @pytest.mark.parametrize("raw", ["20261016", "2026-10-16"])
    def test_parse_trading_date(self, raw):
        assert parse_trading_date(raw) == date(2026, 10, 16)


class TestMarketClock:
    """Session hours in the exchange zone."""

    def _clock(self, utc: datetime) -> MarketClock:
        return MarketClock(open_at=time(9, 0), close_at=time(15, 30), now=lambda: utc)

    @pytest.mark.parametrize(
        "utc, expected",
        [
            (datetime(2026, 10, 16, 0, 0, tzinfo=timezone.utc), True),  # 09:00 KST
            (datetime(2026, 10, 16, 6, 30, tzinfo=timezone.utc), True),  # 15:30 KST
            (datetime(2026, 10, 16, 6, 31, tzinfo=timezone.utc), False),  # 15:31 KST
            (datetime(2026, 10, 15, 23, 59, tzinfo=timezone.utc), False),  # 08:59 KST
            (datetime(2026, 10, 17, 2, 0, tzinfo=timezone.utc), False),  # Saturday
        ],
    )
    def test_is_market_open(self, utc, expected):
        assert self._clock(utc).is_market_open() is expected

    def test_today_uses_exchange_zone(self):
        clock = self._clock(datetime(2026, 10, 31, 15, 0, tzinfo=timezone.utc))

        assert clock.today() == date(2026, 11, 1)


class TestIdentityTokens:
    """User identity tokens."""

    def test_round_trip(self):
        token = create_access_token("user-42", "alice")

        data = decode_access_token(token)

        assert data.sub == "user-42"
        assert data.username == "alice"

    def test_expired_token_rejected(self):
        token = create_access_token("user-42", expires_delta=timedelta(seconds=-10))

        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token(token)

        assert exc_info.value.error_code == "TOKEN_EXPIRED"

    def test_garbage_token_rejected(self):
        with pytest.raises(AuthenticationError) as exc_info:
            decode_access_token("not-a-token")

        assert exc_info.value.error_code == "INVALID_TOKEN"


class TestCronSecret:
    """Shared bearer secret for trigger endpoints."""

    def test_matching_secret(self):
        assert verify_cron_secret("Bearer s3cret", "s3cret")

    @pytest.mark.parametrize("header", [None, "", "s3cret", "Basic s3cret", "Bearer other"])
    def test_rejected_headers(self, header):
        assert not verify_cron_secret(header, "s3cret")

    def test_unset_secret_rejects_everything(self):
        assert not verify_cron_secret("Bearer ", "")
        assert not verify_cron_secret("Bearer anything", "")


class TestCache:
    """Read-through cache over Valkey."""

    def test_key_is_namespaced(self):
        assert cache_key("005930", "2026:10", prefix="chart") == "tradeleague:v1:chart:005930:2026_10"

    @pytest.mark.asyncio
    async def test_get_or_set_populates_on_miss(self, mocker):
        client = AsyncMock()
        client.get.return_value = None
        mocker.patch("tradeleague.cache.cache.get_valkey_client", return_value=client)
        factory = AsyncMock(return_value={"candles": []})

        value = await Cache(prefix="chart", default_ttl=60).get_or_set("005930", factory)

        assert value == {"candles": []}
        factory.assert_awaited_once()
        client.set.assert_awaited_once_with(
            "tradeleague:v1:chart:005930", '{"candles": []}', ex=60
        )

    @pytest.mark.asyncio
    async def test_hit_skips_factory(self, mocker):
        client = AsyncMock()
        client.get.return_value = '{"candles": [1]}'
        mocker.patch("tradeleague.cache.cache.get_valkey_client", return_value=client)
        factory = AsyncMock()

        value = await Cache(prefix="chart", default_ttl=60).get_or_set("005930", factory)

        assert value == {"candles": [1]}
        factory.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unavailable_valkey_degrades_to_miss(self, mocker):
        mocker.patch(
            "tradeleague.cache.cache.get_valkey_client",
            side_effect=ConnectionError("valkey down"),
        )
        factory = AsyncMock(return_value={"candles": []})

        value = await Cache(prefix="chart", default_ttl=60).get_or_set("005930", factory)

        assert value == {"candles": []}
        factory.assert_awaited_once()


class TestJobLock:
    """Non-blocking job lock."""

    @pytest.mark.asyncio
    async def test_acquire_and_release(self):
        client = AsyncMock()
        client.set.return_value = True
        client.eval.return_value = 1
        lock = DistributedLock("job:midnight", timeout=600, client=client)

        assert await lock.acquire() is True
        assert await lock.release() is True
        client.set.assert_awaited_once_with(
            "tradeleague:lock:job:midnight", lock.token, ex=600, nx=True
        )

    @pytest.mark.asyncio
    async def test_held_lock_not_acquired(self):
        client = AsyncMock()
        client.set.return_value = None
        lock = DistributedLock("job:midnight", client=client)

        assert await lock.acquire() is False
        assert await lock.release() is False

    @pytest.mark.asyncio
    async def test_job_lock_yields_acquired_flag(self, mocker):
        client = AsyncMock()
        client.set.return_value = None
        mocker.patch("tradeleague.cache.distributed_lock.get_valkey_client", return_value=client)

        async with job_lock("ranking-update") as acquired:
            assert acquired is False
        client.eval.assert_not_awaited()


class TestLogging:
    """Log record context and redaction."""

    def _record(self, msg: str, **extra) -> logging.LogRecord:
        record = logging.LogRecord("tradeleague.test", logging.INFO, __file__, 1, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_job_context_tags_records(self):
        with job_context("midnight", "2026-11-02"):
            line = json.loads(StructuredFormatter().format(self._record("done")))

        assert line["job"] == "midnight"
        assert line["run_key"] == "2026-11-02"
        assert "job" not in json.loads(StructuredFormatter().format(self._record("after")))

    def test_extra_fields_are_merged(self):
        record = self._record("finished", **fields(updated=3)["extra"])

        assert json.loads(StructuredFormatter().format(record))["updated"] == 3

    def test_credentials_are_redacted(self):
        record = self._record("token request appsecret=abc123 appkey: k1 ok")

        SensitiveDataFilter().filter(record)

        assert "abc123" not in record.getMessage()
        assert "k1" not in record.getMessage()
        assert record.getMessage().endswith("ok")


class TestCacheInvalidation:
    """Prefix invalidation."""

    @pytest.mark.asyncio
    async def test_invalidate_by_code(self, mocker):
        client = AsyncMock()
        scanned = []

        async def scan_iter(match, count):
            scanned.append(match)
            for key in ("tradeleague:v1:chart:005930:2026-10-01:2026-10-16",):
                yield key

        client.scan_iter = scan_iter
        client.delete.return_value = 1
        mocker.patch("tradeleague.cache.cache.get_valkey_client", return_value=client)

        removed = await Cache(prefix="chart", default_ttl=60).invalidate("005930")

        assert removed == 1
        assert scanned == ["tradeleague:v1:chart:005930:*"]

    @pytest.mark.asyncio
    async def test_invalidate_without_valkey(self, mocker):
        mocker.patch(
            "tradeleague.cache.cache.get_valkey_client",
            side_effect=ConnectionError("valkey down"),
        )

        assert await Cache(prefix="chart").invalidate() == 0


class TestJobLockDegradation:
    """Job locks when Valkey is unreachable."""

    @pytest.mark.asyncio
    async def test_unreachable_valkey_runs_unguarded(self, mocker):
        client = AsyncMock()
        client.set.side_effect = RedisConnectionError("connection refused")
        mocker.patch("tradeleague.cache.distributed_lock.get_valkey_client", return_value=client)

        async with job_lock("intraday-update") as acquired:
            assert acquired is True
        client.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_release_does_not_raise(self, mocker):
        client = AsyncMock()
        client.set.return_value = True
        client.eval.side_effect = RedisConnectionError("connection reset")
        mocker.patch("tradeleague.cache.distributed_lock.get_valkey_client", return_value=client)

        async with job_lock("daily-candle") as acquired:
            assert acquired is True
        client.eval.assert_awaited_once()
