"""
Quote provider client (KIS Open API) with credential caching and throttling.

One client value is constructed at startup and handed to every collaborator.
It owns:
- the provider access token and its expiry, refreshed a safety margin before
  the provider would reject it
- a single request clock shared by every caller, so that successive data
  requests are spaced at least ``min_interval`` seconds apart

Failures surface as ``ExternalProviderError``; nothing is retried here. The
next scheduled collection tick is the retry.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from tradeleague.core.config import Settings, settings
from tradeleague.core.exceptions import ConfigurationError, ExternalProviderError
from tradeleague.core.logging import get_logger
from tradeleague.core.market_calendar import parse_trading_date


logger = get_logger("services.quote_client")

TOKEN_PATH = "/oauth2/tokenP"
STOCK_PRICE_PATH = "/uapi/domestic-stock/v1/quotations/inquire-price"
DAILY_CHART_PATH = "/uapi/domestic-stock/v1/quotations/inquire-daily-itemchartprice"

# Transaction ids identify the provider operation
TR_STOCK_PRICE = "FHKST01010100"
TR_DAILY_CHART = "FHKST03010100"

MARKET_DIVISION_STOCK = "J"


@dataclass(frozen=True)
class Quote:
    """Current price snapshot for one security."""

    code: str
    price: Decimal
    open: Decimal
    high: Decimal
    low: Decimal
    volume: int
    fetched_at: datetime


@dataclass(frozen=True)
class DailyBar:
    """One historical daily OHLCV bar."""

    trading_date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int


def _decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ExternalProviderError(
            message=f"Provider returned a non-numeric value: {value!r}"
        ) from e


def _int(value: Any) -> int:
    return int(_decimal(value))


class QuoteClient:
    """
    Async client for the quote provider.

    Usage:
        client = QuoteClient.from_settings()
        quote = await client.get_quote("005930")
        bars = await client.get_historical_series("005930", start, end)
        await client.aclose()
    """

    def __init__(
        self,
        base_url: str | None,
        app_key: str | None,
        app_secret: str | None,
        *,
        min_interval: float = 1.0,
        refresh_margin: float = 3600,
        timeout: float = 30,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        missing = [
            name
            for name, value in (
                ("KIS_API_URL", base_url),
                ("KIS_APP_KEY", app_key),
                ("KIS_APP_SECRET", app_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                message=f"Quote provider is not configured: missing {', '.join(missing)}",
                details={"missing": missing},
            )

        self.base_url = base_url.rstrip("/")
        self._app_key = app_key
        self._app_secret = app_secret
        self.min_interval = min_interval
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._sleep = sleep
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

        self._token: str | None = None
        self._token_expires_at: float = 0.0
        self._token_lock = asyncio.Lock()

        self._throttle_lock = asyncio.Lock()
        self._last_dispatch: float | None = None

    @classmethod
    def from_settings(cls, config: Settings | None = None, **kwargs: Any) -> QuoteClient:
        config = config or settings
        return cls(
            config.kis_api_url,
            config.kis_app_key,
            config.kis_app_secret,
            min_interval=config.quote_min_interval,
            refresh_margin=config.token_refresh_margin,
            timeout=config.external_api_timeout,
            **kwargs,
        )

    @property
    def is_virtual(self) -> bool:
        """Paper-trading endpoints live on the ``openapivts`` host."""
        return "openapivts" in self.base_url

    async def aclose(self) -> None:
        await self._http.aclose()

    # ─────────────────────────────────────────────────────────────────────
    # Credential
    # ─────────────────────────────────────────────────────────────────────

    def _token_valid(self) -> bool:
        return self._token is not None and self._clock() < self._token_expires_at

    async def get_access_token(self) -> str:
        """Return the cached token, fetching a new one once it nears expiry."""
        if self._token_valid():
            return self._token

        async with self._token_lock:
            # Another caller may have refreshed while we waited
            if self._token_valid():
                return self._token

            await self._throttle()
            try:
                response = await self._http.post(
                    f"{self.base_url}{TOKEN_PATH}",
                    json={
                        "grant_type": "client_credentials",
                        "appkey": self._app_key,
                        "appsecret": self._app_secret,
                    },
                    headers={"content-type": "application/json"},
                )
            except httpx.HTTPError as e:
                raise ExternalProviderError(
                    message=f"Token request failed: {e}"
                ) from e

            if response.status_code != 200:
                raise ExternalProviderError(
                    message=f"Token request rejected with HTTP {response.status_code}",
                    details={"status": response.status_code, "body": response.text[:200]},
                )

            payload = response.json()
            token = payload.get("access_token")
            if not token:
                raise ExternalProviderError(message="Token response missing access_token")

            expires_in = float(payload.get("expires_in", 0))
            self._token = token
            self._token_expires_at = self._clock() + expires_in - self.refresh_margin
            logger.info(
                f"Quote provider token refreshed (valid {int(expires_in)}s, "
                f"refresh margin {int(self.refresh_margin)}s)"
            )
            return token

    # ─────────────────────────────────────────────────────────────────────
    # Throttle
    # ─────────────────────────────────────────────────────────────────────

    async def _throttle(self) -> None:
        """Wait until ``min_interval`` has passed since the previous dispatch.

        The lock is held across the sleep, so concurrent callers queue and
        are released one interval apart.
        """
        async with self._throttle_lock:
            if self._last_dispatch is not None:
                elapsed = self._clock() - self._last_dispatch
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_dispatch = self._clock()

    # ─────────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────────

    async def _request(self, path: str, tr_id: str, params: dict[str, str]) -> dict[str, Any]:
        token = await self.get_access_token()
        await self._throttle()

        try:
            response = await self._http.get(
                f"{self.base_url}{path}",
                params=params,
                headers={
                    "content-type": "application/json; charset=utf-8",
                    "authorization": f"Bearer {token}",
                    "appkey": self._app_key,
                    "appsecret": self._app_secret,
                    "tr_id": tr_id,
                    "custtype": "P",
                },
            )
        except httpx.HTTPError as e:
            raise ExternalProviderError(message=f"Provider request failed: {e}") from e

        if response.status_code != 200:
            raise ExternalProviderError(
                message=f"Provider returned HTTP {response.status_code}",
                details={"status": response.status_code, "tr_id": tr_id},
            )

        body = response.json()
        if body.get("rt_cd") != "0":
            raise ExternalProviderError(
                message=f"[{body.get('msg_cd', '')}] {body.get('msg1', 'Unknown provider error')}",
                details={"rt_cd": body.get("rt_cd"), "msg_cd": body.get("msg_cd"), "tr_id": tr_id},
            )
        return body

    async def get_quote(self, code: str) -> Quote:
        """Fetch the current price snapshot for one security."""
        body = await self._request(
            STOCK_PRICE_PATH,
            TR_STOCK_PRICE,
            {"FID_COND_MRKT_DIV_CODE": MARKET_DIVISION_STOCK, "FID_INPUT_ISCD": code},
        )
        output = body.get("output") or {}
        price = _decimal(output.get("stck_prpr"))
        if price <= 0:
            raise ExternalProviderError(
                message=f"Provider returned no price for {code}", details={"code": code}
            )

        return Quote(
            code=code,
            price=price,
            open=_decimal(output.get("stck_oprc")) or price,
            high=_decimal(output.get("stck_hgpr")) or price,
            low=_decimal(output.get("stck_lwpr")) or price,
            volume=_int(output.get("acml_vol")),
            fetched_at=datetime.now(timezone.utc),
        )

    async def get_historical_series(self, code: str, start: date, end: date) -> list[DailyBar]:
        """Fetch daily bars for ``start..end`` inclusive, oldest first."""
        body = await self._request(
            DAILY_CHART_PATH,
            TR_DAILY_CHART,
            {
                "FID_COND_MRKT_DIV_CODE": MARKET_DIVISION_STOCK,
                "FID_INPUT_ISCD": code,
                "FID_INPUT_DATE_1": start.strftime("%Y%m%d"),
                "FID_INPUT_DATE_2": end.strftime("%Y%m%d"),
                "FID_PERIOD_DIV_CODE": "D",
                "FID_ORG_ADJ_PRC": "0",
            },
        )

        bars: list[DailyBar] = []
        for item in body.get("output2") or []:
            raw_date = item.get("stck_bsop_date")
            if not raw_date:
                # Provider pads short ranges with empty rows
                continue
            bars.append(
                DailyBar(
                    trading_date=parse_trading_date(raw_date),
                    open=_decimal(item.get("stck_oprc")),
                    high=_decimal(item.get("stck_hgpr")),
                    low=_decimal(item.get("stck_lwpr")),
                    close=_decimal(item.get("stck_clpr")),
                    volume=_int(item.get("acml_vol")),
                )
            )

        bars.sort(key=lambda bar: bar.trading_date)
        return bars
