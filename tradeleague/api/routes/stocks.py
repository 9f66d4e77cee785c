"""Candle chart routes."""

from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Path, Query
from fastapi.encoders import jsonable_encoder

from tradeleague.api.dependencies import get_services
from tradeleague.core.exceptions import InvalidInputError, NotFoundError
from tradeleague.repositories import candles_orm as candles_repo
from tradeleague.repositories import securities_orm as securities_repo
from tradeleague.schemas.common import DataResponse
from tradeleague.schemas.market import CandleChartResponse
from tradeleague.services.container import ServiceContainer


router = APIRouter()

DEFAULT_CHART_DAYS = 90


@router.get(
    "/{code}/candles",
    response_model=DataResponse[CandleChartResponse],
    summary="Daily candles for a security",
)
async def get_candles(
    code: str = Path(..., min_length=1, max_length=20),
    start: date | None = Query(None, description="First trading day (inclusive)"),
    end: date | None = Query(None, description="Last trading day (inclusive)"),
    services: ServiceContainer = Depends(get_services),
) -> dict:
    code = code.strip().upper()
    end = end or services.clock.today()
    start = start or end - timedelta(days=DEFAULT_CHART_DAYS)
    if start > end:
        raise InvalidInputError(message="start must not be after end")

    async def load() -> dict:
        async with services.session_factory() as session:
            if await securities_repo.get_security(session, code) is None:
                raise NotFoundError(message=f"Unknown security {code}")
            candles = await candles_repo.get_candles(session, code, start, end)
            live = await securities_repo.get_live_quote(session, code)
        return jsonable_encoder(
            {
                "stock_code": code,
                "candles": [candles_repo.candle_to_dict(c) for c in candles],
                "live": securities_repo.live_quote_to_dict(live) if live else None,
            }
        )

    cache = services.chart_cache
    if cache is None:
        data = await load()
    else:
        data = await cache.get_or_set((code, start.isoformat(), end.isoformat()), load)
    return {"success": True, "data": data}
