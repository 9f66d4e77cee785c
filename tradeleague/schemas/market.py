"""Ranking and candle chart response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RankingEntryResponse(BaseModel):
    period: str = Field(..., examples=["WEEKLY", "MONTHLY", "ALL_TIME"])
    rank: int
    user_id: str
    username: str
    period_return: float = Field(..., description="Return over the period in percent")
    total_assets: float
    computed_at: datetime


class RankingListResponse(BaseModel):
    period: str
    entries: List[RankingEntryResponse] = Field(default_factory=list)


class CandleResponse(BaseModel):
    stock_code: str
    trading_date: date
    open: float
    high: float
    low: float
    close: float
    volume: int
    is_final: bool


class LiveQuoteResponse(BaseModel):
    stock_code: str
    trading_date: date
    price: float
    open: float
    high: float
    low: float
    volume: int
    updated_at: datetime


class CandleChartResponse(BaseModel):
    stock_code: str
    candles: List[CandleResponse] = Field(default_factory=list)
    live: Optional[LiveQuoteResponse] = None
