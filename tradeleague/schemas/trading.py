"""Trading and account request and response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class OrderRequest(BaseModel):
    """Buy or sell order for whole shares at the current price."""

    stock_code: str = Field(..., min_length=1, max_length=20, examples=["005930"])
    quantity: int = Field(..., description="Whole shares; must be positive")
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("stock_code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        return v.strip().upper()


class OpenAccountRequest(BaseModel):
    username: Optional[str] = Field(
        default=None,
        min_length=1,
        max_length=255,
        description="Display name; defaults to the token's username",
    )


# Money is exchanged as JSON numbers; the ledger keeps Decimal internally.


class HoldingResponse(BaseModel):
    stock_code: str
    quantity: int
    avg_cost: float


class PortfolioResponse(BaseModel):
    id: int
    user_id: str
    username: str
    initial_capital: float
    cash: float
    total_assets: float
    total_return: float = Field(..., description="All-time return in percent")
    realized_pl: float
    weekly_start_assets: float
    monthly_start_assets: float
    league: str
    holdings: List[HoldingResponse] = Field(default_factory=list)


class TransactionResponse(BaseModel):
    id: int
    type: str = Field(..., examples=["BUY", "SELL"])
    stock_code: str
    quantity: int
    price: float
    total_amount: float
    realized_pl: Optional[float] = None
    note: Optional[str] = None
    created_at: datetime


class SnapshotResponse(BaseModel):
    snapshot_date: date
    total_assets: float
    total_return: float
    cash: float


class AccountResponse(PortfolioResponse):
    """Portfolio with its recent ledger rows and daily snapshots."""

    transactions: List[TransactionResponse] = Field(default_factory=list)
    snapshots: List[SnapshotResponse] = Field(default_factory=list)


class OrderResponse(BaseModel):
    transaction: TransactionResponse
    portfolio: PortfolioResponse
