"""SQLAlchemy ORM models for Tradeleague.

This module defines all database tables using SQLAlchemy 2.0 ORM style.
Uses async support via asyncpg driver.

Usage:
    from tradeleague.database.orm import Candle
    from tradeleague.database.connection import get_session

    async with get_session() as session:
        candle = await session.scalar(
            select(Candle).where(Candle.stock_code == "005930")
        )
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


# Naming convention for constraints and indexes (deterministic names for Alembic)
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

Money = Numeric(18, 4)
Percent = Numeric(12, 4)


class Base(DeclarativeBase):
    """Base class for all ORM models with naming convention."""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# =============================================================================
# MARKET DATA
# =============================================================================


class Security(Base):
    """Tracked listed security."""
    __tablename__ = "securities"

    code: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    market: Mapped[str] = mapped_column(String(20), nullable=False, default="KOSPI")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_securities_active", "is_active"),
    )


class LiveQuote(Base):
    """Latest intraday snapshot for a security, overwritten on every tick."""
    __tablename__ = "live_quotes"

    stock_code: Mapped[str] = mapped_column(
        ForeignKey("securities.code", ondelete="CASCADE"), primary_key=True
    )
    trading_date: Mapped[date] = mapped_column(Date, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    open: Mapped[Decimal] = mapped_column(Money, nullable=False)
    high: Mapped[Decimal] = mapped_column(Money, nullable=False)
    low: Mapped[Decimal] = mapped_column(Money, nullable=False)
    volume: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Candle(Base):
    """Daily OHLCV bar keyed by security and exchange calendar day."""
    __tablename__ = "candles"

    id: Mapped[int] = mapped_column(primary_key=True)
    stock_code: Mapped[str] = mapped_column(
        ForeignKey("securities.code", ondelete="CASCADE"), nullable=False
    )
    trading_date: Mapped[date] = mapped_column(Date, nullable=False)
    open: Mapped[Decimal] = mapped_column(Money, nullable=False)
    high: Mapped[Decimal] = mapped_column(Money, nullable=False)
    low: Mapped[Decimal] = mapped_column(Money, nullable=False)
    close: Mapped[Decimal] = mapped_column(Money, nullable=False)
    volume: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_tick_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_final: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("stock_code", "trading_date", name="uq_candles_stock_date"),
        CheckConstraint("low <= high", name="low_le_high"),
        CheckConstraint("low <= open AND open <= high", name="open_in_range"),
        CheckConstraint("low <= close AND close <= high", name="close_in_range"),
        CheckConstraint("volume >= 0", name="volume_non_negative"),
        Index("idx_candles_date", "trading_date"),
    )


# =============================================================================
# PORTFOLIOS & LEDGER
# =============================================================================


class Portfolio(Base):
    """Simulated trading account, one per user."""
    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    initial_capital: Mapped[Decimal] = mapped_column(Money, nullable=False)
    cash: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_assets: Mapped[Decimal] = mapped_column(Money, nullable=False)
    # Percent of initial capital, same unit as ranking period returns
    total_return: Mapped[Decimal] = mapped_column(Percent, nullable=False, default=Decimal("0"))
    realized_pl: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    weekly_start_assets: Mapped[Decimal] = mapped_column(Money, nullable=False)
    monthly_start_assets: Mapped[Decimal] = mapped_column(Money, nullable=False)
    league: Mapped[str] = mapped_column(String(20), nullable=False, default="ROOKIE")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    holdings: Mapped[list[Holding]] = relationship(
        back_populates="portfolio",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Holding.stock_code",
    )

    __table_args__ = (
        CheckConstraint("cash >= 0", name="cash_non_negative"),
        CheckConstraint("league IN ('ROOKIE', 'HALL_OF_FAME')", name="league"),
    )


class Holding(Base):
    """Open position in one security. Zero-quantity positions are deleted."""
    __tablename__ = "holdings"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(
        ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False
    )
    stock_code: Mapped[str] = mapped_column(
        ForeignKey("securities.code"), nullable=False
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_cost: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    portfolio: Mapped[Portfolio] = relationship(back_populates="holdings")

    __table_args__ = (
        UniqueConstraint("portfolio_id", "stock_code", name="uq_holdings_portfolio_stock"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
    )


class Transaction(Base):
    """Append-only record of an executed order."""
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(
        ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    stock_code: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    realized_pl: Mapped[Decimal | None] = mapped_column(Money)
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("type IN ('BUY', 'SELL')", name="type"),
        CheckConstraint("quantity > 0", name="quantity_positive"),
        CheckConstraint("price >= 0", name="price_non_negative"),
        Index("idx_transactions_user", "user_id", "created_at"),
    )


class CapitalHistory(Base):
    """Append-only record of capital-affecting events."""
    __tablename__ = "capital_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    new_total: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)  # INITIAL, ADJUSTMENT, REWARD
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_capital_history_user", "user_id", "created_at"),
    )


class PortfolioSnapshot(Base):
    """End-of-day valuation of a portfolio."""
    __tablename__ = "portfolio_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(
        ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False
    )
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_assets: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_return: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    cash: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("portfolio_id", "snapshot_date", name="uq_portfolio_snapshots_day"),
    )


# =============================================================================
# RANKINGS & JOBS
# =============================================================================


class RankingEntry(Base):
    """One row of a period ranking; the whole period set is replaced per run."""
    __tablename__ = "ranking_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    period_return: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    total_assets: Mapped[Decimal] = mapped_column(Money, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("period", "user_id", name="uq_ranking_entries_period_user"),
        UniqueConstraint("period", "rank", name="uq_ranking_entries_period_rank"),
        CheckConstraint("period IN ('WEEKLY', 'MONTHLY', 'ALL_TIME')", name="period"),
    )


class JobRun(Base):
    """Claim marker making a scheduled job run at most once per run key."""
    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_name: Mapped[str] = mapped_column(String(100), nullable=False)
    run_key: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # running, success, error
    detail: Mapped[dict | None] = mapped_column(JSONType)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("job_name", "run_key", name="uq_job_runs_name_key"),
    )
