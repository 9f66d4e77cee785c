"""baseline_trading_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16 09:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Market data, portfolios, ledger, rankings and job claims."""
    op.create_table(
        "securities",
        sa.Column("code", sa.String(20), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("market", sa.String(20), nullable=False, server_default="KOSPI"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index("idx_securities_active", "securities", ["is_active"])

    op.create_table(
        "live_quotes",
        sa.Column("stock_code", sa.String(20), sa.ForeignKey("securities.code", ondelete="CASCADE"), primary_key=True),
        sa.Column("trading_date", sa.Date, nullable=False),
        sa.Column("price", sa.Numeric(18, 4), nullable=False),
        sa.Column("open", sa.Numeric(18, 4), nullable=False),
        sa.Column("high", sa.Numeric(18, 4), nullable=False),
        sa.Column("low", sa.Numeric(18, 4), nullable=False),
        sa.Column("volume", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "candles",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("stock_code", sa.String(20), sa.ForeignKey("securities.code", ondelete="CASCADE"), nullable=False),
        sa.Column("trading_date", sa.Date, nullable=False),
        sa.Column("open", sa.Numeric(18, 4), nullable=False),
        sa.Column("high", sa.Numeric(18, 4), nullable=False),
        sa.Column("low", sa.Numeric(18, 4), nullable=False),
        sa.Column("close", sa.Numeric(18, 4), nullable=False),
        sa.Column("volume", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("last_tick_at", sa.DateTime(timezone=True)),
        sa.Column("is_final", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("finalized_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.UniqueConstraint("stock_code", "trading_date", name="uq_candles_stock_date"),
        sa.CheckConstraint("low <= high", name="ck_candles_low_le_high"),
        sa.CheckConstraint("low <= open AND open <= high", name="ck_candles_open_in_range"),
        sa.CheckConstraint("low <= close AND close <= high", name="ck_candles_close_in_range"),
        sa.CheckConstraint("volume >= 0", name="ck_candles_volume_non_negative"),
    )
    op.create_index("idx_candles_date", "candles", ["trading_date"])

    op.create_table(
        "portfolios",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False, unique=True),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("initial_capital", sa.Numeric(18, 4), nullable=False),
        sa.Column("cash", sa.Numeric(18, 4), nullable=False),
        sa.Column("total_assets", sa.Numeric(18, 4), nullable=False),
        sa.Column("total_return", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("realized_pl", sa.Numeric(18, 4), nullable=False, server_default="0"),
        sa.Column("weekly_start_assets", sa.Numeric(18, 4), nullable=False),
        sa.Column("monthly_start_assets", sa.Numeric(18, 4), nullable=False),
        sa.Column("league", sa.String(20), nullable=False, server_default="ROOKIE"),
        *_timestamps(),
        sa.CheckConstraint("cash >= 0", name="ck_portfolios_cash_non_negative"),
        sa.CheckConstraint("league IN ('ROOKIE', 'HALL_OF_FAME')", name="ck_portfolios_league"),
    )

    op.create_table(
        "holdings",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("portfolio_id", sa.Integer, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stock_code", sa.String(20), sa.ForeignKey("securities.code"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("avg_cost", sa.Numeric(18, 4), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("portfolio_id", "stock_code", name="uq_holdings_portfolio_stock"),
        sa.CheckConstraint("quantity > 0", name="ck_holdings_quantity_positive"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("portfolio_id", sa.Integer, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("stock_code", sa.String(20), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("price", sa.Numeric(18, 4), nullable=False),
        sa.Column("total_amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("realized_pl", sa.Numeric(18, 4)),
        sa.Column("note", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("type IN ('BUY', 'SELL')", name="ck_transactions_type"),
        sa.CheckConstraint("quantity > 0", name="ck_transactions_quantity_positive"),
        sa.CheckConstraint("price >= 0", name="ck_transactions_price_non_negative"),
    )
    op.create_index("idx_transactions_user", "transactions", ["user_id", "created_at"])

    op.create_table(
        "capital_history",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("new_total", sa.Numeric(18, 4), nullable=False),
        sa.Column("reason", sa.String(30), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_capital_history_user", "capital_history", ["user_id", "created_at"])

    op.create_table(
        "portfolio_snapshots",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("portfolio_id", sa.Integer, sa.ForeignKey("portfolios.id", ondelete="CASCADE"), nullable=False),
        sa.Column("snapshot_date", sa.Date, nullable=False),
        sa.Column("total_assets", sa.Numeric(18, 4), nullable=False),
        sa.Column("total_return", sa.Numeric(12, 4), nullable=False),
        sa.Column("cash", sa.Numeric(18, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("portfolio_id", "snapshot_date", name="uq_portfolio_snapshots_day"),
    )

    op.create_table(
        "ranking_entries",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("period", sa.String(10), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(255), nullable=False),
        sa.Column("rank", sa.Integer, nullable=False),
        sa.Column("period_return", sa.Numeric(12, 4), nullable=False),
        sa.Column("total_assets", sa.Numeric(18, 4), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("period", "user_id", name="uq_ranking_entries_period_user"),
        sa.UniqueConstraint("period", "rank", name="uq_ranking_entries_period_rank"),
        sa.CheckConstraint("period IN ('WEEKLY', 'MONTHLY', 'ALL_TIME')", name="ck_ranking_entries_period"),
    )

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("job_name", sa.String(100), nullable=False),
        sa.Column("run_key", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("detail", JSONB),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("job_name", "run_key", name="uq_job_runs_name_key"),
    )


def downgrade() -> None:
    for table in (
        "job_runs",
        "ranking_entries",
        "portfolio_snapshots",
        "capital_history",
        "transactions",
        "holdings",
        "portfolios",
        "candles",
        "live_quotes",
        "securities",
    ):
        op.drop_table(table)
