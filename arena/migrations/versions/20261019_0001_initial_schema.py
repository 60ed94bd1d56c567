"""Initial schema for StockArena.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

This migration creates the contest platform tables:
- Users with their coin balances, and the Stocks they can pick
- Contests, ContestEntries and the PortfolioHoldings fixed at join time
- PortfolioPerformance and LeaderboardHistory append-only time series
- CoinTransactions, one audit row per balance change
- JobRuns for task audit logging

Contest status only ever moves forward:
upcoming -> active -> completed, or upcoming -> cancelled.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("coins_balance", sa.Integer(), nullable=False, server_default="15000"),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
        sa.CheckConstraint("coins_balance >= 0", name="ck_users_coins_non_negative"),
    )

    op.create_table(
        "stocks",
        sa.Column("symbol", sa.String(length=20), nullable=False),
        sa.Column("company_name", sa.Text(), nullable=False),
        sa.Column("sector", sa.String(length=50), nullable=True),
        sa.Column("current_price", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "last_updated",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.PrimaryKeyConstraint("symbol"),
    )

    op.create_table(
        "contests",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entry_fee", sa.Integer(), nullable=False),
        sa.Column("prize_pool", sa.Integer(), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            sa.String(length=20),
            nullable=False,
            server_default="upcoming",
            comment="'upcoming', 'active', 'completed' or 'cancelled'",
        ),
        sa.Column("featured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "prizes_distributed", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_contests_status", "contests", ["status"])

    op.create_table(
        "contest_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("contest_id", sa.Uuid(), nullable=False),
        sa.Column("total_coins_invested", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("final_portfolio_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("roi", sa.Numeric(9, 2), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contest_id"], ["contests.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "contest_id", name="uq_entry_user_contest"),
    )
    op.create_index("idx_entries_contest", "contest_entries", ["contest_id"])

    op.create_table(
        "portfolio_holdings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("stock_symbol", sa.String(length=20), nullable=False),
        sa.Column("coins_invested", sa.Integer(), nullable=False),
        sa.Column("shares_quantity", sa.Numeric(15, 8), nullable=False),
        sa.Column("purchase_price", sa.Numeric(10, 2), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["entry_id"], ["contest_entries.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["stock_symbol"], ["stocks.symbol"]),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "portfolio_performance",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("entry_id", sa.Uuid(), nullable=False),
        sa.Column("portfolio_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["contest_entries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_performance_entry_time", "portfolio_performance", ["entry_id", "timestamp"]
    )

    op.create_table(
        "leaderboard_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("contest_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("portfolio_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("roi", sa.Numeric(9, 2), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["contest_id"], ["contests.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_leaderboard_contest_time",
        "leaderboard_history",
        ["contest_id", sa.text("timestamp DESC")],
    )

    op.create_table(
        "coin_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column(
            "type",
            sa.String(length=20),
            nullable=False,
            comment="'purchase', 'exchange', 'contest_entry', 'prize' or 'refund'",
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("coins_before", sa.Integer(), nullable=False),
        sa.Column("coins_after", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("contest_id", sa.Uuid(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["contest_id"], ["contests.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_coin_tx_contest_user_type",
        "coin_transactions",
        ["contest_id", "user_id", "type"],
    )

    # Job Runs table
    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=True, default=0),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("job_runs")
    op.drop_index("idx_coin_tx_contest_user_type", table_name="coin_transactions")
    op.drop_table("coin_transactions")
    op.drop_index("idx_leaderboard_contest_time", table_name="leaderboard_history")
    op.drop_table("leaderboard_history")
    op.drop_index("idx_performance_entry_time", table_name="portfolio_performance")
    op.drop_table("portfolio_performance")
    op.drop_table("portfolio_holdings")
    op.drop_index("idx_entries_contest", table_name="contest_entries")
    op.drop_table("contest_entries")
    op.drop_index("idx_contests_status", table_name="contests")
    op.drop_table("contests")
    op.drop_table("stocks")
    op.drop_table("users")
