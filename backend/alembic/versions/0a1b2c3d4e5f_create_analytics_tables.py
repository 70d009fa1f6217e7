"""create_analytics_tables

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "ga_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("ga_account_id", sa.String(64), nullable=True),
        sa.Column("ga_property_id", sa.String(64), nullable=False),
        sa.Column("website_url", sa.String(255), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("data_consent", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", name="uq_ga_accounts_user_id"),
    )

    op.create_table(
        "daily_analytics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("visitors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("page_views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("avg_session_duration", sa.Float(), nullable=False, server_default="0"),
        sa.Column("bounce_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "date", name="uq_daily_analytics_user_date"),
        sa.CheckConstraint("visitors >= 0", name="non_negative_visitors"),
        sa.CheckConstraint("bounce_rate >= 0 AND bounce_rate <= 100", name="valid_bounce_rate"),
    )

    op.create_table(
        "top_pages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "daily_analytics_id",
            sa.Integer(),
            sa.ForeignKey("daily_analytics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("page_path", sa.Text(), nullable=False),
        sa.Column("page_views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_top_pages_daily_analytics", "top_pages", ["daily_analytics_id"])

    op.create_table(
        "referrers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "daily_analytics_id",
            sa.Integer(),
            sa.ForeignKey("daily_analytics.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source", sa.String(255), nullable=False),
        sa.Column("visitors", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_referrers_daily_analytics", "referrers", ["daily_analytics_id"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("dedupe_key", sa.String(32), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "user_id", "date", "event_type", "dedupe_key", name="uq_events_user_date_type_key"
        ),
        sa.CheckConstraint(
            "event_type IN ('spike', 'drop', 'milestone', 'streak')",
            name="valid_event_type",
        ),
    )
    op.create_index("idx_events_user_date", "events", ["user_id", "date"])


def downgrade() -> None:
    op.drop_index("idx_events_user_date", table_name="events")
    op.drop_table("events")
    op.drop_index("idx_referrers_daily_analytics", table_name="referrers")
    op.drop_table("referrers")
    op.drop_index("idx_top_pages_daily_analytics", table_name="top_pages")
    op.drop_table("top_pages")
    op.drop_table("daily_analytics")
    op.drop_table("ga_accounts")
