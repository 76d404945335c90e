"""Initial schema: users, subscriptions, external identities, message links, usage.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )

    # Written by the billing collaborator; read-only here.
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("plan", sa.String(30), nullable=False, server_default="free"),
        sa.Column("status", sa.String(20), nullable=False, server_default="free"),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=True)

    op.create_table(
        "external_identities",
        sa.Column("internal_user_id", sa.String(100), primary_key=True),
        sa.Column("external_user_id", sa.String(200), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "message_memories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("message_id", sa.String(100), nullable=False, unique=True),
        sa.Column("chat_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=True),
        sa.Column("memories", JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_message_memories_chat_id", "message_memories", ["chat_id"])
    op.create_index("ix_message_memories_user_id", "message_memories", ["user_id"])

    op.create_table(
        "usage_counters",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("metric", sa.String(40), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "metric", "period_start", name="uq_usage_counter_period"),
    )
    op.create_index("ix_usage_counters_user", "usage_counters", ["user_id"])

    op.create_table(
        "usage_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("metric", sa.String(40), nullable=False),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("reference", sa.Text(), nullable=True),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_usage_events_user_metric_period",
        "usage_events",
        ["user_id", "metric", "period_start"],
    )


def downgrade() -> None:
    op.drop_index("ix_usage_events_user_metric_period", table_name="usage_events")
    op.drop_table("usage_events")
    op.drop_index("ix_usage_counters_user", table_name="usage_counters")
    op.drop_table("usage_counters")
    op.drop_index("ix_message_memories_user_id", table_name="message_memories")
    op.drop_index("ix_message_memories_chat_id", table_name="message_memories")
    op.drop_table("message_memories")
    op.drop_table("external_identities")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("users")
