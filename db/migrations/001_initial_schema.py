"""Initial split-shipment schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Creates the saga tables (shops, orders, customers, split_requests,
fulfillment_holds) and the durable job queue (jobs, event_dedup).
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    ]


def upgrade() -> None:
    """Create saga and queue tables."""
    op.create_table(
        "shops",
        sa.Column("shop_domain", sa.String(), nullable=False),
        sa.Column(
            "app_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("shop_domain"),
    )

    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("order_name", sa.String(), nullable=True),
        sa.Column("shop_domain", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("order_id"),
    )

    op.create_table(
        "customers",
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("shop_domain", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("locale", sa.String(), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("customer_id"),
    )

    op.create_table(
        "split_requests",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("primary_order_id", sa.String(), nullable=False),
        sa.Column("shop_domain", sa.String(), nullable=False),
        sa.Column("user_choice", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("calculated_parcels", sa.Integer(), nullable=False),
        sa.Column("shipping_level", sa.String(), nullable=False),
        sa.Column("additional_shipping_amount_cents", sa.Integer(), nullable=False),
        sa.Column("payment_order_id", sa.String(), nullable=True),
        sa.Column("draft_order_id", sa.String(), nullable=True),
        sa.Column("error_log", sa.Text(), nullable=True),
        sa.Column("primary_order_cancelled_at", sa.TIMESTAMP(), nullable=True),
        sa.Column("payment_order_cancelled_at", sa.TIMESTAMP(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("primary_order_id"),
    )
    op.create_index(
        "ix_split_requests_payment_order_id",
        "split_requests",
        ["payment_order_id"],
    )

    op.create_table(
        "fulfillment_holds",
        sa.Column("hold_id", sa.String(), nullable=False),
        sa.Column("fulfillment_order_id", sa.String(), nullable=False),
        sa.Column("split_request_id", sa.Integer(), nullable=False),
        sa.Column("released", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("hold_id"),
        sa.ForeignKeyConstraint(
            ["split_request_id"],
            ["split_requests.id"],
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_fulfillment_holds_split_request_id",
        "fulfillment_holds",
        ["split_request_id"],
    )

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(), nullable=True),
        sa.Column("shop_domain", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "available_at",
            sa.TIMESTAMP(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_jobs_event_id", "jobs", ["event_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "event_dedup",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column(
            "seen_at",
            sa.TIMESTAMP(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", name="uq_event_dedup_event_id"),
    )


def downgrade() -> None:
    """Drop saga and queue tables."""
    op.drop_table("event_dedup")
    op.drop_index("ix_jobs_status", table_name="jobs")
    op.drop_index("ix_jobs_event_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index(
        "ix_fulfillment_holds_split_request_id", table_name="fulfillment_holds"
    )
    op.drop_table("fulfillment_holds")
    op.drop_index("ix_split_requests_payment_order_id", table_name="split_requests")
    op.drop_table("split_requests")
    op.drop_table("customers")
    op.drop_table("orders")
    op.drop_table("shops")
