"""Add claimed_at lease column to jobs

Revision ID: 002_add_job_lease
Revises: 001_initial_schema
Create Date: 2026-10-19

Adds claimed_at to jobs. A RUNNING job whose claimed_at is older than the
consumer's lease is treated as abandoned and claimed again.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_add_job_lease"
down_revision: str | Sequence[str] | None = "001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add claimed_at column to jobs."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_columns = {column["name"] for column in inspector.get_columns("jobs")}

    if "claimed_at" not in existing_columns:
        op.add_column("jobs", sa.Column("claimed_at", sa.TIMESTAMP(), nullable=True))


def downgrade() -> None:
    """Remove claimed_at column from jobs."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_columns = {column["name"] for column in inspector.get_columns("jobs")}

    if "claimed_at" in existing_columns:
        op.drop_column("jobs", "claimed_at")
