"""version ledger

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "version_ledger",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("application", sa.String(length=255), nullable=False),
        sa.Column("target", sa.String(length=64), nullable=False),
        sa.Column("release_tag", sa.String(length=255), nullable=False),
        sa.Column("release_published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("previous_tag", sa.String(length=255), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("run_id", sa.String(length=64), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("application", "target", name="uq_version_ledger_pair"),
    )

    op.create_table(
        "version_ledger_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("application", sa.String(length=255), nullable=False),
        sa.Column("target", sa.String(length=64), nullable=False),
        sa.Column("release_tag", sa.String(length=255), nullable=False),
        sa.Column("previous_tag", sa.String(length=255), nullable=True),
        sa.Column("release_published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("run_id", sa.String(length=64), nullable=True),
    )
    op.create_index(
        "idx_version_ledger_history_pair",
        "version_ledger_history",
        ["application", "target"],
    )


def downgrade() -> None:
    op.drop_index("idx_version_ledger_history_pair", table_name="version_ledger_history")
    op.drop_table("version_ledger_history")
    op.drop_table("version_ledger")
