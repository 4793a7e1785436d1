"""create entries table

Revision ID: 0001_create_entries
Revises: 
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


revision = "0001_create_entries"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "entries",
        sa.Column("owner_id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("id", sa.Text(), primary_key=True, nullable=False),
        sa.Column("location", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=False), nullable=False),
        sa.Column("tide_state", sa.String(length=16), nullable=False),
        sa.Column("equipment_type", sa.String(length=16), nullable=True),
        sa.Column("equipment_detail", sa.Text(), nullable=True),
        sa.Column("conditions_text", sa.Text(), nullable=False),
        sa.Column("notes_text", sa.Text(), nullable=False),
        sa.Column("rating", sa.SmallInteger(), nullable=True),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    )
    op.create_index(
        "entries_owner_created_idx",
        "entries",
        ["owner_id", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    op.drop_index("entries_owner_created_idx", table_name="entries")
    op.drop_table("entries")
