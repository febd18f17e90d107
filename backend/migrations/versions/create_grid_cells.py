"""Create grid_cells table.

Revision ID: a3f1c9d2e7b4
Revises:
Create Date: 2026-10-19
"""

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a3f1c9d2e7b4"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    # Idempotent: older deployments created this table without migrations
    op.execute("""
        CREATE TABLE IF NOT EXISTS grid_cells (
            id BIGSERIAL PRIMARY KEY,
            antenna_id BIGINT NOT NULL,
            x INTEGER NOT NULL,
            y INTEGER NOT NULL,
            last_updated TIMESTAMPTZ,
            bucket_high INTEGER NOT NULL DEFAULT 0,
            bucket100 INTEGER NOT NULL DEFAULT 0,
            bucket105 INTEGER NOT NULL DEFAULT 0,
            bucket110 INTEGER NOT NULL DEFAULT 0,
            bucket115 INTEGER NOT NULL DEFAULT 0,
            bucket120 INTEGER NOT NULL DEFAULT 0,
            bucket125 INTEGER NOT NULL DEFAULT 0,
            bucket130 INTEGER NOT NULL DEFAULT 0,
            bucket135 INTEGER NOT NULL DEFAULT 0,
            bucket140 INTEGER NOT NULL DEFAULT 0,
            bucket145 INTEGER NOT NULL DEFAULT 0,
            bucket_low INTEGER NOT NULL DEFAULT 0,
            bucket_no_signal INTEGER NOT NULL DEFAULT 0
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_grid_cell
            ON grid_cells (antenna_id, x, y);
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS grid_cells;")
