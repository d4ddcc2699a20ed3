"""Create analysis_usage and analysis_history tables.

Revision ID: 002_analysis_tables
Revises: 001_initial
Create Date: 2026-09-14

analysis_usage holds one counter row per (user_id, period); the composite
primary key is what makes the first-insert race resolvable.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "002_analysis_tables"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS analysis_usage (
                user_id INTEGER NOT NULL REFERENCES users (id) ON DELETE CASCADE,
                period VARCHAR(10) NOT NULL,
                analysis_count INTEGER NOT NULL DEFAULT 0,
                tier VARCHAR NOT NULL DEFAULT 'free',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                PRIMARY KEY (user_id, period)
            );
            """
        )
    )
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS analysis_history (
                id SERIAL PRIMARY KEY,
                user_id INTEGER REFERENCES users (id) ON DELETE SET NULL,
                analysis_result JSONB NOT NULL,
                overall_score DOUBLE PRECISION,
                summary TEXT,
                language VARCHAR(5),
                topic TEXT,
                audience TEXT,
                goal TEXT,
                video_duration DOUBLE PRECISION,
                tier_at_analysis VARCHAR NOT NULL DEFAULT 'free',
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )
    )
    conn.execute(
        sa.text(
            "CREATE INDEX IF NOT EXISTS ix_analysis_history_user_created "
            "ON analysis_history (user_id, created_at DESC);"
        )
    )


def downgrade() -> None:
    op.drop_table("analysis_history")
    op.drop_table("analysis_usage")
