"""Create users and subscriptions tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-09-14

Tables are also created by app startup (Base.metadata.create_all), so every
statement here is guarded with IF NOT EXISTS.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS users (
                id SERIAL PRIMARY KEY,
                email VARCHAR NOT NULL UNIQUE,
                hashed_password VARCHAR NOT NULL,
                name VARCHAR,
                is_active BOOLEAN DEFAULT true,
                plan_tier VARCHAR NOT NULL DEFAULT 'free',
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ
            );
            """
        )
    )
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS subscriptions (
                id SERIAL PRIMARY KEY,
                user_id INTEGER NOT NULL UNIQUE REFERENCES users (id) ON DELETE CASCADE,
                provider VARCHAR NOT NULL DEFAULT 'stripe',
                stripe_customer_id VARCHAR,
                stripe_subscription_id VARCHAR UNIQUE,
                paypal_subscription_id VARCHAR UNIQUE,
                status VARCHAR NOT NULL DEFAULT 'inactive',
                tier VARCHAR NOT NULL DEFAULT 'free',
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            );
            """
        )
    )
    conn.execute(
        sa.text(
            "CREATE INDEX IF NOT EXISTS ix_subscriptions_stripe_customer_id "
            "ON subscriptions (stripe_customer_id);"
        )
    )


def downgrade() -> None:
    op.drop_table("subscriptions")
    op.drop_table("users")
