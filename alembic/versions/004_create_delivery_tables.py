"""004: create delivery_tokens and delivery_schedules tables

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE delivery_tokens (
            order_id            VARCHAR(64)     NOT NULL REFERENCES orders(id),
            kind                VARCHAR(10)     NOT NULL,
            verification_code   VARCHAR(32)     NOT NULL,
            payload             TEXT            NOT NULL,
            holder_id           VARCHAR(64)     NOT NULL,
            issued_at           TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            redeemed_at         TIMESTAMPTZ,
            redeemed_by         VARCHAR(64),
            PRIMARY KEY (order_id, kind),
            CONSTRAINT ck_delivery_tokens_kind CHECK (kind IN ('pickup', 'delivery')),
            CONSTRAINT ck_delivery_tokens_redeemer CHECK (
                (redeemed_at IS NULL AND redeemed_by IS NULL)
                OR (redeemed_at IS NOT NULL AND redeemed_by IS NOT NULL)
            )
        );
    """)

    op.execute("""
        CREATE TABLE delivery_schedules (
            order_id                VARCHAR(64)     PRIMARY KEY REFERENCES orders(id),
            pickup_slot             VARCHAR(16),
            pickup_instructions     VARCHAR(500),
            delivery_slot           VARCHAR(16),
            delivery_address        VARCHAR(500),
            delivery_instructions   VARCHAR(500),
            rider_id                VARCHAR(64),
            rider_status            VARCHAR(30)     NOT NULL DEFAULT 'unassigned',
            assigned_at             TIMESTAMPTZ,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_delivery_schedules_rider_status CHECK (
                rider_status IN (
                    'unassigned', 'assigned', 'en_route_to_pickup', 'at_pickup', 'picked_up',
                    'en_route_to_delivery', 'at_delivery', 'delivered', 'failed'
                )
            )
        );
    """)
    op.execute("CREATE INDEX idx_delivery_schedules_rider ON delivery_schedules (rider_id, assigned_at DESC);")
    op.execute("""
        CREATE INDEX idx_delivery_schedules_unassigned
        ON delivery_schedules (created_at)
        WHERE rider_id IS NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_delivery_schedules_updated_at
        BEFORE UPDATE ON delivery_schedules
        FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS delivery_schedules CASCADE;")
    op.execute("DROP TABLE IF EXISTS delivery_tokens CASCADE;")
