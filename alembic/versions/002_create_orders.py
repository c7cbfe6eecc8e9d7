"""002: create orders and order_status_history tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE orders (
            id                  VARCHAR(64)     PRIMARY KEY,
            buyer_id            VARCHAR(64)     NOT NULL,
            seller_id           VARCHAR(64)     NOT NULL,
            item_id             VARCHAR(64)     NOT NULL,
            total_amount        BIGINT          NOT NULL,
            platform_fee        BIGINT          NOT NULL,
            seller_amount       BIGINT          NOT NULL,
            status              VARCHAR(30)     NOT NULL DEFAULT 'pending',
            payment_reference   VARCHAR(128),
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_orders_status CHECK (
                status IN (
                    'pending', 'paid', 'pickup_scheduled', 'picked_up',
                    'delivery_scheduled', 'delivered', 'completed',
                    'disputed', 'cancelled', 'refunded'
                )
            ),
            CONSTRAINT ck_orders_total_positive CHECK (total_amount > 0),
            CONSTRAINT ck_orders_fee_range CHECK (platform_fee >= 0 AND platform_fee <= total_amount),
            CONSTRAINT ck_orders_seller_amount CHECK (seller_amount = total_amount - platform_fee),
            CONSTRAINT ck_orders_distinct_parties CHECK (buyer_id <> seller_id)
        );
    """)
    op.execute("CREATE INDEX idx_orders_buyer ON orders (buyer_id, id DESC);")
    op.execute("CREATE INDEX idx_orders_seller ON orders (seller_id, id DESC);")
    op.execute("CREATE INDEX idx_orders_status ON orders (status);")
    op.execute("""
        CREATE TRIGGER trg_orders_updated_at
        BEFORE UPDATE ON orders
        FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE order_status_history (
            id              BIGSERIAL       PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders(id),
            status          VARCHAR(30)     NOT NULL,
            notes           VARCHAR(500),
            latitude        NUMERIC(9, 6),
            longitude       NUMERIC(9, 6),
            created_by      VARCHAR(64)     NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_order_history_order ON order_status_history (order_id, id);")
    op.execute("""
        CREATE TRIGGER trg_order_history_append_only
        BEFORE UPDATE OR DELETE ON order_status_history
        FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS order_status_history CASCADE;")
    op.execute("DROP TABLE IF EXISTS orders CASCADE;")
