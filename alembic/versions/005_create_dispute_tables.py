"""005: create disputes, dispute_evidence and dispute_messages tables

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE disputes (
            id              VARCHAR(64)     PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders(id),
            reporter_id     VARCHAR(64)     NOT NULL,
            reported_id     VARCHAR(64)     NOT NULL,
            category        VARCHAR(30)     NOT NULL,
            description     TEXT            NOT NULL,
            status          VARCHAR(20)     NOT NULL DEFAULT 'open',
            priority        VARCHAR(10)     NOT NULL DEFAULT 'medium',
            resolution      TEXT,
            refund_amount   BIGINT,
            resolved_by     VARCHAR(64),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            resolved_at     TIMESTAMPTZ,
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_disputes_category CHECK (
                category IN ('item_not_received', 'item_not_as_described', 'payment_issue', 'other')
            ),
            CONSTRAINT ck_disputes_status CHECK (status IN ('open', 'investigating', 'resolved', 'closed')),
            CONSTRAINT ck_disputes_priority CHECK (priority IN ('low', 'medium', 'high')),
            CONSTRAINT ck_disputes_refund_non_negative CHECK (refund_amount IS NULL OR refund_amount >= 0)
        );
    """)
    # One live dispute per order
    op.execute("""
        CREATE UNIQUE INDEX uq_disputes_order_active
        ON disputes (order_id)
        WHERE status <> 'closed';
    """)
    op.execute("CREATE INDEX idx_disputes_reporter ON disputes (reporter_id, created_at DESC);")
    op.execute("CREATE INDEX idx_disputes_reported ON disputes (reported_id, created_at DESC);")
    op.execute("CREATE INDEX idx_disputes_status ON disputes (status, priority, created_at);")
    op.execute("""
        CREATE TRIGGER trg_disputes_updated_at
        BEFORE UPDATE ON disputes
        FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE dispute_evidence (
            id              VARCHAR(64)     PRIMARY KEY,
            dispute_id      VARCHAR(64)     NOT NULL REFERENCES disputes(id),
            user_id         VARCHAR(64)     NOT NULL,
            evidence_type   VARCHAR(10)     NOT NULL,
            content         TEXT            NOT NULL,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_dispute_evidence_type CHECK (evidence_type IN ('image', 'document', 'text'))
        );
    """)
    op.execute("CREATE INDEX idx_dispute_evidence_dispute ON dispute_evidence (dispute_id, created_at);")

    op.execute("""
        CREATE TABLE dispute_messages (
            id                  VARCHAR(64)     PRIMARY KEY,
            dispute_id          VARCHAR(64)     NOT NULL REFERENCES disputes(id),
            sender_id           VARCHAR(64)     NOT NULL,
            content             TEXT            NOT NULL,
            is_system_message   BOOLEAN         NOT NULL DEFAULT FALSE,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_dispute_messages_dispute ON dispute_messages (dispute_id, created_at);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS dispute_messages CASCADE;")
    op.execute("DROP TABLE IF EXISTS dispute_evidence CASCADE;")
    op.execute("DROP TABLE IF EXISTS disputes CASCADE;")
