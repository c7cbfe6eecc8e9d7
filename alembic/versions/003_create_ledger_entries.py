"""003: create ledger_entries table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE ledger_entries (
            id              BIGSERIAL       PRIMARY KEY,
            order_id        VARCHAR(64)     NOT NULL REFERENCES orders(id),
            entry_type      VARCHAR(20)     NOT NULL,
            party           VARCHAR(10)     NOT NULL,
            account_id      VARCHAR(64)     NOT NULL,
            amount          BIGINT          NOT NULL,
            status          VARCHAR(10)     NOT NULL DEFAULT 'completed',
            idempotency_key VARCHAR(100)    NOT NULL,
            description     VARCHAR(500),
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_ledger_entry_type CHECK (
                entry_type IN ('credit', 'debit', 'escrow_hold', 'escrow_release', 'payout', 'refund')
            ),
            CONSTRAINT ck_ledger_party CHECK (party IN ('buyer', 'seller', 'platform')),
            CONSTRAINT ck_ledger_status CHECK (status IN ('pending', 'completed', 'failed')),
            CONSTRAINT ck_ledger_sign CHECK (
                (entry_type IN ('debit', 'escrow_hold') AND amount < 0)
                OR (entry_type IN ('credit', 'escrow_release', 'payout', 'refund') AND amount > 0)
            ),
            CONSTRAINT uq_ledger_order_type_party UNIQUE (order_id, entry_type, party)
        );
    """)
    op.execute("CREATE INDEX idx_ledger_account ON ledger_entries (account_id, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_ledger_append_only
        BEFORE UPDATE OR DELETE ON ledger_entries
        FOR EACH ROW EXECUTE FUNCTION fn_reject_mutation();
    """)
    op.execute("COMMENT ON TABLE ledger_entries IS 'Escrow ledger: append-only, signed cents, one entry per (order, type, party)';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ledger_entries CASCADE;")
