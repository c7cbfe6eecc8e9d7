"""LedgerRepository — concrete implementation of LedgerRepositoryProtocol.

ledger_entries is append-only: there is no UPDATE or DELETE statement here.
The unique index uq_ledger_order_type_party makes every (order, type, party)
posting happen at most once; INSERT ... ON CONFLICT DO NOTHING returns no row
for the loser of a concurrent or replayed posting.

Transaction ownership: The CALLER (application service) is responsible for
committing or rolling back.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_ledger.domain.models import LedgerEntry, LedgerPosting

_COLUMNS = """
    id, order_id, entry_type, party, account_id, amount,
    status, idempotency_key, description, created_at
"""

_INSERT_ENTRY_SQL = text(f"""
    INSERT INTO ledger_entries
        (order_id, entry_type, party, account_id, amount,
         status, idempotency_key, description)
    VALUES
        (:order_id, :entry_type, :party, :account_id, :amount,
         :status, :idempotency_key, :description)
    ON CONFLICT ON CONSTRAINT uq_ledger_order_type_party DO NOTHING
    RETURNING {_COLUMNS}
""")

_GET_ENTRY_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM ledger_entries
    WHERE order_id = :order_id AND entry_type = :entry_type AND party = :party
""")

_LIST_BY_ORDER_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM ledger_entries
    WHERE order_id = :order_id
    ORDER BY id ASC
""")

_SUM_FOR_ACCOUNT_SQL = text("""
    SELECT COALESCE(SUM(amount), 0)
    FROM ledger_entries
    WHERE account_id = :account_id AND status = 'completed'
""")


def _row_to_entry(row: Any) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        order_id=row.order_id,
        entry_type=row.entry_type,
        party=row.party,
        account_id=row.account_id,
        amount=row.amount,
        status=row.status,
        idempotency_key=row.idempotency_key,
        description=row.description,
        created_at=row.created_at,
    )


class LedgerRepository:
    """Concrete repository — raw SQL over the append-only ledger_entries table."""

    async def insert_entry(
        self, db: AsyncSession, posting: LedgerPosting
    ) -> LedgerEntry | None:
        result = await db.execute(
            _INSERT_ENTRY_SQL,
            {
                "order_id": posting.order_id,
                "entry_type": posting.entry_type,
                "party": posting.party,
                "account_id": posting.account_id,
                "amount": posting.amount,
                "status": posting.status,
                "idempotency_key": posting.idempotency_key,
                "description": posting.description,
            },
        )
        row = result.fetchone()
        return _row_to_entry(row) if row else None

    async def get_entry(
        self, db: AsyncSession, order_id: str, entry_type: str, party: str
    ) -> LedgerEntry | None:
        result = await db.execute(
            _GET_ENTRY_SQL,
            {"order_id": order_id, "entry_type": entry_type, "party": party},
        )
        row = result.fetchone()
        return _row_to_entry(row) if row else None

    async def list_by_order(self, db: AsyncSession, order_id: str) -> list[LedgerEntry]:
        result = await db.execute(_LIST_BY_ORDER_SQL, {"order_id": order_id})
        return [_row_to_entry(row) for row in result.fetchall()]

    async def sum_for_account(self, db: AsyncSession, account_id: str) -> int:
        result = await db.execute(_SUM_FOR_ACCOUNT_SQL, {"account_id": account_id})
        return int(result.scalar_one())
