"""Repository Protocol — dependency inversion for testability.

Unit tests inject a fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_ledger.domain.models import LedgerEntry, LedgerPosting


class LedgerRepositoryProtocol(Protocol):
    async def insert_entry(
        self, db: AsyncSession, posting: LedgerPosting
    ) -> LedgerEntry | None:
        """Append one entry; None when (order_id, entry_type, party) already exists."""
        ...

    async def get_entry(
        self, db: AsyncSession, order_id: str, entry_type: str, party: str
    ) -> LedgerEntry | None: ...

    async def list_by_order(self, db: AsyncSession, order_id: str) -> list[LedgerEntry]: ...

    async def sum_for_account(self, db: AsyncSession, account_id: str) -> int: ...
