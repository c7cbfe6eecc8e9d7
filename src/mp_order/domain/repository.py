"""Repository Protocol — dependency inversion for testability.

Unit tests inject a fake that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_order.domain.models import Order, StatusHistoryEntry


class OrderRepositoryProtocol(Protocol):
    async def create(self, db: AsyncSession, order: Order) -> Order: ...

    async def get_by_id(self, db: AsyncSession, order_id: str) -> Order | None: ...

    async def compare_and_set_status(
        self,
        db: AsyncSession,
        order_id: str,
        expected: str,
        target: str,
        payment_reference: str | None = None,
    ) -> Order | None:
        """Set status to ``target`` only if it is still ``expected``.

        Returns the updated order, or None when the stored status differs
        (or the order does not exist).
        """
        ...

    async def list_for_user(
        self, db: AsyncSession, user_id: str, status: str | None, limit: int
    ) -> list[Order]: ...

    async def append_history(
        self, db: AsyncSession, entry: StatusHistoryEntry
    ) -> StatusHistoryEntry: ...

    async def list_history(self, db: AsyncSession, order_id: str) -> list[StatusHistoryEntry]: ...
