"""Repository Protocol — dependency inversion for testability."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_dispute.domain.models import Dispute, DisputeEvidence, DisputeMessage


class DisputeRepositoryProtocol(Protocol):
    async def create(self, db: AsyncSession, dispute: Dispute) -> Dispute | None:
        """Insert; None when the order already has a dispute that is not closed."""
        ...

    async def get_by_id(self, db: AsyncSession, dispute_id: str) -> Dispute | None: ...

    async def get_active_for_order(self, db: AsyncSession, order_id: str) -> Dispute | None:
        """The order's dispute that is not closed, if any."""
        ...

    async def update_status(
        self,
        db: AsyncSession,
        dispute_id: str,
        expected: list[str],
        target: str,
        priority: str | None = None,
    ) -> Dispute | None:
        """Conditional status write; None when the status is not in ``expected``."""
        ...

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: str,
        expected: list[str],
        resolution: str,
        refund_amount: int,
        resolved_by: str,
    ) -> Dispute | None: ...

    async def list_for_user(
        self, db: AsyncSession, user_id: str, status: str | None, limit: int
    ) -> list[Dispute]: ...

    async def list_by_status(self, db: AsyncSession, statuses: list[str], limit: int) -> list[Dispute]: ...

    async def add_evidence(self, db: AsyncSession, evidence: DisputeEvidence) -> DisputeEvidence: ...

    async def list_evidence(self, db: AsyncSession, dispute_id: str) -> list[DisputeEvidence]: ...

    async def add_message(self, db: AsyncSession, message: DisputeMessage) -> DisputeMessage: ...

    async def list_messages(self, db: AsyncSession, dispute_id: str) -> list[DisputeMessage]: ...
