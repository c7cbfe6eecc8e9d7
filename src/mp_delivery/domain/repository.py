"""Repository and collaborator Protocols for mp_delivery.

Unit tests inject fakes that conform to these Protocols.
Infrastructure layer provides the real implementations.
"""

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_delivery.domain.models import DeliveryJob, DeliverySchedule, DeliveryToken


class DeliveryRepositoryProtocol(Protocol):
    # --- tokens ---

    async def insert_token(self, db: AsyncSession, token: DeliveryToken) -> DeliveryToken | None:
        """Insert; None when a token of that (order_id, kind) already exists."""
        ...

    async def get_token(self, db: AsyncSession, order_id: str, kind: str) -> DeliveryToken | None: ...

    async def list_tokens(self, db: AsyncSession, order_id: str) -> list[DeliveryToken]: ...

    async def mark_redeemed(
        self, db: AsyncSession, order_id: str, kind: str, rider_id: str
    ) -> DeliveryToken | None:
        """Set redeemed_at/redeemed_by only while redeemed_at IS NULL; None for the loser."""
        ...

    # --- schedules ---

    async def get_schedule(self, db: AsyncSession, order_id: str) -> DeliverySchedule | None: ...

    async def save_pickup(
        self, db: AsyncSession, order_id: str, slot: str, instructions: str | None
    ) -> DeliverySchedule: ...

    async def save_delivery(
        self,
        db: AsyncSession,
        order_id: str,
        slot: str,
        address: str,
        instructions: str | None,
    ) -> DeliverySchedule: ...

    async def assign_rider(
        self, db: AsyncSession, order_id: str, rider_id: str, assignable_statuses: list[str]
    ) -> DeliverySchedule | None:
        """Claim an unassigned schedule whose order is in ``assignable_statuses``; None otherwise."""
        ...

    async def set_rider_status(
        self, db: AsyncSession, order_id: str, rider_id: str, rider_status: str
    ) -> DeliverySchedule | None:
        """Update only when ``rider_id`` is the assigned rider; None otherwise."""
        ...

    async def list_unassigned(
        self, db: AsyncSession, order_statuses: list[str], limit: int
    ) -> list[DeliveryJob]: ...

    async def list_for_rider(self, db: AsyncSession, rider_id: str, limit: int) -> list[DeliveryJob]: ...


class NotificationSender(Protocol):
    async def send(
        self, recipient_id: str, subject: str, body: str, data: dict[str, Any]
    ) -> None: ...
