"""DisputeService — freezes an order until an admin resolves the dispute.

Opening a dispute force-moves the order to ``disputed`` through the same
conditional write every other transition uses, so a dispute and an automatic
completion racing from ``delivered`` have exactly one winner. Only
``resolve`` can take the order out again, carrying the refund decision into
the ledger.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.enums import DisputePriority, DisputeStatus, OrderStatus
from src.mp_common.errors import (
    AmountMismatchError,
    AppError,
    DisputeAlreadyOpenError,
    DisputeNotEligibleError,
    DisputeNotFoundError,
    DisputeNotOpenError,
    ForbiddenError,
)
from src.mp_common.events import (
    DISPUTE_OPENED,
    DISPUTE_RESOLVED,
    DomainEvent,
    EventPublisher,
    RedisEventPublisher,
)
from src.mp_common.id_generator import DISPUTE_PREFIX, EVIDENCE_PREFIX, MESSAGE_PREFIX, generate_id
from src.mp_dispute.domain.models import Dispute, DisputeDetail, DisputeEvidence, DisputeMessage
from src.mp_dispute.domain.repository import DisputeRepositoryProtocol
from src.mp_dispute.infrastructure.persistence import DisputeRepository
from src.mp_order.application.service import OrderService, get_order_service
from src.mp_order.domain.models import Resolution
from src.mp_order.domain.state_machine import DISPUTABLE_STATUSES

logger = logging.getLogger(__name__)

_D = DisputeStatus
_ACTIVE = [_D.OPEN.value, _D.INVESTIGATING.value]


class DisputeService:
    def __init__(
        self,
        repo: DisputeRepositoryProtocol | None = None,
        orders: OrderService | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._repo: DisputeRepositoryProtocol = repo or DisputeRepository()
        self._orders = orders or get_order_service()
        self._publisher: EventPublisher = publisher or RedisEventPublisher()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        db: AsyncSession,
        order_id: str,
        reporter_id: str,
        category: str,
        description: str,
        evidence: list[tuple[str, str]] | None = None,
    ) -> Dispute:
        """Open a dispute and freeze the order.

        ``evidence`` is a list of (evidence_type, content) pairs.
        """
        try:
            order = await self._orders.get_order(db, order_id)
            party = order.party_of(reporter_id)
            if party is None:
                raise ForbiddenError("Only the buyer or seller can open a dispute")
            reported_id = order.seller_id if party == "buyer" else order.buyer_id

            active = await self._repo.get_active_for_order(db, order_id)
            if active is not None:
                raise DisputeAlreadyOpenError(order_id, active.id)
            if order.status not in DISPUTABLE_STATUSES:
                raise DisputeNotEligibleError(order_id, order.status)

            dispute = await self._repo.create(
                db,
                Dispute(
                    id=generate_id(DISPUTE_PREFIX),
                    order_id=order_id,
                    reporter_id=reporter_id,
                    reported_id=reported_id,
                    category=category,
                    description=description,
                    priority=DisputePriority.MEDIUM.value,
                ),
            )
            if dispute is None:
                winner = await self._repo.get_active_for_order(db, order_id)
                raise DisputeAlreadyOpenError(order_id, winner.id if winner else "unknown")

            for evidence_type, content in evidence or []:
                await self._insert_evidence(db, dispute.id, reporter_id, evidence_type, content)
            await self._system_message(
                db, dispute.id, f"Dispute opened by the {party} ({category})."
            )
            frozen = await self._orders.apply_transition(
                db, order_id, order.status, OrderStatus.DISPUTED.value, reporter_id,
                notes=f"Dispute {dispute.id} opened",
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Dispute %s opened on order %s by %s", dispute.id, order_id, reporter_id)
        await self._orders.publish_transition(frozen, order.status, reporter_id)
        await self._publisher.publish(
            DomainEvent(
                event_type=DISPUTE_OPENED,
                order_id=order_id,
                payload={"dispute_id": dispute.id, "reporter_id": reporter_id, "category": category},
            )
        )
        return dispute

    async def start_investigation(
        self, db: AsyncSession, dispute_id: str, resolver_id: str, priority: str | None = None
    ) -> Dispute:
        try:
            dispute = await self._repo.update_status(
                db, dispute_id, [_D.OPEN.value], _D.INVESTIGATING.value, priority
            )
            if dispute is None:
                raise await self._not_open(db, dispute_id)
            await self._system_message(db, dispute_id, "An administrator is investigating this dispute.")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Dispute %s under investigation by %s (priority=%s)", dispute_id, resolver_id, dispute.priority)
        return dispute

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: str,
        resolver_id: str,
        resolution: str,
        refund_amount: int | None = None,
    ) -> Dispute:
        """Resolve and settle: full refund → refunded; otherwise completed.

        A partial refund goes to the buyer and the remainder settles to the
        seller under the normal fee policy.
        """
        refund = refund_amount or 0
        try:
            current = await self._repo.get_by_id(db, dispute_id)
            if current is None:
                raise DisputeNotFoundError(dispute_id)
            if not current.is_active:
                raise DisputeNotOpenError(dispute_id, current.status)
            order = await self._orders.get_order(db, current.order_id)
            if refund < 0 or refund > order.total_amount:
                raise AmountMismatchError(order.id, refund, order.total_amount)

            dispute = await self._repo.resolve(db, dispute_id, _ACTIVE, resolution, refund, resolver_id)
            if dispute is None:
                raise await self._not_open(db, dispute_id)

            target = (
                OrderStatus.REFUNDED.value if refund == order.total_amount else OrderStatus.COMPLETED.value
            )
            settled = await self._orders.apply_transition(
                db, order.id, OrderStatus.DISPUTED.value, target, resolver_id,
                notes=f"Dispute {dispute_id} resolved: {resolution}",
                resolution=Resolution(resolution_id=dispute_id, refund_amount=refund),
            )
            await self._system_message(
                db, dispute_id, f"Dispute resolved: {resolution} (refund {refund} cents)."
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Dispute %s resolved by %s: order %s -> %s refund=%d",
            dispute_id, resolver_id, order.id, target, refund,
        )
        await self._orders.publish_transition(settled, OrderStatus.DISPUTED.value, resolver_id)
        await self._publisher.publish(
            DomainEvent(
                event_type=DISPUTE_RESOLVED,
                order_id=order.id,
                payload={"dispute_id": dispute_id, "order_status": target, "refund_amount": refund},
            )
        )
        return dispute

    async def close(self, db: AsyncSession, dispute_id: str, resolver_id: str) -> Dispute:
        try:
            dispute = await self._repo.update_status(db, dispute_id, [_D.RESOLVED.value], _D.CLOSED.value)
            if dispute is None:
                raise await self._not_open(db, dispute_id)
            await self._system_message(db, dispute_id, "Dispute closed.")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Dispute %s closed by %s", dispute_id, resolver_id)
        return dispute

    # ------------------------------------------------------------------
    # Evidence and messages
    # ------------------------------------------------------------------

    async def add_evidence(
        self,
        db: AsyncSession,
        dispute_id: str,
        user_id: str,
        evidence_type: str,
        content: str,
        is_admin: bool = False,
    ) -> DisputeEvidence:
        try:
            dispute = await self._visible_dispute(db, dispute_id, user_id, is_admin)
            if not dispute.is_active:
                raise DisputeNotOpenError(dispute_id, dispute.status)
            evidence = await self._insert_evidence(db, dispute_id, user_id, evidence_type, content)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return evidence

    async def post_message(
        self,
        db: AsyncSession,
        dispute_id: str,
        sender_id: str,
        content: str,
        is_admin: bool = False,
    ) -> DisputeMessage:
        try:
            dispute = await self._visible_dispute(db, dispute_id, sender_id, is_admin)
            if dispute.status == _D.CLOSED.value:
                raise DisputeNotOpenError(dispute_id, dispute.status)
            message = await self._repo.add_message(
                db,
                DisputeMessage(
                    id=generate_id(MESSAGE_PREFIX),
                    dispute_id=dispute_id,
                    sender_id=sender_id,
                    content=content,
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return message

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_dispute(
        self, db: AsyncSession, dispute_id: str, user_id: str, is_admin: bool = False
    ) -> DisputeDetail:
        dispute = await self._visible_dispute(db, dispute_id, user_id, is_admin)
        return DisputeDetail(
            dispute=dispute,
            evidence=await self._repo.list_evidence(db, dispute_id),
            messages=await self._repo.list_messages(db, dispute_id),
        )

    async def list_disputes_for_user(
        self, db: AsyncSession, user_id: str, status: str | None = None, limit: int = 50
    ) -> list[Dispute]:
        return await self._repo.list_for_user(db, user_id, status, limit)

    async def list_queue(self, db: AsyncSession, limit: int = 50) -> list[Dispute]:
        """Active disputes for administrators, high priority first."""
        return await self._repo.list_by_status(db, _ACTIVE, limit)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _visible_dispute(
        self, db: AsyncSession, dispute_id: str, user_id: str, is_admin: bool
    ) -> Dispute:
        dispute = await self._repo.get_by_id(db, dispute_id)
        if dispute is None or not (is_admin or dispute.involves(user_id)):
            raise DisputeNotFoundError(dispute_id)
        return dispute

    async def _not_open(self, db: AsyncSession, dispute_id: str) -> AppError:
        current = await self._repo.get_by_id(db, dispute_id)
        if current is None:
            return DisputeNotFoundError(dispute_id)
        logger.warning("Dispute %s not in an actionable status: %s", dispute_id, current.status)
        return DisputeNotOpenError(dispute_id, current.status)

    async def _insert_evidence(
        self, db: AsyncSession, dispute_id: str, user_id: str, evidence_type: str, content: str
    ) -> DisputeEvidence:
        return await self._repo.add_evidence(
            db,
            DisputeEvidence(
                id=generate_id(EVIDENCE_PREFIX),
                dispute_id=dispute_id,
                user_id=user_id,
                evidence_type=evidence_type,
                content=content,
            ),
        )

    async def _system_message(self, db: AsyncSession, dispute_id: str, content: str) -> None:
        await self._repo.add_message(
            db,
            DisputeMessage(
                id=generate_id(MESSAGE_PREFIX),
                dispute_id=dispute_id,
                sender_id="system",
                content=content,
                is_system_message=True,
            ),
        )


_service: DisputeService | None = None


def get_dispute_service() -> DisputeService:
    global _service  # noqa: PLW0603
    if _service is None:
        _service = DisputeService()
    return _service
