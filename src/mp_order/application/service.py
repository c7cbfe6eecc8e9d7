"""OrderService — the order lifecycle state machine and its ledger side effects.

Every status change is a conditional write (expected → target). The ledger
postings a transition triggers run in the same transaction as the status
write, so a settled order and its ledger entries commit or roll back
together. Events are published after commit.

``apply_transition`` is the building block: it never commits, so other
services (delivery, dispute) can combine it with their own writes in one
transaction. ``transition`` is the standalone, committing form.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.cents import validate_amount
from src.mp_common.enums import LedgerEntryType, LedgerParty, OrderStatus
from src.mp_common.errors import (
    ForbiddenError,
    InvalidOrderError,
    InvalidTransitionError,
    OrderNotFoundError,
    StaleStateError,
    StoreUnavailableError,
)
from src.mp_common.events import ORDER_TRANSITIONED, DomainEvent, EventPublisher, RedisEventPublisher
from src.mp_common.id_generator import ORDER_PREFIX, generate_id
from src.mp_common.retry import retry_idempotent
from src.mp_ledger.application.service import EscrowLedgerService
from src.mp_ledger.domain.fees import platform_fee_for
from src.mp_ledger.domain.models import LedgerEntry
from src.mp_order.domain.models import Order, Resolution, StatusHistoryEntry
from src.mp_order.domain.repository import OrderRepositoryProtocol
from src.mp_order.domain.state_machine import validate_transition
from src.mp_order.infrastructure.persistence import OrderRepository

logger = logging.getLogger(__name__)

SYSTEM_CALLER = "system"
CANCEL_RESOLUTION_ID = "cancel"
RECONCILE_RESOLUTION_ID = "reconcile"

_S = OrderStatus


class OrderService:
    def __init__(
        self,
        repo: OrderRepositoryProtocol | None = None,
        ledger: EscrowLedgerService | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._repo: OrderRepositoryProtocol = repo or OrderRepository()
        self._ledger = ledger or EscrowLedgerService()
        self._publisher: EventPublisher = publisher or RedisEventPublisher()

    # ------------------------------------------------------------------
    # Creation and payment
    # ------------------------------------------------------------------

    async def create_order(
        self,
        db: AsyncSession,
        buyer_id: str,
        seller_id: str,
        item_id: str,
        total_amount: int,
    ) -> Order:
        if buyer_id == seller_id:
            raise InvalidOrderError("buyer and seller must differ")
        if not item_id:
            raise InvalidOrderError("item_id is required")
        try:
            validate_amount(total_amount)
        except ValueError as exc:
            raise InvalidOrderError(str(exc)) from None

        platform_fee = platform_fee_for(total_amount)
        draft = Order(
            id=generate_id(ORDER_PREFIX),
            buyer_id=buyer_id,
            seller_id=seller_id,
            item_id=item_id,
            total_amount=total_amount,
            platform_fee=platform_fee,
            seller_amount=total_amount - platform_fee,
        )
        try:
            order = await self._repo.create(db, draft)
            await self._repo.append_history(
                db,
                StatusHistoryEntry(
                    id=None, order_id=order.id, status=order.status,
                    created_by=buyer_id, notes="Order created",
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Order created: id=%s buyer=%s seller=%s total=%d",
            order.id, buyer_id, seller_id, total_amount,
        )
        return order

    async def confirm_payment(
        self, db: AsyncSession, order_id: str, payment_reference: str, caller: str = SYSTEM_CALLER
    ) -> Order:
        """pending → paid plus the escrow hold, atomically.

        A redelivered confirmation carrying the same payment reference returns
        the order unchanged.
        """
        if not payment_reference:
            raise InvalidOrderError("payment_reference is required")

        async def attempt() -> tuple[Order, bool]:
            try:
                order = await self._repo.compare_and_set_status(
                    db, order_id, _S.PENDING.value, _S.PAID.value, payment_reference
                )
                if order is None:
                    current = await self._repo.get_by_id(db, order_id)
                    if current is None:
                        raise OrderNotFoundError(order_id)
                    if current.payment_reference == payment_reference:
                        await db.rollback()
                        return current, False
                    raise InvalidTransitionError(order_id, current.status, _S.PAID.value, caller)
                await self._ledger.hold(db, order_id, order.total_amount, order.buyer_id)
                await self._append_history(db, order_id, order.status, caller, "Payment captured")
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            return order, True

        order, applied = await retry_idempotent(f"confirm_payment {order_id}", attempt)
        if applied:
            logger.info("Order %s paid (ref=%s)", order_id, payment_reference)
            await self.publish_transition(order, _S.PENDING.value, caller)
        else:
            logger.info("Payment confirmation replay for order %s (ref=%s)", order_id, payment_reference)
        return order

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def apply_transition(
        self,
        db: AsyncSession,
        order_id: str,
        expected: str,
        target: str,
        caller: str,
        notes: str | None = None,
        resolution: Resolution | None = None,
        location: tuple[float, float] | None = None,
    ) -> Order:
        """Conditional status write plus ledger side effects. Does not commit."""
        current = await self._repo.get_by_id(db, order_id)
        if current is None:
            raise OrderNotFoundError(order_id)
        validate_transition(order_id, expected, target, caller, has_resolution=resolution is not None)
        if current.status != expected:
            raise StaleStateError(order_id, expected, current.status)

        order = await self._repo.compare_and_set_status(db, order_id, expected, target)
        if order is None:
            latest = await self._repo.get_by_id(db, order_id)
            actual = latest.status if latest else "missing"
            logger.warning("Order %s lost transition race %s -> %s (now %s)", order_id, expected, target, actual)
            raise StaleStateError(order_id, expected, actual)

        await self._post_ledger_effect(db, order, expected, resolution)
        latitude, longitude = location if location else (None, None)
        await self._repo.append_history(
            db,
            StatusHistoryEntry(
                id=None, order_id=order_id, status=target, created_by=caller,
                notes=notes, latitude=latitude, longitude=longitude,
            ),
        )
        logger.info("Order %s: %s -> %s by %s", order_id, expected, target, caller)
        return order

    async def transition(
        self,
        db: AsyncSession,
        order_id: str,
        expected: str,
        target: str,
        caller: str,
        notes: str | None = None,
        resolution: Resolution | None = None,
    ) -> Order:
        try:
            order = await self.apply_transition(
                db, order_id, expected, target, caller, notes=notes, resolution=resolution
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        await self.publish_transition(order, expected, caller)
        return order

    async def cancel_order(self, db: AsyncSession, order_id: str, caller_id: str) -> Order:
        order = await self.get_order(db, order_id)
        if order.party_of(caller_id) is None:
            raise ForbiddenError("Only the buyer or seller can cancel an order")
        return await self.transition(
            db, order_id, order.status, _S.CANCELLED.value, caller_id, notes="Cancelled by participant"
        )

    async def complete_delivered(self, db: AsyncSession, order_id: str) -> Order | None:
        """delivered → completed with release.

        Runs after the delivery redemption committed, so it never raises for a
        lost race or an unavailable store: it returns None and the order stays
        ``delivered`` until ``settle`` completes it.
        """
        try:
            return await retry_idempotent(
                f"complete {order_id}",
                lambda: self.transition(
                    db, order_id, _S.DELIVERED.value, _S.COMPLETED.value, SYSTEM_CALLER,
                    notes="Completed on delivery",
                ),
            )
        except StaleStateError as exc:
            logger.warning("Order %s not completed after delivery: %s", order_id, exc.message)
            return None
        except StoreUnavailableError:
            logger.error("Order %s left delivered with escrow held; settle it to complete", order_id)
            return None

    async def settle(self, db: AsyncSession, order_id: str) -> list[LedgerEntry]:
        """Re-issue the ledger side effect of a terminal order (reconciliation).

        A ``delivered`` order whose automatic completion never committed is
        completed here, with its release. Returns the settlement entries; a
        no-op when they already exist.
        """
        completed: list[Order] = []

        async def attempt() -> list[LedgerEntry]:
            completed.clear()
            try:
                order = await self.get_order(db, order_id)
                if order.status == _S.DELIVERED.value:
                    order = await self.apply_transition(
                        db, order_id, _S.DELIVERED.value, _S.COMPLETED.value, SYSTEM_CALLER,
                        notes="Completed by reconciliation",
                    )
                    completed.append(order)
                if not order.is_terminal:
                    raise InvalidTransitionError(order_id, order.status, "settled", SYSTEM_CALLER)
                entries = await self._ledger.entries_for_order(db, order_id)
                anchor = next(
                    (
                        e for e in entries
                        if e.entry_type == LedgerEntryType.DEBIT.value
                        and e.party == LedgerParty.PLATFORM.value
                    ),
                    None,
                )
                if anchor is not None:
                    posted = [e for e in entries if e.idempotency_key == anchor.idempotency_key]
                elif order.status == _S.COMPLETED.value:
                    posted = await self._ledger.release(db, order_id, order.seller_id)
                elif order.status == _S.REFUNDED.value:
                    posted = await self._ledger.refund(
                        db, order_id, order.total_amount, RECONCILE_RESOLUTION_ID, order.seller_id
                    )
                elif any(e.entry_type == LedgerEntryType.ESCROW_HOLD.value for e in entries):
                    posted = await self._ledger.refund(
                        db, order_id, order.total_amount, CANCEL_RESOLUTION_ID, order.seller_id
                    )
                else:
                    posted = []
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            logger.info("Order %s reconciled: %d settlement entries", order_id, len(posted))
            return posted

        posted = await retry_idempotent(f"settle {order_id}", attempt)
        for order in completed:
            await self.publish_transition(order, _S.DELIVERED.value, SYSTEM_CALLER)
        return posted

    async def publish_transition(self, order: Order, previous: str, caller: str) -> None:
        await self._publisher.publish(
            DomainEvent(
                event_type=ORDER_TRANSITIONED,
                order_id=order.id,
                payload={"from": previous, "to": order.status, "caller": caller},
            )
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, db: AsyncSession, order_id: str) -> Order:
        order = await self._repo.get_by_id(db, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_order_for_user(
        self, db: AsyncSession, order_id: str, user_id: str, is_admin: bool = False
    ) -> Order:
        order = await self.get_order(db, order_id)
        if not is_admin and order.party_of(user_id) is None:
            # Non-participants cannot tell a foreign order from a missing one
            raise OrderNotFoundError(order_id)
        return order

    async def list_orders_for_user(
        self, db: AsyncSession, user_id: str, status: str | None = None, limit: int = 50
    ) -> list[Order]:
        return await self._repo.list_for_user(db, user_id, status, limit)

    async def history(self, db: AsyncSession, order_id: str) -> list[StatusHistoryEntry]:
        return await self._repo.list_history(db, order_id)

    async def append_note(
        self,
        db: AsyncSession,
        order_id: str,
        status: str,
        caller: str,
        notes: str | None = None,
        location: tuple[float, float] | None = None,
    ) -> StatusHistoryEntry:
        """Record a progress step that does not change the order status. Does not commit."""
        latitude, longitude = location if location else (None, None)
        return await self._repo.append_history(
            db,
            StatusHistoryEntry(
                id=None, order_id=order_id, status=status, created_by=caller,
                notes=notes, latitude=latitude, longitude=longitude,
            ),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _append_history(
        self, db: AsyncSession, order_id: str, status: str, caller: str, notes: str | None
    ) -> None:
        await self._repo.append_history(
            db,
            StatusHistoryEntry(id=None, order_id=order_id, status=status, created_by=caller, notes=notes),
        )

    async def _post_ledger_effect(
        self, db: AsyncSession, order: Order, previous: str, resolution: Resolution | None
    ) -> None:
        if order.status == _S.COMPLETED.value:
            if resolution is not None and resolution.refund_amount > 0:
                await self._ledger.refund(
                    db, order.id, resolution.refund_amount, resolution.resolution_id, order.seller_id
                )
            else:
                await self._ledger.release(db, order.id, order.seller_id)
        elif order.status == _S.REFUNDED.value:
            resolution_id = resolution.resolution_id if resolution else RECONCILE_RESOLUTION_ID
            await self._ledger.refund(db, order.id, order.total_amount, resolution_id, order.seller_id)
        elif order.status == _S.CANCELLED.value and previous != _S.PENDING.value:
            await self._ledger.refund(
                db, order.id, order.total_amount, CANCEL_RESOLUTION_ID, order.seller_id
            )


_service: OrderService | None = None


def get_order_service() -> OrderService:
    global _service  # noqa: PLW0603
    if _service is None:
        _service = OrderService()
    return _service
