"""DeliveryService — single-use pickup / delivery tokens and the rider workflow.

Redemption order of checks:
  1. token exists for (order, kind)             → TokenNotFound
  2. not redeemed yet, code matches             → TokenAlreadyUsed / InvalidToken
  3. order is in the kind's pre-state           → TokenWrongOrderState
  4. conditional mark-redeemed                  → TokenAlreadyUsed for the race loser
  5. conditional order transition (same transaction as 4)
After a delivery redemption commits, the order is completed in its own
conditional write (delivered → completed); a dispute that got there first
simply wins.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.datetime_utils import utc_now
from src.mp_common.enums import OrderStatus, RiderStatus, TokenKind
from src.mp_common.errors import (
    DeliveryAlreadyAssignedError,
    DeliveryNotAssignedError,
    ForbiddenError,
    InvalidOrderError,
    InvalidTokenError,
    InvalidTransitionError,
    OrderNotFoundError,
    SlotNotOfferedError,
    StaleStateError,
    TokenAlreadyUsedError,
    TokenNotFoundError,
    TokenWrongOrderStateError,
)
from src.mp_common.events import TOKEN_REDEEMED, DomainEvent, EventPublisher, RedisEventPublisher
from src.mp_common.retry import retry_idempotent
from src.mp_delivery.domain.codes import (
    codes_match,
    decode_payload,
    encode_payload,
    generate_verification_code,
)
from src.mp_delivery.domain.models import (
    REDEEM_PRE_STATE,
    REDEEM_TARGET,
    RIDER_STATUS_TOKEN_KIND,
    DeliveryJob,
    DeliverySchedule,
    DeliveryToken,
)
from src.mp_delivery.domain.repository import DeliveryRepositoryProtocol, NotificationSender
from src.mp_delivery.domain.slots import generate_time_slots
from src.mp_delivery.infrastructure.notifications import notification_sender_from_settings
from src.mp_delivery.infrastructure.persistence import DeliveryRepository
from src.mp_gateway.auth.jwt_handler import create_schedule_token
from src.mp_order.application.service import SYSTEM_CALLER, OrderService, get_order_service
from src.mp_order.domain.models import Order, StatusHistoryEntry

logger = logging.getLogger(__name__)

_S = OrderStatus

# Orders a rider can pick up work for
ASSIGNABLE_STATUSES = [_S.PICKUP_SCHEDULED.value, _S.DELIVERY_SCHEDULED.value]
# Order statuses in which the buyer may choose (or change) the delivery slot
DELIVERY_SCHEDULABLE = frozenset(
    {_S.PAID.value, _S.PICKUP_SCHEDULED.value, _S.PICKED_UP.value, _S.DELIVERY_SCHEDULED.value}
)
# Rider progress steps that only go to history
_PROGRESS_STATUSES = frozenset(
    {
        RiderStatus.EN_ROUTE_TO_PICKUP.value,
        RiderStatus.AT_PICKUP.value,
        RiderStatus.EN_ROUTE_TO_DELIVERY.value,
        RiderStatus.AT_DELIVERY.value,
        RiderStatus.FAILED.value,
    }
)


class DeliveryService:
    def __init__(
        self,
        repo: DeliveryRepositoryProtocol | None = None,
        orders: OrderService | None = None,
        notifier: NotificationSender | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._repo: DeliveryRepositoryProtocol = repo or DeliveryRepository()
        self._orders = orders or get_order_service()
        self._notifier: NotificationSender = notifier or notification_sender_from_settings()
        self._publisher: EventPublisher = publisher or RedisEventPublisher()

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    async def issue_tokens(self, db: AsyncSession, order_id: str) -> list[DeliveryToken]:
        """Create the pickup (seller) and delivery (buyer) tokens of a paid order.

        Idempotent: an existing pair is returned unchanged and holders are not
        notified again.
        """

        async def attempt() -> tuple[Order, list[DeliveryToken], bool]:
            try:
                order = await self._orders.get_order(db, order_id)
                existing = await self._repo.list_tokens(db, order_id)
                if len(existing) == len(TokenKind):
                    return order, existing, False
                if order.status != _S.PAID.value:
                    raise StaleStateError(order_id, _S.PAID.value, order.status)

                issued_at = utc_now()
                tokens = []
                for kind, holder_id in (
                    (TokenKind.PICKUP.value, order.seller_id),
                    (TokenKind.DELIVERY.value, order.buyer_id),
                ):
                    code = generate_verification_code()
                    token = await self._repo.insert_token(
                        db,
                        DeliveryToken(
                            order_id=order_id,
                            kind=kind,
                            verification_code=code,
                            payload=encode_payload(order_id, kind, issued_at, holder_id, code),
                            holder_id=holder_id,
                            issued_at=issued_at,
                        ),
                    )
                    if token is None:
                        token = await self._repo.get_token(db, order_id, kind)
                    if token is None:
                        raise TokenNotFoundError(order_id, kind)
                    tokens.append(token)
                await db.commit()
            except Exception:
                await db.rollback()
                raise
            return order, tokens, True

        order, tokens, fresh = await retry_idempotent(f"issue_tokens {order_id}", attempt)
        if fresh:
            logger.info("Delivery tokens issued for order %s", order_id)
            await self._notify_holders(order, tokens)
        return tokens

    async def resend_notifications(self, db: AsyncSession, order_id: str) -> list[DeliveryToken]:
        """Notify the holders of unredeemed tokens again (lost message, new device)."""
        order = await self._orders.get_order(db, order_id)
        tokens = [t for t in await self._repo.list_tokens(db, order_id) if not t.is_redeemed]
        if not tokens:
            raise TokenNotFoundError(order_id, "unredeemed")
        await self._notify_holders(order, tokens)
        return tokens

    async def tokens_for_holder(
        self, db: AsyncSession, order_id: str, holder_id: str
    ) -> list[DeliveryToken]:
        return [t for t in await self._repo.list_tokens(db, order_id) if t.holder_id == holder_id]

    def offered_slots(self, token: DeliveryToken) -> list[str]:
        return generate_time_slots(token.issued_at.date())

    def schedule_token(self, token: DeliveryToken) -> str:
        return create_schedule_token(token.order_id, token.kind, token.holder_id)

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    async def schedule_pickup(
        self,
        db: AsyncSession,
        order_id: str,
        slot: str,
        instructions: str | None = None,
        holder_id: str | None = None,
    ) -> DeliverySchedule:
        """Record the pickup slot; ``holder_id`` is checked against the token when given."""
        transitioned: Order | None = None
        try:
            order = await self._orders.get_order(db, order_id)
            token = await self._require_token(db, order_id, TokenKind.PICKUP.value)
            self._require_holder(token, holder_id)
            self._require_offered(order_id, token, slot)
            if order.status not in (_S.PAID.value, _S.PICKUP_SCHEDULED.value):
                raise InvalidTransitionError(
                    order_id, order.status, _S.PICKUP_SCHEDULED.value, order.seller_id
                )
            schedule = await self._repo.save_pickup(db, order_id, slot, instructions)
            if order.status == _S.PAID.value:
                transitioned = await self._orders.apply_transition(
                    db, order_id, _S.PAID.value, _S.PICKUP_SCHEDULED.value, order.seller_id,
                    notes=f"Pickup scheduled for {slot}",
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Pickup scheduled: order=%s slot=%s", order_id, slot)
        if transitioned is not None:
            await self._orders.publish_transition(transitioned, _S.PAID.value, order.seller_id)
        return schedule

    async def schedule_delivery(
        self,
        db: AsyncSession,
        order_id: str,
        slot: str,
        address: str,
        instructions: str | None = None,
        holder_id: str | None = None,
    ) -> DeliverySchedule:
        if not address or not address.strip():
            raise InvalidOrderError("delivery address is required")
        transitioned: Order | None = None
        try:
            order = await self._orders.get_order(db, order_id)
            token = await self._require_token(db, order_id, TokenKind.DELIVERY.value)
            self._require_holder(token, holder_id)
            self._require_offered(order_id, token, slot)
            if order.status not in DELIVERY_SCHEDULABLE:
                raise InvalidTransitionError(
                    order_id, order.status, _S.DELIVERY_SCHEDULED.value, order.buyer_id
                )
            schedule = await self._repo.save_delivery(db, order_id, slot, address.strip(), instructions)
            if order.status == _S.PICKED_UP.value:
                transitioned = await self._orders.apply_transition(
                    db, order_id, _S.PICKED_UP.value, _S.DELIVERY_SCHEDULED.value, order.buyer_id,
                    notes=f"Delivery scheduled for {slot}",
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Delivery scheduled: order=%s slot=%s", order_id, slot)
        if transitioned is not None:
            await self._orders.publish_transition(transitioned, _S.PICKED_UP.value, order.buyer_id)
        return schedule

    # ------------------------------------------------------------------
    # Redeem
    # ------------------------------------------------------------------

    async def redeem(
        self,
        db: AsyncSession,
        order_id: str,
        kind: str,
        code: str,
        rider_id: str,
        notes: str | None = None,
        location: tuple[float, float] | None = None,
        holder_id: str | None = None,
    ) -> Order:
        if kind not in REDEEM_PRE_STATE:
            raise InvalidTokenError(order_id, kind, f"unknown token kind {kind!r}")
        pre_state = REDEEM_PRE_STATE[kind]
        target = REDEEM_TARGET[kind]
        published: list[tuple[Order, str]] = []
        try:
            token = await self._require_token(db, order_id, kind)
            if token.is_redeemed:
                raise TokenAlreadyUsedError(order_id, kind)
            if not codes_match(token.verification_code, code):
                logger.warning("Verification code mismatch: order=%s kind=%s rider=%s", order_id, kind, rider_id)
                raise InvalidTokenError(order_id, kind)
            if holder_id is not None and holder_id != token.holder_id:
                raise InvalidTokenError(order_id, kind, "payload holder does not match token")

            order = await self._orders.get_order(db, order_id)
            if order.status != pre_state:
                raise TokenWrongOrderStateError(order_id, kind, order.status, pre_state)

            if await self._repo.mark_redeemed(db, order_id, kind, rider_id) is None:
                logger.warning("Token redemption race lost: order=%s kind=%s rider=%s", order_id, kind, rider_id)
                raise TokenAlreadyUsedError(order_id, kind)

            order = await self._orders.apply_transition(
                db, order_id, pre_state, target, rider_id,
                notes=notes or f"{kind} token redeemed", location=location,
            )
            published.append((order, pre_state))
            await self._repo.set_rider_status(db, order_id, rider_id, target)

            if kind == TokenKind.PICKUP.value:
                schedule = await self._repo.get_schedule(db, order_id)
                if schedule is not None and schedule.delivery_slot:
                    order = await self._orders.apply_transition(
                        db, order_id, _S.PICKED_UP.value, _S.DELIVERY_SCHEDULED.value, SYSTEM_CALLER,
                        notes=f"Delivery already scheduled for {schedule.delivery_slot}",
                    )
                    published.append((order, _S.PICKED_UP.value))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Token redeemed: order=%s kind=%s rider=%s", order_id, kind, rider_id)
        for changed, previous in published:
            await self._orders.publish_transition(changed, previous, rider_id)
        await self._publisher.publish(
            DomainEvent(
                event_type=TOKEN_REDEEMED,
                order_id=order_id,
                payload={"kind": kind, "rider_id": rider_id},
            )
        )
        if target == _S.DELIVERED.value:
            completed = await self._orders.complete_delivered(db, order_id)
            if completed is not None:
                order = completed
        return order

    async def redeem_payload(
        self,
        db: AsyncSession,
        raw_payload: str,
        rider_id: str,
        expected_order_id: str | None = None,
    ) -> Order:
        scanned = decode_payload(raw_payload)
        if expected_order_id is not None and scanned.order_id != expected_order_id:
            raise InvalidTokenError(expected_order_id, scanned.kind, "payload belongs to another order")
        return await self.redeem(
            db,
            scanned.order_id,
            scanned.kind,
            scanned.verification_code,
            rider_id,
            holder_id=scanned.holder_id,
        )

    # ------------------------------------------------------------------
    # Rider surface
    # ------------------------------------------------------------------

    async def list_pending(self, db: AsyncSession, limit: int = 50) -> list[DeliveryJob]:
        return await self._repo.list_unassigned(db, ASSIGNABLE_STATUSES, limit)

    async def list_assigned(self, db: AsyncSession, rider_id: str, limit: int = 50) -> list[DeliveryJob]:
        return await self._repo.list_for_rider(db, rider_id, limit)

    async def assign(self, db: AsyncSession, order_id: str, rider_id: str) -> DeliverySchedule:
        try:
            schedule = await self._repo.assign_rider(db, order_id, rider_id, ASSIGNABLE_STATUSES)
            if schedule is None:
                existing = await self._repo.get_schedule(db, order_id)
                if existing is None or existing.rider_id is None:
                    raise OrderNotFoundError(order_id)
                raise DeliveryAlreadyAssignedError(order_id)
            await self._orders.append_note(
                db, order_id, RiderStatus.ASSIGNED.value, rider_id, notes="Rider assigned"
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Delivery %s assigned to rider %s", order_id, rider_id)
        return schedule

    async def update_status(
        self,
        db: AsyncSession,
        order_id: str,
        rider_id: str,
        status: str,
        notes: str | None = None,
        verification_code: str | None = None,
        location: tuple[float, float] | None = None,
    ) -> DeliverySchedule:
        schedule = await self._repo.get_schedule(db, order_id)
        if schedule is None or schedule.rider_id != rider_id:
            raise DeliveryNotAssignedError(order_id, rider_id)

        kind = RIDER_STATUS_TOKEN_KIND.get(status)
        if kind is not None:
            if not verification_code:
                raise InvalidTokenError(order_id, kind, "verification code required")
            await self.redeem(db, order_id, kind, verification_code, rider_id, notes=notes, location=location)
            refreshed = await self._repo.get_schedule(db, order_id)
            return refreshed or schedule

        if status not in _PROGRESS_STATUSES:
            raise InvalidTransitionError(order_id, schedule.rider_status, status, rider_id)
        try:
            updated = await self._repo.set_rider_status(db, order_id, rider_id, status)
            if updated is None:
                raise DeliveryNotAssignedError(order_id, rider_id)
            await self._orders.append_note(db, order_id, status, rider_id, notes=notes, location=location)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Rider %s reported %s for order %s", rider_id, status, order_id)
        return updated

    async def history(self, db: AsyncSession, order_id: str) -> list[StatusHistoryEntry]:
        await self._orders.get_order(db, order_id)
        return await self._orders.history(db, order_id)

    async def get_schedule(self, db: AsyncSession, order_id: str) -> DeliverySchedule | None:
        return await self._repo.get_schedule(db, order_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _require_token(self, db: AsyncSession, order_id: str, kind: str) -> DeliveryToken:
        token = await self._repo.get_token(db, order_id, kind)
        if token is None:
            raise TokenNotFoundError(order_id, kind)
        return token

    @staticmethod
    def _require_holder(token: DeliveryToken, holder_id: str | None) -> None:
        if holder_id is not None and holder_id != token.holder_id:
            logger.warning(
                "Schedule rejected: %s is not the %s holder of order %s", holder_id, token.kind, token.order_id
            )
            raise ForbiddenError(f"Only the {token.kind} token holder can schedule this order")

    def _require_offered(self, order_id: str, token: DeliveryToken, slot: str) -> None:
        if slot not in self.offered_slots(token):
            raise SlotNotOfferedError(order_id, slot)

    async def _notify_holders(self, order: Order, tokens: list[DeliveryToken]) -> None:
        for token in tokens:
            action = "pickup" if token.kind == TokenKind.PICKUP.value else "delivery"
            data: dict[str, Any] = {
                "order_id": order.id,
                "item_id": order.item_id,
                "kind": token.kind,
                "verification_code": token.verification_code,
                "payload": token.payload,
                "time_slots": self.offered_slots(token),
                "schedule_token": self.schedule_token(token),
            }
            try:
                await retry_idempotent(
                    f"notify {token.kind} {order.id}",
                    lambda: self._notifier.send(
                        token.holder_id,
                        f"Schedule your {action} for order {order.id}",
                        f"Choose a {action} time slot and show code {token.verification_code} "
                        f"to the rider at {action}.",
                        data,
                    ),
                )
            except Exception:
                # Tokens are committed; resend_notifications retries the message
                logger.exception("Could not notify %s holder of order %s", token.kind, order.id)


_service: DeliveryService | None = None


def get_delivery_service() -> DeliveryService:
    global _service  # noqa: PLW0603
    if _service is None:
        _service = DeliveryService()
    return _service
