"""Delivery domain models — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.mp_common.enums import OrderStatus, RiderStatus, TokenKind

# Order status a token can be redeemed from, and the status redemption moves to
REDEEM_PRE_STATE: dict[str, str] = {
    TokenKind.PICKUP.value: OrderStatus.PICKUP_SCHEDULED.value,
    TokenKind.DELIVERY.value: OrderStatus.DELIVERY_SCHEDULED.value,
}
REDEEM_TARGET: dict[str, str] = {
    TokenKind.PICKUP.value: OrderStatus.PICKED_UP.value,
    TokenKind.DELIVERY.value: OrderStatus.DELIVERED.value,
}

# Rider statuses that are backed by a token redemption
RIDER_STATUS_TOKEN_KIND: dict[str, str] = {
    RiderStatus.PICKED_UP.value: TokenKind.PICKUP.value,
    RiderStatus.DELIVERED.value: TokenKind.DELIVERY.value,
}


@dataclass
class DeliveryToken:
    order_id: str
    kind: str                # TokenKind value
    verification_code: str
    payload: str             # JSON scan form
    holder_id: str           # seller for pickup, buyer for delivery
    issued_at: datetime
    redeemed_at: datetime | None = None
    redeemed_by: str | None = None

    @property
    def is_redeemed(self) -> bool:
        return self.redeemed_at is not None


@dataclass
class DeliverySchedule:
    order_id: str
    pickup_slot: str | None = None
    pickup_instructions: str | None = None
    delivery_slot: str | None = None
    delivery_address: str | None = None
    delivery_instructions: str | None = None
    rider_id: str | None = None
    rider_status: str = RiderStatus.UNASSIGNED.value
    assigned_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class DeliveryJob:
    """A schedule joined with its order, as a rider sees it."""

    schedule: DeliverySchedule
    order_status: str
    buyer_id: str
    seller_id: str
    item_id: str
