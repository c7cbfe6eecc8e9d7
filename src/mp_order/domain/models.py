"""Order domain models — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.mp_common.enums import OrderStatus

TERMINAL_STATUSES = frozenset(
    {OrderStatus.COMPLETED.value, OrderStatus.REFUNDED.value, OrderStatus.CANCELLED.value}
)


@dataclass
class Order:
    id: str
    buyer_id: str
    seller_id: str
    item_id: str
    total_amount: int        # cents
    platform_fee: int        # cents, fixed at creation
    seller_amount: int       # total_amount - platform_fee
    status: str = OrderStatus.PENDING.value
    payment_reference: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def party_of(self, user_id: str) -> str | None:
        """"buyer" / "seller" for a participant, None for anyone else."""
        if user_id == self.buyer_id:
            return "buyer"
        if user_id == self.seller_id:
            return "seller"
        return None


@dataclass
class Resolution:
    """A dispute outcome that authorizes leaving ``disputed``.

    ``refund_amount`` of 0 settles everything to the seller; equal to the
    order total refunds everything to the buyer; anything between is split.
    """

    resolution_id: str
    refund_amount: int = 0


@dataclass
class StatusHistoryEntry:
    id: int | None
    order_id: str
    status: str              # an order status or a rider status
    created_by: str
    notes: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_at: datetime | None = None
