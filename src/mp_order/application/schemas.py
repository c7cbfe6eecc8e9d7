"""Pydantic schemas for mp_order API."""

from pydantic import BaseModel, Field

from src.mp_common.cents import cents_to_display
from src.mp_common.datetime_utils import iso_or_none
from src.mp_order.domain.models import Order, StatusHistoryEntry

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CreateOrderRequest(BaseModel):
    seller_id: str = Field(..., min_length=1, max_length=64)
    item_id: str = Field(..., min_length=1, max_length=64)
    total_amount_cents: int = Field(..., gt=0, description="Order total in cents")


class ConfirmPaymentRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class OrderResponse(BaseModel):
    id: str
    buyer_id: str
    seller_id: str
    item_id: str
    status: str
    total_amount_cents: int
    total_amount_display: str
    platform_fee_cents: int
    seller_amount_cents: int
    payment_reference: str | None
    created_at: str | None
    updated_at: str | None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            item_id=order.item_id,
            status=order.status,
            total_amount_cents=order.total_amount,
            total_amount_display=cents_to_display(order.total_amount),
            platform_fee_cents=order.platform_fee,
            seller_amount_cents=order.seller_amount,
            payment_reference=order.payment_reference,
            created_at=iso_or_none(order.created_at),
            updated_at=iso_or_none(order.updated_at),
        )


class OrderListResponse(BaseModel):
    items: list[OrderResponse]


class StatusHistoryItem(BaseModel):
    id: int | None
    status: str
    notes: str | None
    latitude: float | None
    longitude: float | None
    created_by: str
    created_at: str | None

    @classmethod
    def from_domain(cls, entry: StatusHistoryEntry) -> "StatusHistoryItem":
        return cls(
            id=entry.id,
            status=entry.status,
            notes=entry.notes,
            latitude=entry.latitude,
            longitude=entry.longitude,
            created_by=entry.created_by,
            created_at=iso_or_none(entry.created_at),
        )
