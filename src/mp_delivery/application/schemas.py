"""Pydantic schemas for mp_delivery API."""

from typing import Literal

from pydantic import BaseModel, Field

from src.mp_common.datetime_utils import iso_or_none
from src.mp_delivery.domain.models import DeliveryJob, DeliverySchedule, DeliveryToken

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class Location(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class UpdateDeliveryStatusRequest(BaseModel):
    status: Literal[
        "en_route_to_pickup",
        "at_pickup",
        "picked_up",
        "en_route_to_delivery",
        "at_delivery",
        "delivered",
        "failed",
    ]
    notes: str | None = Field(None, max_length=500)
    verification_code: str | None = Field(None, max_length=32)
    location: Location | None = None


class RedeemPayloadRequest(BaseModel):
    payload: str = Field(..., min_length=2, max_length=2048, description="Raw scanned token payload")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DeliveryScheduleResponse(BaseModel):
    order_id: str
    pickup_slot: str | None
    pickup_instructions: str | None
    delivery_slot: str | None
    delivery_address: str | None
    delivery_instructions: str | None
    rider_id: str | None
    rider_status: str
    assigned_at: str | None

    @classmethod
    def from_domain(cls, schedule: DeliverySchedule) -> "DeliveryScheduleResponse":
        return cls(
            order_id=schedule.order_id,
            pickup_slot=schedule.pickup_slot,
            pickup_instructions=schedule.pickup_instructions,
            delivery_slot=schedule.delivery_slot,
            delivery_address=schedule.delivery_address,
            delivery_instructions=schedule.delivery_instructions,
            rider_id=schedule.rider_id,
            rider_status=schedule.rider_status,
            assigned_at=iso_or_none(schedule.assigned_at),
        )


class DeliveryJobResponse(DeliveryScheduleResponse):
    order_status: str
    buyer_id: str
    seller_id: str
    item_id: str

    @classmethod
    def from_job(cls, job: DeliveryJob) -> "DeliveryJobResponse":
        base = DeliveryScheduleResponse.from_domain(job.schedule).model_dump()
        return cls(
            **base,
            order_status=job.order_status,
            buyer_id=job.buyer_id,
            seller_id=job.seller_id,
            item_id=job.item_id,
        )


class DeliveryTokenResponse(BaseModel):
    """Token as shown to its holder. Never returned to riders."""

    order_id: str
    kind: str
    holder_id: str
    verification_code: str
    payload: str
    issued_at: str | None
    redeemed_at: str | None
    time_slots: list[str]
    schedule_token: str

    @classmethod
    def from_domain(
        cls, token: DeliveryToken, time_slots: list[str], schedule_token: str
    ) -> "DeliveryTokenResponse":
        return cls(
            order_id=token.order_id,
            kind=token.kind,
            holder_id=token.holder_id,
            verification_code=token.verification_code,
            payload=token.payload,
            issued_at=iso_or_none(token.issued_at),
            redeemed_at=iso_or_none(token.redeemed_at),
            time_slots=time_slots,
            schedule_token=schedule_token,
        )
