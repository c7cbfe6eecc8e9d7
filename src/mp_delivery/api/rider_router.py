"""Rider-facing delivery API — all endpoints require the rider role."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.response import ApiResponse, success_response
from src.mp_delivery.application.schemas import (
    DeliveryJobResponse,
    DeliveryScheduleResponse,
    RedeemPayloadRequest,
    UpdateDeliveryStatusRequest,
)
from src.mp_delivery.application.service import DeliveryService, get_delivery_service
from src.mp_gateway.auth.dependencies import Identity, require_rider
from src.mp_order.application.schemas import OrderResponse, StatusHistoryItem

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.get("/pending")
async def list_pending(
    rider: Annotated[Identity, Depends(require_rider)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    jobs = await service.list_pending(db, limit)
    items = [DeliveryJobResponse.from_job(job).model_dump() for job in jobs]
    return success_response({"items": items}, request)


@router.get("/assigned")
async def list_assigned(
    rider: Annotated[Identity, Depends(require_rider)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    jobs = await service.list_assigned(db, rider.user_id, limit)
    items = [DeliveryJobResponse.from_job(job).model_dump() for job in jobs]
    return success_response({"items": items}, request)


@router.post("/{order_id}/assign")
async def assign(
    order_id: str,
    rider: Annotated[Identity, Depends(require_rider)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    schedule = await service.assign(db, order_id, rider.user_id)
    return success_response(DeliveryScheduleResponse.from_domain(schedule).model_dump(), request)


@router.put("/{order_id}/status")
async def update_status(
    order_id: str,
    body: UpdateDeliveryStatusRequest,
    rider: Annotated[Identity, Depends(require_rider)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    location = (body.location.latitude, body.location.longitude) if body.location else None
    schedule = await service.update_status(
        db,
        order_id,
        rider.user_id,
        body.status,
        notes=body.notes,
        verification_code=body.verification_code,
        location=location,
    )
    return success_response(DeliveryScheduleResponse.from_domain(schedule).model_dump(), request)


@router.post("/{order_id}/redeem")
async def redeem_payload(
    order_id: str,
    body: RedeemPayloadRequest,
    rider: Annotated[Identity, Depends(require_rider)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    order = await service.redeem_payload(db, body.payload, rider.user_id, expected_order_id=order_id)
    return success_response(OrderResponse.from_domain(order).model_dump(), request)


@router.get("/{order_id}/history")
async def history(
    order_id: str,
    rider: Annotated[Identity, Depends(require_rider)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    entries = await service.history(db, order_id)
    items = [StatusHistoryItem.from_domain(e).model_dump() for e in entries]
    return success_response({"order_id": order_id, "items": items}, request)
