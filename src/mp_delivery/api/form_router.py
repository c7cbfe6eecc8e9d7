"""Holder scheduling forms — the links in the pickup / delivery notifications post here.

Form fields: orderId, timeSlot, deliveryAddress (delivery only),
specialInstructions and scheduleToken, the signed holder token carried in
the notification link. Only the token holder can set a slot or address.
Responses are small HTML pages, not the JSON envelope; failures render an
error page with the matching HTTP status.
"""

import html
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Form
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.enums import TokenKind
from src.mp_common.errors import AppError
from src.mp_delivery.application.service import DeliveryService, get_delivery_service
from src.mp_gateway.auth.jwt_handler import decode_schedule_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/delivery", tags=["delivery-forms"])

_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; text-align: center; padding: 50px; background: #f9f9f9; }}
    .box {{ padding: 20px; border-radius: 10px; max-width: 500px; margin: 0 auto; }}
    .success {{ background: #A3E635; color: #3f2a1c; }}
    .error {{ background: #ff6b6b; color: white; }}
  </style>
</head>
<body>
  <div class="box {css}">
    <h1>{title}</h1>
    <p>{message}</p>
  </div>
</body>
</html>
"""


def _page(title: str, message: str, css: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        _PAGE.format(title=html.escape(title), message=html.escape(message), css=css),
        status_code=status_code,
    )


def _error_page(action: str, exc: AppError) -> HTMLResponse:
    logger.warning("Schedule %s failed: %s", action, exc.message)
    return _page(f"Error scheduling {action}", exc.message, "error", exc.http_status)


@router.post("/schedule-pickup", response_class=HTMLResponse)
async def schedule_pickup(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    order_id: Annotated[str | None, Form(alias="orderId")] = None,
    time_slot: Annotated[str | None, Form(alias="timeSlot")] = None,
    schedule_token: Annotated[str | None, Form(alias="scheduleToken")] = None,
    special_instructions: Annotated[str | None, Form(alias="specialInstructions")] = None,
) -> HTMLResponse:
    if not order_id or not time_slot or not schedule_token:
        return _page(
            "Error scheduling pickup",
            "Order ID, time slot and the link from your notification are required.",
            "error",
            400,
        )
    try:
        holder_id = decode_schedule_token(schedule_token, order_id, TokenKind.PICKUP.value)
        schedule = await service.schedule_pickup(
            db, order_id, time_slot, special_instructions or None, holder_id=holder_id
        )
    except AppError as exc:
        return _error_page("pickup", exc)
    return _page(
        "Pickup scheduled",
        f"Pickup for order {schedule.order_id} is booked for {schedule.pickup_slot}. "
        "The rider will ask for your pickup code.",
        "success",
        200,
    )


@router.post("/schedule-delivery", response_class=HTMLResponse)
async def schedule_delivery(
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DeliveryService, Depends(get_delivery_service)],
    order_id: Annotated[str | None, Form(alias="orderId")] = None,
    time_slot: Annotated[str | None, Form(alias="timeSlot")] = None,
    delivery_address: Annotated[str | None, Form(alias="deliveryAddress")] = None,
    schedule_token: Annotated[str | None, Form(alias="scheduleToken")] = None,
    special_instructions: Annotated[str | None, Form(alias="specialInstructions")] = None,
) -> HTMLResponse:
    if not order_id or not time_slot or not delivery_address or not schedule_token:
        return _page(
            "Error scheduling delivery",
            "Order ID, time slot, delivery address and the link from your notification are required.",
            "error",
            400,
        )
    try:
        holder_id = decode_schedule_token(schedule_token, order_id, TokenKind.DELIVERY.value)
        schedule = await service.schedule_delivery(
            db, order_id, time_slot, delivery_address, special_instructions or None, holder_id=holder_id
        )
    except AppError as exc:
        return _error_page("delivery", exc)
    return _page(
        "Delivery scheduled",
        f"Delivery for order {schedule.order_id} is booked for {schedule.delivery_slot}. "
        "Have your delivery code ready for the rider.",
        "success",
        200,
    )
