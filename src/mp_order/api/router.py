"""mp_order REST API — all endpoints require JWT authentication.

Participants (buyer / seller) see their own orders; admins see any order.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.errors import ForbiddenError
from src.mp_common.response import ApiResponse, success_response
from src.mp_delivery.application.schemas import DeliveryTokenResponse
from src.mp_delivery.application.service import DeliveryService, get_delivery_service
from src.mp_gateway.auth.dependencies import Identity, get_current_identity, require_admin
from src.mp_ledger.api.router import get_ledger_service
from src.mp_ledger.application.schemas import LedgerEntryItem, OrderLedgerResponse
from src.mp_ledger.application.service import EscrowLedgerService
from src.mp_order.application.schemas import (
    ConfirmPaymentRequest,
    CreateOrderRequest,
    OrderListResponse,
    OrderResponse,
)
from src.mp_order.application.service import OrderService, get_order_service

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=201)
async def create_order(
    body: CreateOrderRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    request: Request,
) -> ApiResponse:
    order = await service.create_order(
        db, identity.user_id, body.seller_id, body.item_id, body.total_amount_cents
    )
    return success_response(OrderResponse.from_domain(order).model_dump(), request)


@router.get("")
async def list_orders(
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    request: Request,
    status: str | None = Query(None, description="Filter by order status"),
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    orders = await service.list_orders_for_user(db, identity.user_id, status, limit)
    data = OrderListResponse(items=[OrderResponse.from_domain(o) for o in orders])
    return success_response(data.model_dump(), request)


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    request: Request,
) -> ApiResponse:
    order = await service.get_order_for_user(db, order_id, identity.user_id, identity.is_admin)
    return success_response(OrderResponse.from_domain(order).model_dump(), request)


@router.post("/{order_id}/confirm-payment")
async def confirm_payment(
    order_id: str,
    body: ConfirmPaymentRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    delivery: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    order = await service.get_order(db, order_id)
    if identity.user_id != order.buyer_id and not identity.is_admin:
        raise ForbiddenError("Only the buyer or the payment service can confirm payment")
    order = await service.confirm_payment(db, order_id, body.payment_reference, identity.user_id)
    await delivery.issue_tokens(db, order_id)
    return success_response(OrderResponse.from_domain(order).model_dump(), request)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    request: Request,
) -> ApiResponse:
    order = await service.cancel_order(db, order_id, identity.user_id)
    return success_response(OrderResponse.from_domain(order).model_dump(), request)


@router.get("/{order_id}/tokens")
async def my_tokens(
    order_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    delivery: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    await service.get_order_for_user(db, order_id, identity.user_id)
    tokens = await delivery.tokens_for_holder(db, order_id, identity.user_id)
    items = [
        DeliveryTokenResponse.from_domain(t, delivery.offered_slots(t), delivery.schedule_token(t)).model_dump()
        for t in tokens
    ]
    return success_response({"items": items}, request)


@router.post("/{order_id}/tokens/resend")
async def resend_tokens(
    order_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    delivery: Annotated[DeliveryService, Depends(get_delivery_service)],
    request: Request,
) -> ApiResponse:
    await service.get_order_for_user(db, order_id, identity.user_id, identity.is_admin)
    tokens = await delivery.resend_notifications(db, order_id)
    return success_response({"order_id": order_id, "notified": [t.kind for t in tokens]}, request)


@router.get("/{order_id}/ledger")
async def order_ledger(
    order_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    ledger: Annotated[EscrowLedgerService, Depends(get_ledger_service)],
    request: Request,
) -> ApiResponse:
    await service.get_order_for_user(db, order_id, identity.user_id, identity.is_admin)
    entries = await ledger.entries_for_order(db, order_id)
    data = OrderLedgerResponse(
        order_id=order_id,
        entries=[LedgerEntryItem.from_domain(e) for e in entries],
        balance_cents=sum(e.amount for e in entries),
        held_cents=await ledger.held_amount(db, order_id),
    )
    return success_response(data.model_dump(), request)


@router.post("/{order_id}/settle")
async def settle_order(
    order_id: str,
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[OrderService, Depends(get_order_service)],
    request: Request,
) -> ApiResponse:
    entries = await service.settle(db, order_id)
    items = [LedgerEntryItem.from_domain(e).model_dump() for e in entries]
    return success_response({"order_id": order_id, "entries": items}, request)
