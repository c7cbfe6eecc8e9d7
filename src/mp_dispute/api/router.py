"""mp_dispute REST API — participants open and argue, admins investigate and resolve."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.response import ApiResponse, success_response
from src.mp_dispute.application.schemas import (
    AddEvidenceRequest,
    DisputeDetailResponse,
    DisputeResponse,
    EvidenceResponse,
    MessageResponse,
    OpenDisputeRequest,
    PostMessageRequest,
    ResolveDisputeRequest,
    StartInvestigationRequest,
)
from src.mp_dispute.application.service import DisputeService, get_dispute_service
from src.mp_gateway.auth.dependencies import Identity, get_current_identity, require_admin

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.post("", status_code=201)
async def open_dispute(
    body: OpenDisputeRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    dispute = await service.open_dispute(
        db,
        body.order_id,
        identity.user_id,
        body.category.value,
        body.description,
        evidence=[(e.evidence_type.value, e.content) for e in body.evidence],
    )
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@router.get("")
async def list_disputes(
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
    status: str | None = Query(None, description="Filter by dispute status"),
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    disputes = await service.list_disputes_for_user(db, identity.user_id, status, limit)
    return success_response(
        {"items": [DisputeResponse.from_domain(d).model_dump() for d in disputes]}, request
    )


@router.get("/queue")
async def admin_queue(
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    disputes = await service.list_queue(db, limit)
    return success_response(
        {"items": [DisputeResponse.from_domain(d).model_dump() for d in disputes]}, request
    )


@router.get("/{dispute_id}")
async def get_dispute(
    dispute_id: str,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    detail = await service.get_dispute(db, dispute_id, identity.user_id, identity.is_admin)
    return success_response(DisputeDetailResponse.from_detail(detail).model_dump(), request)


@router.post("/{dispute_id}/evidence", status_code=201)
async def add_evidence(
    dispute_id: str,
    body: AddEvidenceRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    evidence = await service.add_evidence(
        db, dispute_id, identity.user_id, body.evidence_type.value, body.content, identity.is_admin
    )
    return success_response(EvidenceResponse.from_domain(evidence).model_dump(), request)


@router.post("/{dispute_id}/messages", status_code=201)
async def post_message(
    dispute_id: str,
    body: PostMessageRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    message = await service.post_message(
        db, dispute_id, identity.user_id, body.content, identity.is_admin
    )
    return success_response(MessageResponse.from_domain(message).model_dump(), request)


@router.post("/{dispute_id}/investigate")
async def start_investigation(
    dispute_id: str,
    body: StartInvestigationRequest,
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    priority = body.priority.value if body.priority else None
    dispute = await service.start_investigation(db, dispute_id, admin.user_id, priority)
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@router.post("/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: str,
    body: ResolveDisputeRequest,
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    dispute = await service.resolve(
        db, dispute_id, admin.user_id, body.resolution, body.refund_amount_cents
    )
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@router.post("/{dispute_id}/close")
async def close_dispute(
    dispute_id: str,
    admin: Annotated[Identity, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[DisputeService, Depends(get_dispute_service)],
    request: Request,
) -> ApiResponse:
    dispute = await service.close(db, dispute_id, admin.user_id)
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)
