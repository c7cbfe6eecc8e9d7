"""mp_ledger REST API — derived balances, JWT required."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.database import get_db_session
from src.mp_common.errors import ForbiddenError
from src.mp_common.response import ApiResponse, success_response
from src.mp_gateway.auth.dependencies import Identity, get_current_identity
from src.mp_ledger.application.schemas import BalanceResponse
from src.mp_ledger.application.service import EscrowLedgerService

router = APIRouter(prefix="/ledger", tags=["ledger"])

_service = EscrowLedgerService()


def get_ledger_service() -> EscrowLedgerService:
    return _service


@router.get("/balance")
async def get_balance(
    identity: Annotated[Identity, Depends(get_current_identity)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    service: Annotated[EscrowLedgerService, Depends(get_ledger_service)],
    request: Request,
    account_id: str | None = Query(None, description="Admin only: any account, e.g. PLATFORM"),
) -> ApiResponse:
    target = account_id or identity.user_id
    if target != identity.user_id and not identity.is_admin:
        raise ForbiddenError("Only admins can read other accounts")
    balance = await service.account_balance(db, target)
    return success_response(BalanceResponse.from_cents(target, balance).model_dump(), request)
