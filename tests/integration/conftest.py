"""API test fixtures: the real app, wired to the in-memory services."""

from collections.abc import AsyncGenerator, Callable
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.mp_common.database import get_db_session
from src.mp_delivery.application.service import DeliveryService, get_delivery_service
from src.mp_dispute.application.service import DisputeService, get_dispute_service
from src.mp_gateway.auth.jwt_handler import create_access_token
from src.mp_ledger.api.router import get_ledger_service
from src.mp_ledger.application.service import EscrowLedgerService
from src.mp_order.application.service import OrderService, get_order_service


def _bearer(user_id: str, role: str = "user") -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}


@pytest.fixture
def auth() -> Callable[..., dict[str, str]]:
    """Headers for a caller: ``auth("buyer-1")``, ``auth("rider-1", "rider")``."""
    return _bearer


@pytest.fixture
async def client(
    db: AsyncMock,
    ledger: EscrowLedgerService,
    orders: OrderService,
    delivery: DeliveryService,
    disputes: DisputeService,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    app.dependency_overrides[get_db_session] = lambda: db
    app.dependency_overrides[get_ledger_service] = lambda: ledger
    app.dependency_overrides[get_order_service] = lambda: orders
    app.dependency_overrides[get_delivery_service] = lambda: delivery
    app.dependency_overrides[get_dispute_service] = lambda: disputes
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
