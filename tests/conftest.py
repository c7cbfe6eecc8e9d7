"""Shared test fixtures.

In-memory repositories honour the same contracts as the SQL ones: conditional
status writes, unique (order, type, party) ledger postings, single-use token
redemption and single rider assignment. Each check-and-set runs without an
await in between, which mirrors the atomicity of the SQL statement; reads
yield to the event loop so concurrent tests actually interleave.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret-do-not-use-in-production")

import asyncio
import dataclasses
import itertools
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from src.mp_common.datetime_utils import utc_now
from src.mp_common.enums import DisputeStatus, TokenKind
from src.mp_delivery.application.service import DeliveryService
from src.mp_delivery.domain.models import DeliveryJob, DeliverySchedule, DeliveryToken
from src.mp_dispute.application.service import DisputeService
from src.mp_dispute.domain.models import Dispute, DisputeEvidence, DisputeMessage
from src.mp_ledger.application.service import EscrowLedgerService
from src.mp_ledger.domain.models import LedgerEntry, LedgerPosting
from src.mp_order.application.service import OrderService
from src.mp_order.domain.models import Order, StatusHistoryEntry

# ---------------------------------------------------------------------------
# In-memory repositories
# ---------------------------------------------------------------------------


class FakeLedgerRepository:
    def __init__(self) -> None:
        self.entries: list[LedgerEntry] = []
        self._ids = itertools.count(1)

    async def insert_entry(self, db: Any, posting: LedgerPosting) -> LedgerEntry | None:
        await asyncio.sleep(0)
        if any(
            (e.order_id, e.entry_type, e.party) == (posting.order_id, posting.entry_type, posting.party)
            for e in self.entries
        ):
            return None
        entry = LedgerEntry(
            id=next(self._ids),
            order_id=posting.order_id,
            entry_type=posting.entry_type,
            party=posting.party,
            account_id=posting.account_id,
            amount=posting.amount,
            status=posting.status,
            idempotency_key=posting.idempotency_key,
            description=posting.description,
            created_at=utc_now(),
        )
        self.entries.append(entry)
        return entry

    async def get_entry(self, db: Any, order_id: str, entry_type: str, party: str) -> LedgerEntry | None:
        await asyncio.sleep(0)
        for e in self.entries:
            if (e.order_id, e.entry_type, e.party) == (order_id, entry_type, party):
                return e
        return None

    async def list_by_order(self, db: Any, order_id: str) -> list[LedgerEntry]:
        await asyncio.sleep(0)
        return [e for e in self.entries if e.order_id == order_id]

    async def sum_for_account(self, db: Any, account_id: str) -> int:
        await asyncio.sleep(0)
        return sum(e.amount for e in self.entries if e.account_id == account_id and e.status == "completed")


class FakeOrderRepository:
    def __init__(self) -> None:
        self.orders: dict[str, Order] = {}
        self.history: list[StatusHistoryEntry] = []
        self._history_ids = itertools.count(1)
        # target status -> number of upcoming writes to it that fail as a dropped connection
        self.transient_failures: dict[str, int] = {}

    async def create(self, db: Any, order: Order) -> Order:
        now = utc_now()
        stored = dataclasses.replace(order, created_at=now, updated_at=now)
        self.orders[order.id] = stored
        return dataclasses.replace(stored)

    async def get_by_id(self, db: Any, order_id: str) -> Order | None:
        await asyncio.sleep(0)
        order = self.orders.get(order_id)
        return dataclasses.replace(order) if order else None

    async def compare_and_set_status(
        self,
        db: Any,
        order_id: str,
        expected: str,
        target: str,
        payment_reference: str | None = None,
    ) -> Order | None:
        await asyncio.sleep(0)
        if self.transient_failures.get(target, 0) > 0:
            self.transient_failures[target] -= 1
            raise OperationalError("UPDATE orders", {}, ConnectionError("connection reset"))
        order = self.orders.get(order_id)
        if order is None or order.status != expected:
            return None
        order.status = target
        order.updated_at = utc_now()
        if payment_reference is not None:
            order.payment_reference = payment_reference
        return dataclasses.replace(order)

    async def list_for_user(self, db: Any, user_id: str, status: str | None, limit: int) -> list[Order]:
        matches = [
            dataclasses.replace(o)
            for o in self.orders.values()
            if user_id in (o.buyer_id, o.seller_id) and (status is None or o.status == status)
        ]
        return sorted(matches, key=lambda o: o.id, reverse=True)[:limit]

    async def append_history(self, db: Any, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        stored = dataclasses.replace(entry, id=next(self._history_ids), created_at=utc_now())
        self.history.append(stored)
        return stored

    async def list_history(self, db: Any, order_id: str) -> list[StatusHistoryEntry]:
        return [h for h in self.history if h.order_id == order_id]

    def set_status(self, order_id: str, status: str) -> None:
        """Test setup shortcut: put an order straight into a status."""
        self.orders[order_id].status = status


class FakeDeliveryRepository:
    def __init__(self, order_repo: FakeOrderRepository) -> None:
        self.tokens: dict[tuple[str, str], DeliveryToken] = {}
        self.schedules: dict[str, DeliverySchedule] = {}
        self._orders = order_repo

    async def insert_token(self, db: Any, token: DeliveryToken) -> DeliveryToken | None:
        key = (token.order_id, token.kind)
        if key in self.tokens:
            return None
        self.tokens[key] = dataclasses.replace(token)
        return dataclasses.replace(token)

    async def get_token(self, db: Any, order_id: str, kind: str) -> DeliveryToken | None:
        await asyncio.sleep(0)
        token = self.tokens.get((order_id, kind))
        return dataclasses.replace(token) if token else None

    async def list_tokens(self, db: Any, order_id: str) -> list[DeliveryToken]:
        await asyncio.sleep(0)
        return [dataclasses.replace(t) for (oid, _), t in self.tokens.items() if oid == order_id]

    async def mark_redeemed(self, db: Any, order_id: str, kind: str, rider_id: str) -> DeliveryToken | None:
        await asyncio.sleep(0)
        token = self.tokens.get((order_id, kind))
        if token is None or token.redeemed_at is not None:
            return None
        token.redeemed_at = utc_now()
        token.redeemed_by = rider_id
        return dataclasses.replace(token)

    async def get_schedule(self, db: Any, order_id: str) -> DeliverySchedule | None:
        schedule = self.schedules.get(order_id)
        return dataclasses.replace(schedule) if schedule else None

    async def save_pickup(self, db: Any, order_id: str, slot: str, instructions: str | None) -> DeliverySchedule:
        schedule = self.schedules.setdefault(order_id, DeliverySchedule(order_id=order_id, created_at=utc_now()))
        schedule.pickup_slot = slot
        schedule.pickup_instructions = instructions
        return dataclasses.replace(schedule)

    async def save_delivery(
        self, db: Any, order_id: str, slot: str, address: str, instructions: str | None
    ) -> DeliverySchedule:
        schedule = self.schedules.setdefault(order_id, DeliverySchedule(order_id=order_id, created_at=utc_now()))
        schedule.delivery_slot = slot
        schedule.delivery_address = address
        schedule.delivery_instructions = instructions
        return dataclasses.replace(schedule)

    async def assign_rider(
        self, db: Any, order_id: str, rider_id: str, assignable_statuses: list[str]
    ) -> DeliverySchedule | None:
        await asyncio.sleep(0)
        schedule = self.schedules.get(order_id)
        order = self._orders.orders.get(order_id)
        if schedule is None or order is None or schedule.rider_id is not None:
            return None
        if order.status not in assignable_statuses:
            return None
        schedule.rider_id = rider_id
        schedule.rider_status = "assigned"
        schedule.assigned_at = utc_now()
        return dataclasses.replace(schedule)

    async def set_rider_status(
        self, db: Any, order_id: str, rider_id: str, rider_status: str
    ) -> DeliverySchedule | None:
        schedule = self.schedules.get(order_id)
        if schedule is None or schedule.rider_id != rider_id:
            return None
        schedule.rider_status = rider_status
        return dataclasses.replace(schedule)

    def _job(self, schedule: DeliverySchedule) -> DeliveryJob:
        order = self._orders.orders[schedule.order_id]
        return DeliveryJob(
            schedule=dataclasses.replace(schedule),
            order_status=order.status,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            item_id=order.item_id,
        )

    async def list_unassigned(self, db: Any, order_statuses: list[str], limit: int) -> list[DeliveryJob]:
        return [
            self._job(s)
            for s in self.schedules.values()
            if s.rider_id is None and self._orders.orders[s.order_id].status in order_statuses
        ][:limit]

    async def list_for_rider(self, db: Any, rider_id: str, limit: int) -> list[DeliveryJob]:
        return [self._job(s) for s in self.schedules.values() if s.rider_id == rider_id][:limit]


class FakeDisputeRepository:
    def __init__(self) -> None:
        self.disputes: dict[str, Dispute] = {}
        self.evidence: list[DisputeEvidence] = []
        self.messages: list[DisputeMessage] = []

    async def create(self, db: Any, dispute: Dispute) -> Dispute | None:
        await asyncio.sleep(0)
        if any(
            d.order_id == dispute.order_id and d.status != DisputeStatus.CLOSED.value
            for d in self.disputes.values()
        ):
            return None
        stored = dataclasses.replace(dispute, created_at=utc_now(), updated_at=utc_now())
        self.disputes[dispute.id] = stored
        return dataclasses.replace(stored)

    async def get_by_id(self, db: Any, dispute_id: str) -> Dispute | None:
        await asyncio.sleep(0)
        dispute = self.disputes.get(dispute_id)
        return dataclasses.replace(dispute) if dispute else None

    async def get_active_for_order(self, db: Any, order_id: str) -> Dispute | None:
        await asyncio.sleep(0)
        for d in self.disputes.values():
            if d.order_id == order_id and d.status != DisputeStatus.CLOSED.value:
                return dataclasses.replace(d)
        return None

    async def update_status(
        self, db: Any, dispute_id: str, expected: list[str], target: str, priority: str | None = None
    ) -> Dispute | None:
        dispute = self.disputes.get(dispute_id)
        if dispute is None or dispute.status not in expected:
            return None
        dispute.status = target
        if priority is not None:
            dispute.priority = priority
        return dataclasses.replace(dispute)

    async def resolve(
        self,
        db: Any,
        dispute_id: str,
        expected: list[str],
        resolution: str,
        refund_amount: int,
        resolved_by: str,
    ) -> Dispute | None:
        dispute = self.disputes.get(dispute_id)
        if dispute is None or dispute.status not in expected:
            return None
        dispute.status = DisputeStatus.RESOLVED.value
        dispute.resolution = resolution
        dispute.refund_amount = refund_amount
        dispute.resolved_by = resolved_by
        dispute.resolved_at = utc_now()
        return dataclasses.replace(dispute)

    async def list_for_user(self, db: Any, user_id: str, status: str | None, limit: int) -> list[Dispute]:
        return [
            dataclasses.replace(d)
            for d in self.disputes.values()
            if d.involves(user_id) and (status is None or d.status == status)
        ][:limit]

    async def list_by_status(self, db: Any, statuses: list[str], limit: int) -> list[Dispute]:
        rank = {"high": 0, "medium": 1, "low": 2}
        matches = [dataclasses.replace(d) for d in self.disputes.values() if d.status in statuses]
        return sorted(matches, key=lambda d: rank[d.priority])[:limit]

    async def add_evidence(self, db: Any, evidence: DisputeEvidence) -> DisputeEvidence:
        stored = dataclasses.replace(evidence, created_at=utc_now())
        self.evidence.append(stored)
        return stored

    async def list_evidence(self, db: Any, dispute_id: str) -> list[DisputeEvidence]:
        return [e for e in self.evidence if e.dispute_id == dispute_id]

    async def add_message(self, db: Any, message: DisputeMessage) -> DisputeMessage:
        stored = dataclasses.replace(message, created_at=utc_now())
        self.messages.append(stored)
        return stored

    async def list_messages(self, db: Any, dispute_id: str) -> list[DisputeMessage]:
        return [m for m in self.messages if m.dispute_id == dispute_id]


# ---------------------------------------------------------------------------
# Recording collaborators
# ---------------------------------------------------------------------------


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[Any] = []

    async def publish(self, event: Any) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(self, recipient_id: str, subject: str, body: str, data: dict[str, Any]) -> None:
        self.sent.append({"recipient_id": recipient_id, "subject": subject, "body": body, "data": data})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> AsyncMock:
    """Stand-in AsyncSession: services only await commit / rollback on it."""
    return AsyncMock()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ledger_repo() -> FakeLedgerRepository:
    return FakeLedgerRepository()


@pytest.fixture
def order_repo() -> FakeOrderRepository:
    return FakeOrderRepository()


@pytest.fixture
def delivery_repo(order_repo: FakeOrderRepository) -> FakeDeliveryRepository:
    return FakeDeliveryRepository(order_repo)


@pytest.fixture
def dispute_repo() -> FakeDisputeRepository:
    return FakeDisputeRepository()


@pytest.fixture
def ledger(ledger_repo: FakeLedgerRepository) -> EscrowLedgerService:
    return EscrowLedgerService(repo=ledger_repo)


@pytest.fixture
def orders(
    order_repo: FakeOrderRepository, ledger: EscrowLedgerService, publisher: RecordingPublisher
) -> OrderService:
    return OrderService(repo=order_repo, ledger=ledger, publisher=publisher)


@pytest.fixture
def delivery(
    delivery_repo: FakeDeliveryRepository,
    orders: OrderService,
    notifier: RecordingNotifier,
    publisher: RecordingPublisher,
) -> DeliveryService:
    return DeliveryService(repo=delivery_repo, orders=orders, notifier=notifier, publisher=publisher)


@pytest.fixture
def disputes(
    dispute_repo: FakeDisputeRepository, orders: OrderService, publisher: RecordingPublisher
) -> DisputeService:
    return DisputeService(repo=dispute_repo, orders=orders, publisher=publisher)


BUYER = "buyer-1"
SELLER = "seller-1"
RIDER = "rider-1"
ADMIN = "admin-1"


@pytest.fixture
def marketplace(
    db: AsyncMock,
    orders: OrderService,
    delivery: DeliveryService,
    delivery_repo: FakeDeliveryRepository,
    order_repo: FakeOrderRepository,
) -> "Marketplace":
    return Marketplace(db, orders, delivery, delivery_repo, order_repo)


class Marketplace:
    """Drives an order through the real services up to a given status."""

    def __init__(
        self,
        db: AsyncMock,
        orders: OrderService,
        delivery: DeliveryService,
        delivery_repo: FakeDeliveryRepository,
        order_repo: FakeOrderRepository,
    ) -> None:
        self.db = db
        self.orders = orders
        self.delivery = delivery
        self.delivery_repo = delivery_repo
        self.order_repo = order_repo

    def code(self, order_id: str, kind: str) -> str:
        return self.delivery_repo.tokens[(order_id, kind)].verification_code

    def slot(self, order_id: str, kind: str) -> str:
        return self.delivery.offered_slots(self.delivery_repo.tokens[(order_id, kind)])[0]

    async def pending(self, total: int = 4500) -> Order:
        return await self.orders.create_order(self.db, BUYER, SELLER, "item-1", total)

    async def paid(self, total: int = 4500) -> Order:
        order = await self.pending(total)
        await self.orders.confirm_payment(self.db, order.id, f"pay_{order.id}")
        await self.delivery.issue_tokens(self.db, order.id)
        return await self.orders.get_order(self.db, order.id)

    async def pickup_scheduled(self, total: int = 4500) -> Order:
        order = await self.paid(total)
        await self.delivery.schedule_pickup(self.db, order.id, self.slot(order.id, TokenKind.PICKUP.value))
        return await self.orders.get_order(self.db, order.id)

    async def picked_up(self, total: int = 4500) -> Order:
        order = await self.pickup_scheduled(total)
        return await self.delivery.redeem(
            self.db, order.id, TokenKind.PICKUP.value, self.code(order.id, TokenKind.PICKUP.value), RIDER
        )

    async def delivery_scheduled(self, total: int = 4500) -> Order:
        order = await self.picked_up(total)
        await self.delivery.schedule_delivery(
            self.db, order.id, self.slot(order.id, TokenKind.DELIVERY.value), "1 Main St"
        )
        return await self.orders.get_order(self.db, order.id)

    async def delivered(self, total: int = 4500) -> Order:
        """An order sitting in ``delivered`` (before the automatic completion)."""
        order = await self.delivery_scheduled(total)
        self.order_repo.set_status(order.id, "delivered")
        return await self.orders.get_order(self.db, order.id)
