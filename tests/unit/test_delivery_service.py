"""Tests for DeliveryService — token issue, scheduling, redemption and the rider workflow."""

import asyncio
from typing import Any

import pytest
from redis.exceptions import ResponseError

from config.settings import settings
from src.mp_common.errors import (
    DeliveryAlreadyAssignedError,
    DeliveryNotAssignedError,
    ForbiddenError,
    InvalidOrderError,
    InvalidTokenError,
    InvalidTransitionError,
    OrderNotFoundError,
    SlotNotOfferedError,
    StaleStateError,
    TokenAlreadyUsedError,
    TokenNotFoundError,
    TokenWrongOrderStateError,
)
from src.mp_common.events import TOKEN_REDEEMED
from src.mp_delivery.application.service import DeliveryService
from src.mp_gateway.auth.jwt_handler import decode_schedule_token

BUYER = "buyer-1"
SELLER = "seller-1"
RIDER = "rider-1"


class BrokenNotifier:
    async def send(self, recipient_id: str, subject: str, body: str, data: dict[str, Any]) -> None:
        raise ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")


class TestIssueTokens:
    async def test_one_token_per_kind_with_holders(self, db, delivery_repo, marketplace) -> None:
        order = await marketplace.paid()
        pickup = delivery_repo.tokens[(order.id, "pickup")]
        drop = delivery_repo.tokens[(order.id, "delivery")]
        assert pickup.holder_id == SELLER
        assert drop.holder_id == BUYER
        assert pickup.verification_code != drop.verification_code

    async def test_holders_notified_with_slots(self, notifier, marketplace) -> None:
        order = await marketplace.paid()
        assert {n["recipient_id"] for n in notifier.sent} == {SELLER, BUYER}
        for message in notifier.sent:
            assert message["data"]["order_id"] == order.id
            assert message["data"]["time_slots"]
            assert message["data"]["verification_code"] in message["body"]

    async def test_reissue_returns_same_tokens_without_notifying(
        self, db, delivery: DeliveryService, notifier, marketplace
    ) -> None:
        order = await marketplace.paid()
        sent = len(notifier.sent)
        tokens = await delivery.issue_tokens(db, order.id)
        assert {t.verification_code for t in tokens} == {
            marketplace.code(order.id, "pickup"),
            marketplace.code(order.id, "delivery"),
        }
        assert len(notifier.sent) == sent

    async def test_requires_paid(self, db, delivery, marketplace) -> None:
        order = await marketplace.pending()
        with pytest.raises(StaleStateError):
            await delivery.issue_tokens(db, order.id)

    async def test_resend_only_unredeemed(self, db, delivery, notifier, marketplace) -> None:
        order = await marketplace.picked_up()
        notifier.sent.clear()
        tokens = await delivery.resend_notifications(db, order.id)
        assert [t.kind for t in tokens] == ["delivery"]
        assert [n["recipient_id"] for n in notifier.sent] == [BUYER]

    async def test_tokens_for_holder(self, db, delivery, marketplace) -> None:
        order = await marketplace.paid()
        assert [t.kind for t in await delivery.tokens_for_holder(db, order.id, SELLER)] == ["pickup"]
        assert await delivery.tokens_for_holder(db, order.id, "stranger") == []

    async def test_notification_carries_schedule_link(self, notifier, marketplace) -> None:
        order = await marketplace.paid()
        for message in notifier.sent:
            data = message["data"]
            holder = decode_schedule_token(data["schedule_token"], order.id, data["kind"])
            assert holder == message["recipient_id"]

    async def test_notifier_failure_after_commit_is_logged(
        self, db, delivery_repo, orders, publisher, notifier, marketplace, caplog: pytest.LogCaptureFixture
    ) -> None:
        order = await marketplace.pending()
        await orders.confirm_payment(db, order.id, f"pay_{order.id}")
        broken = DeliveryService(
            repo=delivery_repo, orders=orders, notifier=BrokenNotifier(), publisher=publisher
        )
        tokens = await broken.issue_tokens(db, order.id)
        assert {t.kind for t in tokens} == {"pickup", "delivery"}
        assert "Could not notify" in caplog.text

        healthy = DeliveryService(repo=delivery_repo, orders=orders, notifier=notifier, publisher=publisher)
        await healthy.resend_notifications(db, order.id)
        assert {n["recipient_id"] for n in notifier.sent} == {SELLER, BUYER}


class TestScheduling:
    async def test_pickup_moves_paid_to_pickup_scheduled(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.paid()
        slot = marketplace.slot(order.id, "pickup")
        schedule = await delivery.schedule_pickup(db, order.id, slot, "Ring twice")
        assert schedule.pickup_slot == slot
        assert schedule.pickup_instructions == "Ring twice"
        assert (await orders.get_order(db, order.id)).status == "pickup_scheduled"

    async def test_pickup_can_be_rescheduled(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        slot = delivery.offered_slots(marketplace.delivery_repo.tokens[(order.id, "pickup")])[1]
        schedule = await delivery.schedule_pickup(db, order.id, slot)
        assert schedule.pickup_slot == slot
        assert (await orders.get_order(db, order.id)).status == "pickup_scheduled"

    async def test_slot_must_be_offered(self, db, delivery, marketplace) -> None:
        order = await marketplace.paid()
        with pytest.raises(SlotNotOfferedError):
            await delivery.schedule_pickup(db, order.id, "1999-01-01 09:00")

    async def test_pickup_after_pickup_rejected(self, db, delivery, marketplace) -> None:
        order = await marketplace.picked_up()
        with pytest.raises(InvalidTransitionError):
            await delivery.schedule_pickup(db, order.id, marketplace.slot(order.id, "pickup"))

    async def test_delivery_before_pickup_keeps_status(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.paid()
        await delivery.schedule_delivery(db, order.id, marketplace.slot(order.id, "delivery"), "1 Main St")
        assert (await orders.get_order(db, order.id)).status == "paid"

    async def test_delivery_after_pickup_advances(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.picked_up()
        await delivery.schedule_delivery(db, order.id, marketplace.slot(order.id, "delivery"), "1 Main St")
        assert (await orders.get_order(db, order.id)).status == "delivery_scheduled"

    async def test_delivery_needs_address(self, db, delivery, marketplace) -> None:
        order = await marketplace.paid()
        with pytest.raises(InvalidOrderError):
            await delivery.schedule_delivery(db, order.id, marketplace.slot(order.id, "delivery"), "  ")

    async def test_unknown_order(self, db, delivery) -> None:
        with pytest.raises(OrderNotFoundError):
            await delivery.schedule_pickup(db, "ord_missing", "2025-06-10 09:00")

    async def test_only_holder_may_schedule(self, db, delivery, delivery_repo, orders, marketplace) -> None:
        order = await marketplace.paid()
        slot = marketplace.slot(order.id, "pickup")
        with pytest.raises(ForbiddenError):
            await delivery.schedule_pickup(db, order.id, slot, holder_id=BUYER)
        assert order.id not in delivery_repo.schedules
        assert (await orders.get_order(db, order.id)).status == "paid"

        await delivery.schedule_pickup(db, order.id, slot, holder_id=SELLER)
        assert (await orders.get_order(db, order.id)).status == "pickup_scheduled"

    async def test_delivery_address_cannot_be_overwritten_by_others(
        self, db, delivery, delivery_repo, marketplace
    ) -> None:
        order = await marketplace.delivery_scheduled()
        with pytest.raises(ForbiddenError):
            await delivery.schedule_delivery(
                db, order.id, marketplace.slot(order.id, "delivery"), "666 Elsewhere Rd", holder_id=SELLER
            )
        assert delivery_repo.schedules[order.id].delivery_address == "1 Main St"


class TestRedeem:
    async def test_pickup_redemption(self, db, delivery, delivery_repo, publisher, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        code = marketplace.code(order.id, "pickup")
        updated = await delivery.redeem(db, order.id, "pickup", code, RIDER)
        assert updated.status == "picked_up"
        token = delivery_repo.tokens[(order.id, "pickup")]
        assert token.is_redeemed
        assert token.redeemed_by == RIDER
        assert TOKEN_REDEEMED in publisher.types()

    async def test_pickup_advances_when_delivery_already_scheduled(self, db, delivery, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        await delivery.schedule_delivery(db, order.id, marketplace.slot(order.id, "delivery"), "1 Main St")
        updated = await delivery.redeem(db, order.id, "pickup", marketplace.code(order.id, "pickup"), RIDER)
        assert updated.status == "delivery_scheduled"

    async def test_delivery_redemption_completes_and_releases(self, db, delivery, ledger, marketplace) -> None:
        order = await marketplace.delivery_scheduled()
        updated = await delivery.redeem(db, order.id, "delivery", marketplace.code(order.id, "delivery"), RIDER)
        assert updated.status == "completed"
        assert await ledger.account_balance(db, SELLER) == 4207
        assert await ledger.held_amount(db, order.id) == 0

    async def test_completion_retried_on_transient_failure(
        self, db, delivery, ledger, order_repo, marketplace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "STORE_RETRY_BASE_DELAY_MS", 0)
        order = await marketplace.delivery_scheduled()
        order_repo.transient_failures["completed"] = 1
        updated = await delivery.redeem(db, order.id, "delivery", marketplace.code(order.id, "delivery"), RIDER)
        assert updated.status == "completed"
        assert await ledger.held_amount(db, order.id) == 0

    async def test_completion_outage_leaves_order_delivered_until_settled(
        self,
        db,
        delivery,
        orders,
        ledger,
        order_repo,
        publisher,
        marketplace,
        monkeypatch: pytest.MonkeyPatch,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        monkeypatch.setattr(settings, "STORE_RETRY_BASE_DELAY_MS", 0)
        order = await marketplace.delivery_scheduled()
        order_repo.transient_failures["completed"] = 10
        updated = await delivery.redeem(db, order.id, "delivery", marketplace.code(order.id, "delivery"), RIDER)
        assert updated.status == "delivered"
        assert await ledger.held_amount(db, order.id) == 4500
        assert "settle it to complete" in caplog.text

        order_repo.transient_failures.clear()
        posted = await orders.settle(db, order.id)
        assert {e.entry_type for e in posted} == {"debit", "escrow_release", "payout"}
        assert (await orders.get_order(db, order.id)).status == "completed"
        assert await ledger.held_amount(db, order.id) == 0
        assert await ledger.account_balance(db, SELLER) == 4207
        assert publisher.events[-1].payload["to"] == "completed"

    async def test_pickup_while_paid_is_wrong_state(self, db, delivery, marketplace) -> None:
        order = await marketplace.paid()
        with pytest.raises(TokenWrongOrderStateError) as exc_info:
            await delivery.redeem(db, order.id, "pickup", marketplace.code(order.id, "pickup"), RIDER)
        assert exc_info.value.details["current"] == "paid"

    async def test_wrong_code(self, db, delivery, delivery_repo, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        with pytest.raises(InvalidTokenError):
            await delivery.redeem(db, order.id, "pickup", "WRONGCODE0", RIDER)
        assert not delivery_repo.tokens[(order.id, "pickup")].is_redeemed

    async def test_second_redemption_rejected(self, db, delivery, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        code = marketplace.code(order.id, "pickup")
        await delivery.redeem(db, order.id, "pickup", code, RIDER)
        with pytest.raises(TokenAlreadyUsedError):
            await delivery.redeem(db, order.id, "pickup", code, "rider-2")

    async def test_concurrent_redemptions_have_one_winner(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        code = marketplace.code(order.id, "pickup")
        results = await asyncio.gather(
            delivery.redeem(db, order.id, "pickup", code, RIDER),
            delivery.redeem(db, order.id, "pickup", code, "rider-2"),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], TokenAlreadyUsedError)
        history = await orders.history(db, order.id)
        assert [h.status for h in history].count("picked_up") == 1

    async def test_missing_token(self, db, delivery, marketplace) -> None:
        order = await marketplace.pending()
        with pytest.raises(TokenNotFoundError):
            await delivery.redeem(db, order.id, "pickup", "ABCDE12345", RIDER)

    async def test_redeem_scanned_payload(self, db, delivery, delivery_repo, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        payload = delivery_repo.tokens[(order.id, "pickup")].payload
        updated = await delivery.redeem_payload(db, payload, RIDER, expected_order_id=order.id)
        assert updated.status == "picked_up"

    async def test_payload_for_other_order_rejected(self, db, delivery, delivery_repo, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        payload = delivery_repo.tokens[(order.id, "pickup")].payload
        with pytest.raises(InvalidTokenError):
            await delivery.redeem_payload(db, payload, RIDER, expected_order_id="ord_other")

    async def test_payload_with_wrong_holder_rejected(self, db, delivery, delivery_repo, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        payload = delivery_repo.tokens[(order.id, "pickup")].payload.replace(SELLER, BUYER)
        with pytest.raises(InvalidTokenError):
            await delivery.redeem_payload(db, payload, RIDER)


class TestRiderWorkflow:
    async def test_pending_lists_unassigned_scheduled_orders(self, db, delivery, marketplace) -> None:
        scheduled = await marketplace.pickup_scheduled()
        await marketplace.paid()
        jobs = await delivery.list_pending(db)
        assert [j.schedule.order_id for j in jobs] == [scheduled.id]
        assert jobs[0].order_status == "pickup_scheduled"

    async def test_assign_once(self, db, delivery, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        schedule = await delivery.assign(db, order.id, RIDER)
        assert schedule.rider_id == RIDER
        assert schedule.rider_status == "assigned"
        with pytest.raises(DeliveryAlreadyAssignedError):
            await delivery.assign(db, order.id, "rider-2")
        assert [j.schedule.order_id for j in await delivery.list_assigned(db, RIDER)] == [order.id]
        assert await delivery.list_pending(db) == []

    async def test_assign_without_schedule(self, db, delivery, marketplace) -> None:
        order = await marketplace.paid()
        with pytest.raises(OrderNotFoundError):
            await delivery.assign(db, order.id, RIDER)

    async def test_progress_goes_to_history(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        await delivery.assign(db, order.id, RIDER)
        schedule = await delivery.update_status(
            db, order.id, RIDER, "en_route_to_pickup", location=(52.52, 13.40)
        )
        assert schedule.rider_status == "en_route_to_pickup"
        assert (await orders.get_order(db, order.id)).status == "pickup_scheduled"
        last = (await delivery.history(db, order.id))[-1]
        assert last.status == "en_route_to_pickup"
        assert (last.latitude, last.longitude) == (52.52, 13.40)

    async def test_picked_up_needs_code(self, db, delivery, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        await delivery.assign(db, order.id, RIDER)
        with pytest.raises(InvalidTokenError):
            await delivery.update_status(db, order.id, RIDER, "picked_up")

    async def test_picked_up_with_code_redeems(self, db, delivery, orders, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        await delivery.assign(db, order.id, RIDER)
        schedule = await delivery.update_status(
            db, order.id, RIDER, "picked_up", verification_code=marketplace.code(order.id, "pickup")
        )
        assert schedule.rider_status == "picked_up"
        assert (await orders.get_order(db, order.id)).status == "picked_up"

    async def test_other_rider_rejected(self, db, delivery, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        await delivery.assign(db, order.id, RIDER)
        with pytest.raises(DeliveryNotAssignedError):
            await delivery.update_status(db, order.id, "rider-2", "at_pickup")

    async def test_unknown_status_rejected(self, db, delivery, marketplace) -> None:
        order = await marketplace.pickup_scheduled()
        await delivery.assign(db, order.id, RIDER)
        with pytest.raises(InvalidTransitionError):
            await delivery.update_status(db, order.id, RIDER, "assigned")
