"""Tests for mp_common.errors and the response envelope."""

from src.mp_common.errors import (
    AmountMismatchError,
    AppError,
    DisputeAlreadyOpenError,
    InvalidTransitionError,
    NoActiveHoldError,
    OrderNotFoundError,
    StaleStateError,
    StoreUnavailableError,
    TokenAlreadyUsedError,
    TokenWrongOrderStateError,
)
from src.mp_common.response import error_response, success_response


class TestErrorCodes:
    def test_all_are_app_errors(self) -> None:
        for err in [
            OrderNotFoundError("ord_1"),
            NoActiveHoldError("ord_1", "no escrow hold posted"),
            TokenAlreadyUsedError("ord_1", "pickup"),
        ]:
            assert isinstance(err, AppError)

    def test_ranges(self) -> None:
        assert NoActiveHoldError("o", "r").code // 1000 == 2
        assert OrderNotFoundError("o").code // 1000 == 3
        assert TokenAlreadyUsedError("o", "pickup").code // 1000 == 4
        assert DisputeAlreadyOpenError("o", "d").code // 1000 == 5
        assert StoreUnavailableError("x").code // 1000 == 9

    def test_http_statuses(self) -> None:
        assert OrderNotFoundError("o").http_status == 404
        assert StaleStateError("o", "paid", "cancelled").http_status == 409
        assert AmountMismatchError("o", 10, 5).http_status == 422
        assert StoreUnavailableError("x").http_status == 503


class TestErrorDetails:
    def test_invalid_transition_carries_states_and_caller(self) -> None:
        err = InvalidTransitionError("ord_1", "completed", "disputed", "buyer-1")
        assert err.details == {
            "order_id": "ord_1",
            "current": "completed",
            "requested": "disputed",
            "caller": "buyer-1",
        }

    def test_stale_state_carries_expected_and_actual(self) -> None:
        err = StaleStateError("ord_1", "delivered", "disputed")
        assert err.details["expected"] == "delivered"
        assert err.details["actual"] == "disputed"

    def test_wrong_order_state(self) -> None:
        err = TokenWrongOrderStateError("ord_1", "pickup", "paid", "pickup_scheduled")
        assert err.details["current"] == "paid"
        assert err.details["required"] == "pickup_scheduled"


class TestResponseEnvelope:
    def test_success(self) -> None:
        resp = success_response({"id": "ord_1"})
        assert resp.code == 0
        assert resp.message == "success"
        assert resp.data == {"id": "ord_1"}
        assert resp.request_id.startswith("req_")

    def test_error_carries_details_as_data(self) -> None:
        resp = error_response(3001, "Order not found: ord_1", {"order_id": "ord_1"})
        assert resp.code == 3001
        assert resp.data == {"order_id": "ord_1"}

    def test_error_without_details(self) -> None:
        assert error_response(9002, "boom").data is None
