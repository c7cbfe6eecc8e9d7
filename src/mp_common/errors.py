"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth
  2xxx: Ledger
  3xxx: Order
  4xxx: Delivery
  5xxx: Dispute
  9xxx: System

Every error carries a ``details`` dict (order id, current vs. requested state,
caller, ...) that the API layer returns as ``data`` so clients can render a
specific message. None of these are retried automatically except
StoreUnavailableError, which is only raised after retries are exhausted.
"""

from typing import Any


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        self.details = details or {}
        super().__init__(message)


# --- 1xxx: Auth ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1001, "Invalid or expired credentials", 401)


class ForbiddenError(AppError):
    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(1002, detail, 403)


# --- 2xxx: Ledger ---

class NoActiveHoldError(AppError):
    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(
            2001,
            f"No active escrow hold for order {order_id}: {reason}",
            409,
            {"order_id": order_id, "reason": reason},
        )


class AmountMismatchError(AppError):
    def __init__(self, order_id: str, amount: int, total: int) -> None:
        super().__init__(
            2002,
            f"Amount {amount} cents is outside 0..{total} for order {order_id}",
            422,
            {"order_id": order_id, "amount": amount, "total": total},
        )


# --- 3xxx: Order ---

class OrderNotFoundError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(3001, f"Order not found: {order_id}", 404, {"order_id": order_id})


class InvalidTransitionError(AppError):
    def __init__(self, order_id: str, current: str, requested: str, caller: str) -> None:
        super().__init__(
            3002,
            f"Order {order_id}: transition {current} -> {requested} not allowed (caller {caller})",
            409,
            {"order_id": order_id, "current": current, "requested": requested, "caller": caller},
        )


class StaleStateError(AppError):
    def __init__(self, order_id: str, expected: str, actual: str) -> None:
        super().__init__(
            3003,
            f"Order {order_id} is {actual}, expected {expected}",
            409,
            {"order_id": order_id, "expected": expected, "actual": actual},
        )


class InvalidOrderError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(3004, f"Invalid order: {detail}", 422)


# --- 4xxx: Delivery ---

class TokenNotFoundError(AppError):
    def __init__(self, order_id: str, kind: str) -> None:
        super().__init__(
            4001,
            f"No {kind} token for order {order_id}",
            404,
            {"order_id": order_id, "kind": kind},
        )


class TokenAlreadyUsedError(AppError):
    def __init__(self, order_id: str, kind: str) -> None:
        super().__init__(
            4002,
            f"The {kind} token for order {order_id} has already been redeemed",
            409,
            {"order_id": order_id, "kind": kind},
        )


class InvalidTokenError(AppError):
    def __init__(self, order_id: str | None, kind: str | None, detail: str = "verification code mismatch") -> None:
        super().__init__(
            4003,
            f"Invalid token: {detail}",
            422,
            {"order_id": order_id, "kind": kind},
        )


class TokenWrongOrderStateError(AppError):
    def __init__(self, order_id: str, kind: str, current: str, required: str) -> None:
        super().__init__(
            4004,
            f"Cannot redeem {kind} token while order {order_id} is {current} (requires {required})",
            409,
            {"order_id": order_id, "kind": kind, "current": current, "required": required},
        )


class SlotNotOfferedError(AppError):
    def __init__(self, order_id: str, slot: str) -> None:
        super().__init__(
            4005,
            f"Time slot {slot} was not offered for order {order_id}",
            422,
            {"order_id": order_id, "slot": slot},
        )


class DeliveryAlreadyAssignedError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(
            4006, f"Delivery {order_id} already assigned to a rider", 409, {"order_id": order_id}
        )


class DeliveryNotAssignedError(AppError):
    def __init__(self, order_id: str, rider_id: str) -> None:
        super().__init__(
            4007,
            f"Delivery {order_id} not found or not assigned to you",
            404,
            {"order_id": order_id, "rider_id": rider_id},
        )


# --- 5xxx: Dispute ---

class DisputeNotFoundError(AppError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(5001, f"Dispute not found: {dispute_id}", 404, {"dispute_id": dispute_id})


class DisputeAlreadyOpenError(AppError):
    def __init__(self, order_id: str, dispute_id: str) -> None:
        super().__init__(
            5002,
            f"Order {order_id} already has an active dispute {dispute_id}",
            409,
            {"order_id": order_id, "dispute_id": dispute_id},
        )


class DisputeNotEligibleError(AppError):
    def __init__(self, order_id: str, status: str) -> None:
        super().__init__(
            5003,
            f"Order {order_id} in status {status} cannot be disputed",
            422,
            {"order_id": order_id, "current": status},
        )


class DisputeNotOpenError(AppError):
    def __init__(self, dispute_id: str, status: str) -> None:
        super().__init__(
            5004,
            f"Dispute {dispute_id} is {status}",
            409,
            {"dispute_id": dispute_id, "current": status},
        )


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class StoreUnavailableError(AppError):
    def __init__(self, operation: str) -> None:
        super().__init__(
            9003, f"Store unavailable during {operation}, safe to retry", 503, {"operation": operation}
        )
