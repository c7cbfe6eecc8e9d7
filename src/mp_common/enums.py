"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PICKUP_SCHEDULED = "pickup_scheduled"
    PICKED_UP = "picked_up"
    DELIVERY_SCHEDULED = "delivery_scheduled"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class LedgerEntryType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    ESCROW_HOLD = "escrow_hold"
    ESCROW_RELEASE = "escrow_release"
    PAYOUT = "payout"
    REFUND = "refund"


class LedgerParty(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    PLATFORM = "platform"


class LedgerEntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TokenKind(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class RiderStatus(str, Enum):
    """Rider-reported progress; only PICKED_UP / DELIVERED move the order."""
    UNASSIGNED = "unassigned"
    ASSIGNED = "assigned"
    EN_ROUTE_TO_PICKUP = "en_route_to_pickup"
    AT_PICKUP = "at_pickup"
    PICKED_UP = "picked_up"
    EN_ROUTE_TO_DELIVERY = "en_route_to_delivery"
    AT_DELIVERY = "at_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"


class DisputeStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputeCategory(str, Enum):
    ITEM_NOT_RECEIVED = "item_not_received"
    ITEM_NOT_AS_DESCRIBED = "item_not_as_described"
    PAYMENT_ISSUE = "payment_issue"
    OTHER = "other"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EvidenceType(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    TEXT = "text"


class CallerRole(str, Enum):
    USER = "user"
    RIDER = "rider"
    ADMIN = "admin"
