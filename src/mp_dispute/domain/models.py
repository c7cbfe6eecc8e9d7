"""Dispute domain models — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime

from src.mp_common.enums import DisputePriority, DisputeStatus

ACTIVE_STATUSES = frozenset({DisputeStatus.OPEN.value, DisputeStatus.INVESTIGATING.value})


@dataclass
class Dispute:
    id: str
    order_id: str
    reporter_id: str
    reported_id: str
    category: str            # DisputeCategory value
    description: str
    status: str = DisputeStatus.OPEN.value
    priority: str = DisputePriority.MEDIUM.value
    resolution: str | None = None
    refund_amount: int | None = None
    resolved_by: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        """Open or under investigation: the order is frozen."""
        return self.status in ACTIVE_STATUSES

    def involves(self, user_id: str) -> bool:
        return user_id in (self.reporter_id, self.reported_id)


@dataclass
class DisputeEvidence:
    id: str
    dispute_id: str
    user_id: str
    evidence_type: str       # EvidenceType value
    content: str             # URL for image/document, text otherwise
    created_at: datetime | None = None


@dataclass
class DisputeMessage:
    id: str
    dispute_id: str
    sender_id: str
    content: str
    is_system_message: bool = False
    created_at: datetime | None = None


@dataclass
class DisputeDetail:
    dispute: Dispute
    evidence: list[DisputeEvidence] = field(default_factory=list)
    messages: list[DisputeMessage] = field(default_factory=list)
