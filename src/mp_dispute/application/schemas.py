"""Pydantic schemas for mp_dispute API."""

from pydantic import BaseModel, Field

from src.mp_common.datetime_utils import iso_or_none
from src.mp_common.enums import DisputeCategory, DisputePriority, EvidenceType
from src.mp_dispute.domain.models import Dispute, DisputeDetail, DisputeEvidence, DisputeMessage

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class EvidenceInput(BaseModel):
    evidence_type: EvidenceType
    content: str = Field(..., min_length=1, max_length=2000)


class OpenDisputeRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    category: DisputeCategory
    description: str = Field(..., min_length=1, max_length=2000)
    evidence: list[EvidenceInput] = Field(default_factory=list, max_length=20)


class AddEvidenceRequest(EvidenceInput):
    pass


class PostMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class StartInvestigationRequest(BaseModel):
    priority: DisputePriority | None = None


class ResolveDisputeRequest(BaseModel):
    resolution: str = Field(..., min_length=1, max_length=2000)
    refund_amount_cents: int | None = Field(None, ge=0)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DisputeResponse(BaseModel):
    id: str
    order_id: str
    reporter_id: str
    reported_id: str
    category: str
    description: str
    status: str
    priority: str
    resolution: str | None
    refund_amount_cents: int | None
    resolved_by: str | None
    created_at: str | None
    resolved_at: str | None

    @classmethod
    def from_domain(cls, dispute: Dispute) -> "DisputeResponse":
        return cls(
            id=dispute.id,
            order_id=dispute.order_id,
            reporter_id=dispute.reporter_id,
            reported_id=dispute.reported_id,
            category=dispute.category,
            description=dispute.description,
            status=dispute.status,
            priority=dispute.priority,
            resolution=dispute.resolution,
            refund_amount_cents=dispute.refund_amount,
            resolved_by=dispute.resolved_by,
            created_at=iso_or_none(dispute.created_at),
            resolved_at=iso_or_none(dispute.resolved_at),
        )


class EvidenceResponse(BaseModel):
    id: str
    user_id: str
    evidence_type: str
    content: str
    created_at: str | None

    @classmethod
    def from_domain(cls, evidence: DisputeEvidence) -> "EvidenceResponse":
        return cls(
            id=evidence.id,
            user_id=evidence.user_id,
            evidence_type=evidence.evidence_type,
            content=evidence.content,
            created_at=iso_or_none(evidence.created_at),
        )


class MessageResponse(BaseModel):
    id: str
    sender_id: str
    content: str
    is_system_message: bool
    created_at: str | None

    @classmethod
    def from_domain(cls, message: DisputeMessage) -> "MessageResponse":
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            content=message.content,
            is_system_message=message.is_system_message,
            created_at=iso_or_none(message.created_at),
        )


class DisputeDetailResponse(DisputeResponse):
    evidence: list[EvidenceResponse]
    messages: list[MessageResponse]

    @classmethod
    def from_detail(cls, detail: DisputeDetail) -> "DisputeDetailResponse":
        return cls(
            **DisputeResponse.from_domain(detail.dispute).model_dump(),
            evidence=[EvidenceResponse.from_domain(e) for e in detail.evidence],
            messages=[MessageResponse.from_domain(m) for m in detail.messages],
        )
