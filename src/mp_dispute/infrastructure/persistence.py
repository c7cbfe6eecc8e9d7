"""DisputeRepository — raw SQL persistence implementation.

uq_disputes_order_active (partial unique index on order_id WHERE status <>
'closed') allows one live dispute per order; a second concurrent open gets
no row back from the INSERT.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_dispute.domain.models import Dispute, DisputeEvidence, DisputeMessage

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_DISPUTE_COLUMNS = """
    id, order_id, reporter_id, reported_id, category, description, status,
    priority, resolution, refund_amount, resolved_by, created_at, resolved_at, updated_at
"""

_INSERT_DISPUTE_SQL = text(f"""
    INSERT INTO disputes (id, order_id, reporter_id, reported_id, category,
        description, status, priority)
    VALUES (:id, :order_id, :reporter_id, :reported_id, :category,
        :description, :status, :priority)
    ON CONFLICT (order_id) WHERE status <> 'closed' DO NOTHING
    RETURNING {_DISPUTE_COLUMNS}
""")

_GET_DISPUTE_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM disputes WHERE id = :id
""")

_GET_ACTIVE_FOR_ORDER_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM disputes
    WHERE order_id = :order_id AND status <> 'closed'
""")

_UPDATE_STATUS_SQL = text(f"""
    UPDATE disputes
    SET status = :target,
        priority = COALESCE(:priority, priority),
        updated_at = NOW()
    WHERE id = :id
      AND status = ANY(string_to_array(CAST(:expected_csv AS TEXT), ','))
    RETURNING {_DISPUTE_COLUMNS}
""")

_RESOLVE_SQL = text(f"""
    UPDATE disputes
    SET status = 'resolved',
        resolution = :resolution,
        refund_amount = :refund_amount,
        resolved_by = :resolved_by,
        resolved_at = NOW(),
        updated_at = NOW()
    WHERE id = :id
      AND status = ANY(string_to_array(CAST(:expected_csv AS TEXT), ','))
    RETURNING {_DISPUTE_COLUMNS}
""")

_LIST_FOR_USER_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM disputes
    WHERE (reporter_id = :user_id OR reported_id = :user_id)
      AND (CAST(:status AS TEXT) IS NULL OR status = :status)
    ORDER BY created_at DESC
    LIMIT :limit
""")

_LIST_BY_STATUS_SQL = text(f"""
    SELECT {_DISPUTE_COLUMNS}
    FROM disputes
    WHERE status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ','))
    ORDER BY
        CASE priority WHEN 'high' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END,
        created_at ASC
    LIMIT :limit
""")

_INSERT_EVIDENCE_SQL = text("""
    INSERT INTO dispute_evidence (id, dispute_id, user_id, evidence_type, content)
    VALUES (:id, :dispute_id, :user_id, :evidence_type, :content)
    RETURNING id, dispute_id, user_id, evidence_type, content, created_at
""")

_LIST_EVIDENCE_SQL = text("""
    SELECT id, dispute_id, user_id, evidence_type, content, created_at
    FROM dispute_evidence
    WHERE dispute_id = :dispute_id
    ORDER BY created_at ASC, id ASC
""")

_INSERT_MESSAGE_SQL = text("""
    INSERT INTO dispute_messages (id, dispute_id, sender_id, content, is_system_message)
    VALUES (:id, :dispute_id, :sender_id, :content, :is_system_message)
    RETURNING id, dispute_id, sender_id, content, is_system_message, created_at
""")

_LIST_MESSAGES_SQL = text("""
    SELECT id, dispute_id, sender_id, content, is_system_message, created_at
    FROM dispute_messages
    WHERE dispute_id = :dispute_id
    ORDER BY created_at ASC, id ASC
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_dispute(row: Any) -> Dispute:
    return Dispute(
        id=row.id,
        order_id=row.order_id,
        reporter_id=row.reporter_id,
        reported_id=row.reported_id,
        category=row.category,
        description=row.description,
        status=row.status,
        priority=row.priority,
        resolution=row.resolution,
        refund_amount=row.refund_amount,
        resolved_by=row.resolved_by,
        created_at=row.created_at,
        resolved_at=row.resolved_at,
        updated_at=row.updated_at,
    )


def _row_to_evidence(row: Any) -> DisputeEvidence:
    return DisputeEvidence(
        id=row.id,
        dispute_id=row.dispute_id,
        user_id=row.user_id,
        evidence_type=row.evidence_type,
        content=row.content,
        created_at=row.created_at,
    )


def _row_to_message(row: Any) -> DisputeMessage:
    return DisputeMessage(
        id=row.id,
        dispute_id=row.dispute_id,
        sender_id=row.sender_id,
        content=row.content,
        is_system_message=row.is_system_message,
        created_at=row.created_at,
    )


class DisputeRepository:
    async def create(self, db: AsyncSession, dispute: Dispute) -> Dispute | None:
        result = await db.execute(
            _INSERT_DISPUTE_SQL,
            {
                "id": dispute.id,
                "order_id": dispute.order_id,
                "reporter_id": dispute.reporter_id,
                "reported_id": dispute.reported_id,
                "category": dispute.category,
                "description": dispute.description,
                "status": dispute.status,
                "priority": dispute.priority,
            },
        )
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def get_by_id(self, db: AsyncSession, dispute_id: str) -> Dispute | None:
        result = await db.execute(_GET_DISPUTE_SQL, {"id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def get_active_for_order(self, db: AsyncSession, order_id: str) -> Dispute | None:
        result = await db.execute(_GET_ACTIVE_FOR_ORDER_SQL, {"order_id": order_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def update_status(
        self,
        db: AsyncSession,
        dispute_id: str,
        expected: list[str],
        target: str,
        priority: str | None = None,
    ) -> Dispute | None:
        result = await db.execute(
            _UPDATE_STATUS_SQL,
            {
                "id": dispute_id,
                "expected_csv": ",".join(expected),
                "target": target,
                "priority": priority,
            },
        )
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: str,
        expected: list[str],
        resolution: str,
        refund_amount: int,
        resolved_by: str,
    ) -> Dispute | None:
        result = await db.execute(
            _RESOLVE_SQL,
            {
                "id": dispute_id,
                "expected_csv": ",".join(expected),
                "resolution": resolution,
                "refund_amount": refund_amount,
                "resolved_by": resolved_by,
            },
        )
        row = result.fetchone()
        return _row_to_dispute(row) if row else None

    async def list_for_user(
        self, db: AsyncSession, user_id: str, status: str | None, limit: int
    ) -> list[Dispute]:
        result = await db.execute(
            _LIST_FOR_USER_SQL, {"user_id": user_id, "status": status, "limit": limit}
        )
        return [_row_to_dispute(row) for row in result.fetchall()]

    async def list_by_status(self, db: AsyncSession, statuses: list[str], limit: int) -> list[Dispute]:
        result = await db.execute(
            _LIST_BY_STATUS_SQL, {"statuses_csv": ",".join(statuses), "limit": limit}
        )
        return [_row_to_dispute(row) for row in result.fetchall()]

    async def add_evidence(self, db: AsyncSession, evidence: DisputeEvidence) -> DisputeEvidence:
        result = await db.execute(
            _INSERT_EVIDENCE_SQL,
            {
                "id": evidence.id,
                "dispute_id": evidence.dispute_id,
                "user_id": evidence.user_id,
                "evidence_type": evidence.evidence_type,
                "content": evidence.content,
            },
        )
        return _row_to_evidence(result.fetchone())

    async def list_evidence(self, db: AsyncSession, dispute_id: str) -> list[DisputeEvidence]:
        result = await db.execute(_LIST_EVIDENCE_SQL, {"dispute_id": dispute_id})
        return [_row_to_evidence(row) for row in result.fetchall()]

    async def add_message(self, db: AsyncSession, message: DisputeMessage) -> DisputeMessage:
        result = await db.execute(
            _INSERT_MESSAGE_SQL,
            {
                "id": message.id,
                "dispute_id": message.dispute_id,
                "sender_id": message.sender_id,
                "content": message.content,
                "is_system_message": message.is_system_message,
            },
        )
        return _row_to_message(result.fetchone())

    async def list_messages(self, db: AsyncSession, dispute_id: str) -> list[DisputeMessage]:
        result = await db.execute(_LIST_MESSAGES_SQL, {"dispute_id": dispute_id})
        return [_row_to_message(row) for row in result.fetchall()]
