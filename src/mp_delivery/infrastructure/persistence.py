"""DeliveryRepository — raw SQL over delivery_tokens and delivery_schedules.

Single-use and single-assignment are enforced by the WHERE clause of the
UPDATE itself (redeemed_at IS NULL, rider_id IS NULL): of two concurrent
writers exactly one gets a row back.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_delivery.domain.models import DeliveryJob, DeliverySchedule, DeliveryToken

# ---------------------------------------------------------------------------
# SQL statements — tokens
# ---------------------------------------------------------------------------

_TOKEN_COLUMNS = """
    order_id, kind, verification_code, payload, holder_id,
    issued_at, redeemed_at, redeemed_by
"""

_INSERT_TOKEN_SQL = text(f"""
    INSERT INTO delivery_tokens
        (order_id, kind, verification_code, payload, holder_id, issued_at)
    VALUES (:order_id, :kind, :verification_code, :payload, :holder_id, :issued_at)
    ON CONFLICT (order_id, kind) DO NOTHING
    RETURNING {_TOKEN_COLUMNS}
""")

_GET_TOKEN_SQL = text(f"""
    SELECT {_TOKEN_COLUMNS}
    FROM delivery_tokens
    WHERE order_id = :order_id AND kind = :kind
""")

_LIST_TOKENS_SQL = text(f"""
    SELECT {_TOKEN_COLUMNS}
    FROM delivery_tokens
    WHERE order_id = :order_id
    ORDER BY kind DESC
""")

_MARK_REDEEMED_SQL = text(f"""
    UPDATE delivery_tokens
    SET redeemed_at = NOW(), redeemed_by = :rider_id
    WHERE order_id = :order_id AND kind = :kind AND redeemed_at IS NULL
    RETURNING {_TOKEN_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL statements — schedules
# ---------------------------------------------------------------------------

_SCHEDULE_COLUMNS = """
    order_id, pickup_slot, pickup_instructions, delivery_slot, delivery_address,
    delivery_instructions, rider_id, rider_status, assigned_at, created_at, updated_at
"""

_GET_SCHEDULE_SQL = text(f"""
    SELECT {_SCHEDULE_COLUMNS}
    FROM delivery_schedules
    WHERE order_id = :order_id
""")

_SAVE_PICKUP_SQL = text(f"""
    INSERT INTO delivery_schedules (order_id, pickup_slot, pickup_instructions)
    VALUES (:order_id, :slot, :instructions)
    ON CONFLICT (order_id) DO UPDATE
    SET pickup_slot = EXCLUDED.pickup_slot,
        pickup_instructions = EXCLUDED.pickup_instructions,
        updated_at = NOW()
    RETURNING {_SCHEDULE_COLUMNS}
""")

_SAVE_DELIVERY_SQL = text(f"""
    INSERT INTO delivery_schedules
        (order_id, delivery_slot, delivery_address, delivery_instructions)
    VALUES (:order_id, :slot, :address, :instructions)
    ON CONFLICT (order_id) DO UPDATE
    SET delivery_slot = EXCLUDED.delivery_slot,
        delivery_address = EXCLUDED.delivery_address,
        delivery_instructions = EXCLUDED.delivery_instructions,
        updated_at = NOW()
    RETURNING {_SCHEDULE_COLUMNS}
""")

_ASSIGN_RIDER_SQL = text(f"""
    UPDATE delivery_schedules
    SET rider_id = :rider_id, rider_status = 'assigned',
        assigned_at = NOW(), updated_at = NOW()
    WHERE order_id = :order_id
      AND rider_id IS NULL
      AND EXISTS (
          SELECT 1 FROM orders o
          WHERE o.id = delivery_schedules.order_id
            AND o.status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ','))
      )
    RETURNING {_SCHEDULE_COLUMNS}
""")

_SET_RIDER_STATUS_SQL = text(f"""
    UPDATE delivery_schedules
    SET rider_status = :rider_status, updated_at = NOW()
    WHERE order_id = :order_id AND rider_id = :rider_id
    RETURNING {_SCHEDULE_COLUMNS}
""")

_JOB_COLUMNS = """
    s.order_id, s.pickup_slot, s.pickup_instructions, s.delivery_slot,
    s.delivery_address, s.delivery_instructions, s.rider_id, s.rider_status,
    s.assigned_at, s.created_at, s.updated_at,
    o.status AS order_status, o.buyer_id, o.seller_id, o.item_id
"""

_LIST_UNASSIGNED_SQL = text(f"""
    SELECT {_JOB_COLUMNS}
    FROM delivery_schedules s
    JOIN orders o ON o.id = s.order_id
    WHERE s.rider_id IS NULL
      AND o.status = ANY(string_to_array(CAST(:statuses_csv AS TEXT), ','))
    ORDER BY s.created_at ASC
    LIMIT :limit
""")

_LIST_FOR_RIDER_SQL = text(f"""
    SELECT {_JOB_COLUMNS}
    FROM delivery_schedules s
    JOIN orders o ON o.id = s.order_id
    WHERE s.rider_id = :rider_id
    ORDER BY s.assigned_at DESC
    LIMIT :limit
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_token(row: Any) -> DeliveryToken:
    return DeliveryToken(
        order_id=row.order_id,
        kind=row.kind,
        verification_code=row.verification_code,
        payload=row.payload,
        holder_id=row.holder_id,
        issued_at=row.issued_at,
        redeemed_at=row.redeemed_at,
        redeemed_by=row.redeemed_by,
    )


def _row_to_schedule(row: Any) -> DeliverySchedule:
    return DeliverySchedule(
        order_id=row.order_id,
        pickup_slot=row.pickup_slot,
        pickup_instructions=row.pickup_instructions,
        delivery_slot=row.delivery_slot,
        delivery_address=row.delivery_address,
        delivery_instructions=row.delivery_instructions,
        rider_id=row.rider_id,
        rider_status=row.rider_status,
        assigned_at=row.assigned_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_job(row: Any) -> DeliveryJob:
    return DeliveryJob(
        schedule=_row_to_schedule(row),
        order_status=row.order_status,
        buyer_id=row.buyer_id,
        seller_id=row.seller_id,
        item_id=row.item_id,
    )


class DeliveryRepository:
    # --- tokens ---

    async def insert_token(self, db: AsyncSession, token: DeliveryToken) -> DeliveryToken | None:
        result = await db.execute(
            _INSERT_TOKEN_SQL,
            {
                "order_id": token.order_id,
                "kind": token.kind,
                "verification_code": token.verification_code,
                "payload": token.payload,
                "holder_id": token.holder_id,
                "issued_at": token.issued_at,
            },
        )
        row = result.fetchone()
        return _row_to_token(row) if row else None

    async def get_token(self, db: AsyncSession, order_id: str, kind: str) -> DeliveryToken | None:
        result = await db.execute(_GET_TOKEN_SQL, {"order_id": order_id, "kind": kind})
        row = result.fetchone()
        return _row_to_token(row) if row else None

    async def list_tokens(self, db: AsyncSession, order_id: str) -> list[DeliveryToken]:
        result = await db.execute(_LIST_TOKENS_SQL, {"order_id": order_id})
        return [_row_to_token(row) for row in result.fetchall()]

    async def mark_redeemed(
        self, db: AsyncSession, order_id: str, kind: str, rider_id: str
    ) -> DeliveryToken | None:
        result = await db.execute(
            _MARK_REDEEMED_SQL, {"order_id": order_id, "kind": kind, "rider_id": rider_id}
        )
        row = result.fetchone()
        return _row_to_token(row) if row else None

    # --- schedules ---

    async def get_schedule(self, db: AsyncSession, order_id: str) -> DeliverySchedule | None:
        result = await db.execute(_GET_SCHEDULE_SQL, {"order_id": order_id})
        row = result.fetchone()
        return _row_to_schedule(row) if row else None

    async def save_pickup(
        self, db: AsyncSession, order_id: str, slot: str, instructions: str | None
    ) -> DeliverySchedule:
        result = await db.execute(
            _SAVE_PICKUP_SQL, {"order_id": order_id, "slot": slot, "instructions": instructions}
        )
        return _row_to_schedule(result.fetchone())

    async def save_delivery(
        self,
        db: AsyncSession,
        order_id: str,
        slot: str,
        address: str,
        instructions: str | None,
    ) -> DeliverySchedule:
        result = await db.execute(
            _SAVE_DELIVERY_SQL,
            {"order_id": order_id, "slot": slot, "address": address, "instructions": instructions},
        )
        return _row_to_schedule(result.fetchone())

    async def assign_rider(
        self, db: AsyncSession, order_id: str, rider_id: str, assignable_statuses: list[str]
    ) -> DeliverySchedule | None:
        result = await db.execute(
            _ASSIGN_RIDER_SQL,
            {
                "order_id": order_id,
                "rider_id": rider_id,
                "statuses_csv": ",".join(assignable_statuses),
            },
        )
        row = result.fetchone()
        return _row_to_schedule(row) if row else None

    async def set_rider_status(
        self, db: AsyncSession, order_id: str, rider_id: str, rider_status: str
    ) -> DeliverySchedule | None:
        result = await db.execute(
            _SET_RIDER_STATUS_SQL,
            {"order_id": order_id, "rider_id": rider_id, "rider_status": rider_status},
        )
        row = result.fetchone()
        return _row_to_schedule(row) if row else None

    async def list_unassigned(
        self, db: AsyncSession, order_statuses: list[str], limit: int
    ) -> list[DeliveryJob]:
        result = await db.execute(
            _LIST_UNASSIGNED_SQL, {"statuses_csv": ",".join(order_statuses), "limit": limit}
        )
        return [_row_to_job(row) for row in result.fetchall()]

    async def list_for_rider(self, db: AsyncSession, rider_id: str, limit: int) -> list[DeliveryJob]:
        result = await db.execute(_LIST_FOR_RIDER_SQL, {"rider_id": rider_id, "limit": limit})
        return [_row_to_job(row) for row in result.fetchall()]
