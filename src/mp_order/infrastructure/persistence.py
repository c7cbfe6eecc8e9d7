"""OrderRepository — raw SQL persistence implementation.

Status changes go through one conditional UPDATE; there is no unconditional
status write anywhere, so two writers racing from the same status produce
exactly one winner and the loser sees zero rows.
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_order.domain.models import Order, StatusHistoryEntry

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_COLUMNS = """
    id, buyer_id, seller_id, item_id, total_amount, platform_fee, seller_amount,
    status, payment_reference, created_at, updated_at
"""

_INSERT_ORDER_SQL = text(f"""
    INSERT INTO orders (id, buyer_id, seller_id, item_id,
        total_amount, platform_fee, seller_amount, status)
    VALUES (:id, :buyer_id, :seller_id, :item_id,
        :total_amount, :platform_fee, :seller_amount, :status)
    RETURNING {_SELECT_COLUMNS}
""")

_GET_ORDER_BY_ID_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM orders WHERE id = :id
""")

_CAS_STATUS_SQL = text(f"""
    UPDATE orders
    SET status = :target,
        payment_reference = COALESCE(:payment_reference, payment_reference),
        updated_at = NOW()
    WHERE id = :id AND status = :expected
    RETURNING {_SELECT_COLUMNS}
""")

_LIST_FOR_USER_SQL = text(f"""
    SELECT {_SELECT_COLUMNS}
    FROM orders
    WHERE (buyer_id = :user_id OR seller_id = :user_id)
      AND (CAST(:status AS TEXT) IS NULL OR status = :status)
    ORDER BY id DESC
    LIMIT :limit
""")

_INSERT_HISTORY_SQL = text("""
    INSERT INTO order_status_history
        (order_id, status, notes, latitude, longitude, created_by)
    VALUES (:order_id, :status, :notes, :latitude, :longitude, :created_by)
    RETURNING id, order_id, status, notes, latitude, longitude, created_by, created_at
""")

_LIST_HISTORY_SQL = text("""
    SELECT id, order_id, status, notes, latitude, longitude, created_by, created_at
    FROM order_status_history
    WHERE order_id = :order_id
    ORDER BY id ASC
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_order(row: Any) -> Order:
    return Order(
        id=row.id,
        buyer_id=row.buyer_id,
        seller_id=row.seller_id,
        item_id=row.item_id,
        total_amount=row.total_amount,
        platform_fee=row.platform_fee,
        seller_amount=row.seller_amount,
        status=row.status,
        payment_reference=row.payment_reference,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_history(row: Any) -> StatusHistoryEntry:
    return StatusHistoryEntry(
        id=row.id,
        order_id=row.order_id,
        status=row.status,
        notes=row.notes,
        latitude=float(row.latitude) if row.latitude is not None else None,
        longitude=float(row.longitude) if row.longitude is not None else None,
        created_by=row.created_by,
        created_at=row.created_at,
    )


class OrderRepository:
    async def create(self, db: AsyncSession, order: Order) -> Order:
        result = await db.execute(
            _INSERT_ORDER_SQL,
            {
                "id": order.id,
                "buyer_id": order.buyer_id,
                "seller_id": order.seller_id,
                "item_id": order.item_id,
                "total_amount": order.total_amount,
                "platform_fee": order.platform_fee,
                "seller_amount": order.seller_amount,
                "status": order.status,
            },
        )
        return _row_to_order(result.fetchone())

    async def get_by_id(self, db: AsyncSession, order_id: str) -> Order | None:
        result = await db.execute(_GET_ORDER_BY_ID_SQL, {"id": order_id})
        row = result.fetchone()
        return _row_to_order(row) if row else None

    async def compare_and_set_status(
        self,
        db: AsyncSession,
        order_id: str,
        expected: str,
        target: str,
        payment_reference: str | None = None,
    ) -> Order | None:
        result = await db.execute(
            _CAS_STATUS_SQL,
            {
                "id": order_id,
                "expected": expected,
                "target": target,
                "payment_reference": payment_reference,
            },
        )
        row = result.fetchone()
        return _row_to_order(row) if row else None

    async def list_for_user(
        self, db: AsyncSession, user_id: str, status: str | None, limit: int
    ) -> list[Order]:
        result = await db.execute(
            _LIST_FOR_USER_SQL, {"user_id": user_id, "status": status, "limit": limit}
        )
        return [_row_to_order(row) for row in result.fetchall()]

    async def append_history(
        self, db: AsyncSession, entry: StatusHistoryEntry
    ) -> StatusHistoryEntry:
        result = await db.execute(
            _INSERT_HISTORY_SQL,
            {
                "order_id": entry.order_id,
                "status": entry.status,
                "notes": entry.notes,
                "latitude": entry.latitude,
                "longitude": entry.longitude,
                "created_by": entry.created_by,
            },
        )
        return _row_to_history(result.fetchone())

    async def list_history(self, db: AsyncSession, order_id: str) -> list[StatusHistoryEntry]:
        result = await db.execute(_LIST_HISTORY_SQL, {"order_id": order_id})
        return [_row_to_history(row) for row in result.fetchall()]
