"""EscrowLedgerService — hold / release / refund exactly once per order.

Every operation appends entries whose signed amounts sum to zero, so the sum
of an order's entries is 0 after each operation (hold, then release or
refund). The hold-consuming platform debit is the "anchor" of a settlement:
it is unique per order at the storage level, so whichever of release/refund
inserts it first owns the hold, and any other settlement attempt either
replays (same idempotency key) or is rejected with NoActiveHold.

Transaction ownership: these methods never commit. The order service runs
them inside the same transaction as the status write that triggers them.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.mp_common.enums import LedgerEntryType, LedgerParty
from src.mp_common.errors import AmountMismatchError, InternalError, InvalidOrderError, NoActiveHoldError
from src.mp_ledger.domain.fees import settlement_for
from src.mp_ledger.domain.models import PLATFORM_ACCOUNT_ID, LedgerEntry, LedgerPosting
from src.mp_ledger.domain.repository import LedgerRepositoryProtocol
from src.mp_ledger.infrastructure.persistence import LedgerRepository

logger = logging.getLogger(__name__)

HOLD_KEY = "hold"
RELEASE_KEY = "release"


def refund_key(resolution_id: str) -> str:
    return f"refund:{resolution_id}"


class EscrowLedgerService:
    def __init__(self, repo: LedgerRepositoryProtocol | None = None) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()

    # ------------------------------------------------------------------
    # Postings
    # ------------------------------------------------------------------

    async def hold(
        self, db: AsyncSession, order_id: str, amount: int, buyer_id: str
    ) -> list[LedgerEntry]:
        """Move ``amount`` from the buyer into platform escrow. Idempotent per order."""
        if amount <= 0:
            raise InvalidOrderError(f"hold amount must be positive, got {amount}")

        buyer_entry = await self._repo.insert_entry(
            db,
            LedgerPosting(
                order_id=order_id,
                entry_type=LedgerEntryType.ESCROW_HOLD.value,
                party=LedgerParty.BUYER.value,
                account_id=buyer_id,
                amount=-amount,
                idempotency_key=HOLD_KEY,
                description="Escrow hold on payment capture",
            ),
        )
        if buyer_entry is None:
            existing = await self._repo.get_entry(
                db, order_id, LedgerEntryType.ESCROW_HOLD.value, LedgerParty.BUYER.value
            )
            if existing is None:
                raise InternalError(f"Escrow hold for {order_id} conflicted but was not found")
            if -existing.amount != amount:
                raise AmountMismatchError(order_id, amount, -existing.amount)
            logger.info("Escrow hold replay for order %s", order_id)
            return await self._entries_with_key(db, order_id, HOLD_KEY)

        platform_entry = await self._insert_required(
            db,
            LedgerPosting(
                order_id=order_id,
                entry_type=LedgerEntryType.CREDIT.value,
                party=LedgerParty.PLATFORM.value,
                account_id=PLATFORM_ACCOUNT_ID,
                amount=amount,
                idempotency_key=HOLD_KEY,
                description="Escrow held by platform",
            ),
        )
        logger.info("Escrow hold posted: order=%s amount=%d buyer=%s", order_id, amount, buyer_id)
        return [buyer_entry, platform_entry]

    async def release(self, db: AsyncSession, order_id: str, seller_id: str) -> list[LedgerEntry]:
        """Settle the whole hold to the seller, net of platform and payout fees."""
        hold = await self._require_hold(db, order_id)
        total = -hold.amount
        settlement = settlement_for(total)
        postings = [
            self._anchor(order_id, total, RELEASE_KEY),
            LedgerPosting(
                order_id=order_id,
                entry_type=LedgerEntryType.ESCROW_RELEASE.value,
                party=LedgerParty.SELLER.value,
                account_id=seller_id,
                amount=settlement.seller_amount,
                idempotency_key=RELEASE_KEY,
                description="Escrow released to seller",
            ),
            LedgerPosting(
                order_id=order_id,
                entry_type=LedgerEntryType.PAYOUT.value,
                party=LedgerParty.PLATFORM.value,
                account_id=PLATFORM_ACCOUNT_ID,
                amount=settlement.platform_amount,
                idempotency_key=RELEASE_KEY,
                description=(
                    f"Platform fee {settlement.platform_fee} + payout fee {settlement.payout_fee}"
                ),
            ),
        ]
        entries = await self._settle(db, order_id, RELEASE_KEY, postings)
        logger.info(
            "Escrow released: order=%s total=%d seller=%d platform=%d",
            order_id, total, settlement.seller_amount, settlement.platform_amount,
        )
        return entries

    async def refund(
        self,
        db: AsyncSession,
        order_id: str,
        amount: int,
        resolution_id: str,
        seller_id: str,
    ) -> list[LedgerEntry]:
        """Return ``amount`` of the hold to the buyer; a remainder settles to the seller."""
        hold = await self._require_hold(db, order_id)
        total = -hold.amount
        if amount <= 0 or amount > total:
            raise AmountMismatchError(order_id, amount, total)

        key = refund_key(resolution_id)
        postings = [
            self._anchor(order_id, total, key),
            LedgerPosting(
                order_id=order_id,
                entry_type=LedgerEntryType.REFUND.value,
                party=LedgerParty.BUYER.value,
                account_id=hold.account_id,
                amount=amount,
                idempotency_key=key,
                description=f"Refund to buyer ({resolution_id})",
            ),
        ]
        remainder = total - amount
        if remainder > 0:
            settlement = settlement_for(remainder)
            postings.append(
                LedgerPosting(
                    order_id=order_id,
                    entry_type=LedgerEntryType.ESCROW_RELEASE.value,
                    party=LedgerParty.SELLER.value,
                    account_id=seller_id,
                    amount=settlement.seller_amount,
                    idempotency_key=key,
                    description="Residual escrow released to seller",
                )
            )
            postings.append(
                LedgerPosting(
                    order_id=order_id,
                    entry_type=LedgerEntryType.PAYOUT.value,
                    party=LedgerParty.PLATFORM.value,
                    account_id=PLATFORM_ACCOUNT_ID,
                    amount=settlement.platform_amount,
                    idempotency_key=key,
                    description=(
                        f"Platform fee {settlement.platform_fee} + payout fee {settlement.payout_fee}"
                    ),
                )
            )
        entries = await self._settle(db, order_id, key, postings)
        logger.info(
            "Escrow refunded: order=%s refund=%d remainder=%d key=%s",
            order_id, amount, remainder, key,
        )
        return entries

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def entries_for_order(self, db: AsyncSession, order_id: str) -> list[LedgerEntry]:
        return await self._repo.list_by_order(db, order_id)

    async def order_balance(self, db: AsyncSession, order_id: str) -> int:
        """Sum of all entries for the order; zero after every complete operation."""
        entries = await self._repo.list_by_order(db, order_id)
        return sum(e.amount for e in entries)

    async def held_amount(self, db: AsyncSession, order_id: str) -> int:
        """Cents still sitting in escrow for the order (hold credit not yet consumed)."""
        entries = await self._repo.list_by_order(db, order_id)
        return sum(
            e.amount
            for e in entries
            if e.party == LedgerParty.PLATFORM.value
            and e.entry_type in (LedgerEntryType.CREDIT.value, LedgerEntryType.DEBIT.value)
        )

    async def account_balance(self, db: AsyncSession, account_id: str) -> int:
        return await self._repo.sum_for_account(db, account_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _require_hold(self, db: AsyncSession, order_id: str) -> LedgerEntry:
        hold = await self._repo.get_entry(
            db, order_id, LedgerEntryType.ESCROW_HOLD.value, LedgerParty.BUYER.value
        )
        if hold is None:
            raise NoActiveHoldError(order_id, "no escrow hold posted")
        return hold

    @staticmethod
    def _anchor(order_id: str, total: int, key: str) -> LedgerPosting:
        return LedgerPosting(
            order_id=order_id,
            entry_type=LedgerEntryType.DEBIT.value,
            party=LedgerParty.PLATFORM.value,
            account_id=PLATFORM_ACCOUNT_ID,
            amount=-total,
            idempotency_key=key,
            description="Escrow hold consumed",
        )

    async def _settle(
        self, db: AsyncSession, order_id: str, key: str, postings: list[LedgerPosting]
    ) -> list[LedgerEntry]:
        anchor, *rest = postings
        consumed = await self._repo.insert_entry(db, anchor)
        if consumed is None:
            existing = await self._repo.get_entry(
                db, order_id, LedgerEntryType.DEBIT.value, LedgerParty.PLATFORM.value
            )
            if existing is not None and existing.idempotency_key == key:
                logger.info("Settlement replay for order %s key=%s", order_id, key)
                return await self._entries_with_key(db, order_id, key)
            settled_by = existing.idempotency_key if existing else "another operation"
            logger.warning("Settlement %s rejected for order %s: hold consumed by %s", key, order_id, settled_by)
            raise NoActiveHoldError(order_id, f"hold already settled by {settled_by}")

        entries = [consumed]
        for posting in rest:
            if posting.amount == 0:
                continue
            entries.append(await self._insert_required(db, posting))
        return entries

    async def _insert_required(self, db: AsyncSession, posting: LedgerPosting) -> LedgerEntry:
        entry = await self._repo.insert_entry(db, posting)
        if entry is None:
            raise InternalError(
                f"Ledger entry {posting.entry_type}/{posting.party} already exists "
                f"for order {posting.order_id}"
            )
        return entry

    async def _entries_with_key(self, db: AsyncSession, order_id: str, key: str) -> list[LedgerEntry]:
        entries = await self._repo.list_by_order(db, order_id)
        return [e for e in entries if e.idempotency_key == key]
