"""Domain models for mp_ledger — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

PLATFORM_ACCOUNT_ID = "PLATFORM"


@dataclass
class LedgerEntry:
    id: int                      # BIGSERIAL
    order_id: str
    entry_type: str              # LedgerEntryType value
    party: str                   # LedgerParty value
    account_id: str              # user id, or PLATFORM_ACCOUNT_ID
    amount: int                  # cents, positive=into party, negative=out of party
    status: str                  # LedgerEntryStatus value
    idempotency_key: str         # operation that posted it: hold / release / refund:<id>
    description: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class LedgerPosting:
    """An entry not yet written; the repository assigns id and created_at."""

    order_id: str
    entry_type: str
    party: str
    account_id: str
    amount: int
    idempotency_key: str
    description: str
    status: str = "completed"


@dataclass(frozen=True)
class Settlement:
    """How a settled amount splits between seller and platform."""

    gross: int
    platform_fee: int
    payout_fee: int

    @property
    def seller_amount(self) -> int:
        return self.gross - self.platform_fee - self.payout_fee

    @property
    def platform_amount(self) -> int:
        return self.platform_fee + self.payout_fee
