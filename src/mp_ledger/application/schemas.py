"""Pydantic schemas for mp_ledger API."""

from pydantic import BaseModel

from src.mp_common.cents import cents_to_display
from src.mp_common.datetime_utils import iso_or_none
from src.mp_ledger.domain.models import LedgerEntry


class LedgerEntryItem(BaseModel):
    id: int
    order_id: str
    entry_type: str
    party: str
    account_id: str
    amount_cents: int
    amount_display: str
    status: str
    idempotency_key: str
    description: str | None
    created_at: str | None

    @classmethod
    def from_domain(cls, entry: LedgerEntry) -> "LedgerEntryItem":
        return cls(
            id=entry.id,
            order_id=entry.order_id,
            entry_type=entry.entry_type,
            party=entry.party,
            account_id=entry.account_id,
            amount_cents=entry.amount,
            amount_display=cents_to_display(entry.amount),
            status=entry.status,
            idempotency_key=entry.idempotency_key,
            description=entry.description,
            created_at=iso_or_none(entry.created_at),
        )


class OrderLedgerResponse(BaseModel):
    order_id: str
    entries: list[LedgerEntryItem]
    balance_cents: int
    held_cents: int


class BalanceResponse(BaseModel):
    account_id: str
    balance_cents: int
    balance_display: str

    @classmethod
    def from_cents(cls, account_id: str, balance: int) -> "BalanceResponse":
        return cls(
            account_id=account_id,
            balance_cents=balance,
            balance_display=cents_to_display(balance),
        )
