"""Fee policy — basis points from settings, round-half-up on cents.

Reference: total 4500, platform 500 bps, payout 150 bps on GROSS
  platform_fee = 225, payout_fee = 68, seller = 4207, platform credit = 293
"""

from config.settings import settings
from src.mp_common.cents import apply_bps
from src.mp_ledger.domain.models import Settlement

PAYOUT_BASE_GROSS = "GROSS"
PAYOUT_BASE_NET = "NET"


def platform_fee_for(total: int, bps: int | None = None) -> int:
    return apply_bps(total, settings.PLATFORM_FEE_BPS if bps is None else bps)


def payout_fee_for(total: int, platform_fee: int, bps: int | None = None, base: str | None = None) -> int:
    rate = settings.PAYOUT_FEE_BPS if bps is None else bps
    fee_base = (base or settings.PAYOUT_FEE_BASE).upper()
    if fee_base == PAYOUT_BASE_NET:
        return apply_bps(total - platform_fee, rate)
    if fee_base == PAYOUT_BASE_GROSS:
        return apply_bps(total, rate)
    raise ValueError(f"Unknown PAYOUT_FEE_BASE: {fee_base}")


def settlement_for(gross: int) -> Settlement:
    """Split ``gross`` cents into seller net, platform fee and payout fee."""
    platform_fee = platform_fee_for(gross)
    payout_fee = payout_fee_for(gross, platform_fee)
    # Fees never exceed the amount being settled
    payout_fee = min(payout_fee, gross - platform_fee)
    return Settlement(gross=gross, platform_fee=platform_fee, payout_fee=payout_fee)
