"""Tests for the fee policy: platform fee, payout fee base and settlement split."""

from unittest.mock import patch

import pytest

from src.mp_ledger.domain.fees import payout_fee_for, platform_fee_for, settlement_for


class TestPlatformFee:
    def test_default_rate(self) -> None:
        assert platform_fee_for(4500) == 225

    def test_explicit_rate(self) -> None:
        assert platform_fee_for(4500, bps=1000) == 450

    def test_rounds_half_up(self) -> None:
        # 1010 * 500 / 10000 = 50.5 → 51
        assert platform_fee_for(1010) == 51


class TestPayoutFee:
    def test_gross_base(self) -> None:
        assert payout_fee_for(4500, 225, base="GROSS") == 68

    def test_net_base(self) -> None:
        # (4500 - 225) * 150 / 10000 = 64.125 → 64
        assert payout_fee_for(4500, 225, base="NET") == 64

    def test_base_is_case_insensitive(self) -> None:
        assert payout_fee_for(4500, 225, base="net") == 64

    def test_unknown_base_raises(self) -> None:
        with pytest.raises(ValueError, match="PAYOUT_FEE_BASE"):
            payout_fee_for(4500, 225, base="MIDPOINT")


class TestSettlement:
    def test_reference_order(self) -> None:
        s = settlement_for(4500)
        assert s.platform_fee == 225
        assert s.payout_fee == 68
        assert s.seller_amount == 4207
        assert s.platform_amount == 293
        assert s.seller_amount + s.platform_amount == 4500

    def test_net_setting(self) -> None:
        with patch("src.mp_ledger.domain.fees.settings.PAYOUT_FEE_BASE", "NET"):
            s = settlement_for(4500)
        assert s.payout_fee == 64
        assert s.seller_amount == 4211

    def test_tiny_amount_never_goes_negative(self) -> None:
        s = settlement_for(1)
        assert s.seller_amount >= 0
        assert s.seller_amount + s.platform_amount == 1

    def test_fees_capped_at_gross(self) -> None:
        with patch("src.mp_ledger.domain.fees.settings.PAYOUT_FEE_BPS", 9900):
            s = settlement_for(100)
        assert s.seller_amount == 0
        assert s.platform_amount == 100
