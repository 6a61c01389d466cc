"""Tests for the fee and commission split."""

from decimal import Decimal

import pytest

from payform_settlement.settings import DEFAULT_FEE_MODELS
from payform_settlement.settlement.errors import InvalidAmount
from payform_settlement.settlement.splitter import FeeModel, Split, compute, to_minor_units


class TestCompute:
    """Tests for compute()."""

    def test_cashfree_split(self):
        """2.5% + 3.00 gateway fee and 3% platform commission on 1000."""
        split = compute(Decimal("1000"), DEFAULT_FEE_MODELS["cashfree"])

        assert split.gateway_fee == Decimal("28.00")
        assert split.platform_commission == Decimal("30.00")
        assert split.net_to_payee == Decimal("942.00")

    def test_razorpay_split_includes_gst_on_fee(self):
        """GST is charged on the gateway fee, not on the gross."""
        split = compute(Decimal("1000"), DEFAULT_FEE_MODELS["razorpay"])

        assert split.gateway_fee == Decimal("25.96")
        assert split.platform_commission == Decimal("30.00")
        assert split.net_to_payee == Decimal("944.04")

    def test_stripe_split(self):
        split = compute(Decimal("1000"), DEFAULT_FEE_MODELS["stripe"])

        assert split.gateway_fee == Decimal("32.00")
        assert split.net_to_payee == Decimal("938.00")

    def test_rounds_half_up_to_minor_units(self):
        """Fee and commission are rounded independently."""
        split = compute(Decimal("99.99"), DEFAULT_FEE_MODELS["cashfree"])

        assert split.gateway_fee == Decimal("5.50")
        assert split.platform_commission == Decimal("3.00")
        assert split.net_to_payee == Decimal("91.49")

    def test_parts_add_up_to_gross(self):
        """The three parts sum to the gross within one minor unit."""
        fee_model = FeeModel(rate=Decimal("1.75"), fixed=Decimal("0.30"), gst_rate=Decimal("18"))
        for gross in ("0.99", "1", "10.01", "333.33", "1234.56", "99999.99"):
            split = compute(gross, fee_model)
            assert abs(split.total - Decimal(gross)) <= Decimal("0.01")

    def test_accepts_int_and_str(self):
        fee_model = DEFAULT_FEE_MODELS["cashfree"]
        assert compute(1000, fee_model) == compute("1000", fee_model) == compute(Decimal("1000"), fee_model)

    def test_is_deterministic(self):
        """Same inputs always yield the same split."""
        fee_model = DEFAULT_FEE_MODELS["razorpay"]
        assert compute(Decimal("450.50"), fee_model) == compute(Decimal("450.50"), fee_model)

    def test_custom_platform_rate(self):
        split = compute(Decimal("1000"), DEFAULT_FEE_MODELS["cashfree"], platform_rate=Decimal("5"))

        assert split.platform_commission == Decimal("50.00")
        assert split.net_to_payee == Decimal("922.00")

    @pytest.mark.parametrize("gross", ["0", "-1", "-0.01", "NaN"])
    def test_rejects_non_positive_amounts(self, gross):
        with pytest.raises(InvalidAmount):
            compute(Decimal(gross), DEFAULT_FEE_MODELS["cashfree"])

    def test_small_amount_can_leave_negative_net(self):
        """compute() reports the raw split; callers decide whether it is usable."""
        split = compute(Decimal("3"), DEFAULT_FEE_MODELS["cashfree"])
        assert split.net_to_payee < 0


class TestSplit:
    """Tests for the Split value."""

    def test_to_dict_uses_strings(self):
        split = Split(Decimal("28.00"), Decimal("30.00"), Decimal("942.00"))

        assert split.to_dict() == {
            "gateway_fee": "28.00",
            "platform_commission": "30.00",
            "net_to_payee": "942.00",
        }
        assert split.total == Decimal("1000.00")

    def test_to_minor_units(self):
        assert to_minor_units(Decimal("2.345")) == Decimal("2.35")
        assert to_minor_units(Decimal("2.344")) == Decimal("2.34")
