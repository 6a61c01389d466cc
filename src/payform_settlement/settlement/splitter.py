"""Fee, commission and payee split of a gross payment."""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Union

from .errors import InvalidAmount

MINOR_UNIT = Decimal("0.01")
HUNDRED = Decimal("100")

# Platform commission in percent, identical across providers
PLATFORM_COMMISSION_RATE = Decimal("3")


@dataclass(frozen=True)
class FeeModel:
    """Gateway fee model: ``gross * rate% + fixed``, plus GST on the fee."""
    rate: Decimal
    fixed: Decimal = Decimal("0")
    gst_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class Split:
    """Three-way division of a gross amount."""
    gateway_fee: Decimal
    platform_commission: Decimal
    net_to_payee: Decimal

    @property
    def total(self) -> Decimal:
        return self.gateway_fee + self.platform_commission + self.net_to_payee

    def to_dict(self) -> Dict[str, str]:
        return {
            "gateway_fee": str(self.gateway_fee),
            "platform_commission": str(self.platform_commission),
            "net_to_payee": str(self.net_to_payee),
        }


def to_minor_units(value: Decimal) -> Decimal:
    """Round to two decimal places, half up."""
    return value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def compute(
    gross_amount: Union[Decimal, int, str],
    fee_model: FeeModel,
    platform_rate: Decimal = PLATFORM_COMMISSION_RATE,
) -> Split:
    """Split ``gross_amount`` into gateway fee, platform commission and net.

    The fee and the commission are rounded independently; the net is derived
    last from the rounded gross so the three parts add back up to the gross
    amount within one minor unit.

    Args:
        gross_amount: Positive gross amount in major units.
        fee_model: Provider fee model.
        platform_rate: Platform commission in percent.

    Returns:
        Split with all three values at minor-unit precision.

    Raises:
        InvalidAmount: If ``gross_amount`` is not positive.
    """
    gross = Decimal(str(gross_amount)) if not isinstance(gross_amount, Decimal) else gross_amount
    if not gross.is_finite() or gross <= 0:
        raise InvalidAmount(f"Gross amount must be positive, got {gross_amount}")

    fee = gross * fee_model.rate / HUNDRED + fee_model.fixed
    if fee_model.gst_rate:
        fee += fee * fee_model.gst_rate / HUNDRED

    gateway_fee = to_minor_units(fee)
    platform_commission = to_minor_units(gross * platform_rate / HUNDRED)
    net_to_payee = to_minor_units(gross) - gateway_fee - platform_commission

    return Split(
        gateway_fee=gateway_fee,
        platform_commission=platform_commission,
        net_to_payee=net_to_payee,
    )
