"""Fee calculation for donations

Pure and deterministic. All arithmetic is Decimal on integer minor units and
rounds half away from zero (ROUND_HALF_UP on non-negative amounts).
"""
from decimal import Decimal, ROUND_HALF_UP

from app.config import PLATFORM_FEE_PERCENTAGE, STRIPE_FEE_PERCENTAGE, STRIPE_FEE_FIXED_CENTS
from app.features.donations.domain import FeeBreakdown
from app.features.donations.errors import ValidationError

_HUNDRED = Decimal(100)


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def calculate_fees(
    amount_cents: int,
    platform_fee_percentage: Decimal = PLATFORM_FEE_PERCENTAGE,
    provider_fee_percentage: Decimal = STRIPE_FEE_PERCENTAGE,
    provider_fee_fixed_cents: int = STRIPE_FEE_FIXED_CENTS,
) -> FeeBreakdown:
    """
    Split a gross amount into platform fee, provider fee and net payout.

    net_cents is clipped at zero when fees exceed the gross amount.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents < 0:
        raise ValidationError("Amount must be a non-negative integer number of cents", field="amountCents")

    amount = Decimal(amount_cents)
    platform_fee_cents = _round_cents(amount * Decimal(platform_fee_percentage) / _HUNDRED)
    provider_fee_cents = _round_cents(
        amount * Decimal(provider_fee_percentage) / _HUNDRED + Decimal(provider_fee_fixed_cents)
    )
    total_fee_cents = platform_fee_cents + provider_fee_cents

    return FeeBreakdown(
        amount_cents=amount_cents,
        platform_fee_cents=platform_fee_cents,
        provider_fee_cents=provider_fee_cents,
        total_fee_cents=total_fee_cents,
        net_cents=max(0, amount_cents - total_fee_cents),
    )
