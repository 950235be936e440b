"""Installment splitting and payment capping for BNPL mandates"""

from decimal import Decimal, ROUND_DOWN

from bnpl_gateway.domain.models import InstallmentSchedule

KOBO = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce a number to a 2dp Decimal without float artefacts"""
    return Decimal(str(value)).quantize(KOBO)


def split_installments(total_amount: Decimal, num_installments: int) -> InstallmentSchedule:
    """
    Split an order total into equal installments.

    Rounding policy:
    - Every installment is floor(total / n) to the kobo
    - Last installment absorbs the remainder (< n kobo)
    - So amount_per_installment * n never exceeds total, and the
      schedule always sums to exactly total

    Example:
        40000.03 / 4 -> [10000.00, 10000.00, 10000.00, 10000.03]
    """
    if num_installments < 1:
        raise ValueError("num_installments must be at least 1")

    total = to_money(total_amount)
    base_amount = (total / num_installments).quantize(KOBO, rounding=ROUND_DOWN)
    final_amount = total - base_amount * (num_installments - 1)

    return InstallmentSchedule(
        total_amount=total,
        installments=num_installments,
        amount_per_installment=base_amount,
        final_installment=final_amount,
    )


def applicable_amount(total_amount: Decimal, amount_paid: Decimal, amount: Decimal) -> Decimal:
    """Portion of an incoming payment that can be credited without exceeding the total"""
    outstanding = max(to_money(total_amount) - to_money(amount_paid), Decimal("0.00"))
    return min(to_money(amount), outstanding)
