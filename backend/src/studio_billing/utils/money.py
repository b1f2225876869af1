"""Conversions between decimal dollar amounts and integer cents."""
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_cents(amount: Decimal | int | float) -> int:
    """
    Convert a dollar amount to integer cents, rounding half up.

    Args:
        amount: Amount in dollars

    Returns:
        Amount in cents

    Examples:
        >>> to_cents(Decimal("149"))
        14900
        >>> to_cents(Decimal("333.335"))
        33334
    """
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> Decimal | None:
    """
    Convert integer cents to a two-place dollar amount.

    Args:
        cents: Amount in cents

    Returns:
        Amount in dollars, or None when cents is None
    """
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def split_installments(total: Decimal, number_of_payments: int) -> Decimal:
    """
    Compute the monthly installment of a payment plan.

    Args:
        total: Plan total in dollars
        number_of_payments: Number of monthly installments (>= 1)

    Returns:
        Installment amount rounded to cents

    Examples:
        >>> split_installments(Decimal("900"), 3)
        Decimal('300.00')
        >>> split_installments(Decimal("1000"), 3)
        Decimal('333.33')
    """
    return (Decimal(str(total)) / number_of_payments).quantize(CENT, rounding=ROUND_HALF_UP)
