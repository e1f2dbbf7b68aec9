"""Line item and invoice level money calculations."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable

from dms.core.errors import PriceBelowMinimum, ValidationError

TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


class PaymentStatus(str, Enum):
    FULLY_PAID = "fully_paid"
    PARTIALLY_PAID = "partially_paid"
    UNPAID = "unpaid"


@dataclass(slots=True)
class LineAmounts:
    total_qty: int
    gross_amount: Decimal
    disc_pct: Decimal
    flat_disc: Decimal
    amount: Decimal
    cost_per_piece: Decimal


@dataclass(slots=True)
class InvoiceTotals:
    sub_total: Decimal
    total_discount: Decimal
    grand_total: Decimal


def _quantise(value: Decimal, scale: Decimal = TWO_PLACES) -> Decimal:
    """Round decimal values to the desired scale (defaults to 2 decimal places)."""

    return value.quantize(scale, rounding=ROUND_HALF_UP)


def calculate_line(
    qty: int,
    bonus: int,
    price: Decimal,
    disc_pct: Decimal = ZERO,
    flat_disc: Decimal = ZERO,
) -> LineAmounts:
    """Compute the amounts of one line item.

    Bonus units are free. A percentage discount wins over a flat one when both
    are given; the other figure is derived from whichever applies.
    """

    disc_pct = disc_pct or ZERO
    flat_disc = flat_disc or ZERO
    total_qty = qty + bonus
    gross = Decimal(qty) * price

    if disc_pct > ZERO:
        if disc_pct > HUNDRED:
            raise ValidationError("Discount percent must be between 0 and 100.")
        flat_disc = _quantise(gross * disc_pct / HUNDRED)
    elif flat_disc > ZERO:
        if flat_disc > gross:
            raise ValidationError("Flat discount cannot exceed the line amount.")
        disc_pct = _quantise(flat_disc / gross * HUNDRED) if gross > ZERO else ZERO
    else:
        disc_pct = ZERO
        flat_disc = ZERO

    amount = _quantise(gross - flat_disc)
    cost_per_piece = _quantise(amount / Decimal(total_qty)) if total_qty > 0 else ZERO
    return LineAmounts(
        total_qty=total_qty,
        gross_amount=_quantise(gross),
        disc_pct=_quantise(disc_pct),
        flat_disc=_quantise(flat_disc),
        amount=amount,
        cost_per_piece=cost_per_piece,
    )


def check_minimum_price(
    product_code: str, price: Decimal, min_price: Decimal, less_to_minimum: bool
) -> None:
    if not less_to_minimum and price < min_price:
        raise PriceBelowMinimum(
            f"Price {price} for product {product_code} is below the minimum price {min_price}."
        )


def calculate_invoice_totals(
    line_amounts: Iterable[Decimal], header_discount: Decimal = ZERO
) -> InvoiceTotals:
    sub_total = _quantise(sum(line_amounts, ZERO))
    discount = _quantise(header_discount or ZERO)
    if discount < ZERO:
        raise ValidationError("Invoice discount cannot be negative.")
    if discount > sub_total:
        raise ValidationError("Invoice discount cannot exceed the sub total.")
    return InvoiceTotals(
        sub_total=sub_total,
        total_discount=discount,
        grand_total=sub_total - discount,
    )


def derive_payment_status(cash_received: Decimal, grand_total: Decimal) -> PaymentStatus:
    if cash_received >= grand_total:
        return PaymentStatus.FULLY_PAID
    if cash_received > ZERO:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.UNPAID


def resolve_credit_amount(
    grand_total: Decimal, cash_received: Decimal, credit_amount: Decimal | None
) -> Decimal:
    """``None`` means the caller left credit unspecified; an explicit 0 is kept."""

    if credit_amount is None:
        return _quantise(max(ZERO, grand_total - cash_received))
    return _quantise(credit_amount)
