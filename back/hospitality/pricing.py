"""
Order pricing in integer cents.

Subtotal is the sum of line totals. Discounts come from DiscountRule codes
and never exceed the subtotal. Tax is a percentage of the discounted amount,
rounded half-up to the cent.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from sqlmodel import Session, select

from .errors import ValidationError
from .order_models import DiscountRule, DiscountType
from .settings import settings


@dataclass(frozen=True)
class Totals:
    subtotal: int
    discount_total: int
    tax: int
    total: int


@dataclass(frozen=True)
class AppliedDiscount:
    rule: DiscountRule
    amount: int


def round_cents(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_total(quantity: int, unit_price: int) -> int:
    return quantity * unit_price


def discount_amount(rule: DiscountRule, subtotal: int) -> int:
    if rule.discount_type == DiscountType.percentage:
        return round_cents(Decimal(subtotal) * Decimal(rule.value) / Decimal(100))
    return rule.value


def resolve_discounts(
    session: Session, codes: list[str], subtotal: int, already_applied: int = 0
) -> list[AppliedDiscount]:
    """Look up discount codes and compute what each one takes off, capped at the subtotal."""
    applied: list[AppliedDiscount] = []
    remaining = subtotal - already_applied
    seen: set[str] = set()

    for raw_code in codes:
        code = (raw_code or "").strip().upper()
        if not code:
            raise ValidationError("Discount code is required")
        if code in seen:
            raise ValidationError(f"Discount code {code} given more than once")
        seen.add(code)

        rule = session.exec(select(DiscountRule).where(DiscountRule.code == code)).first()
        if not rule or not rule.is_active:
            raise ValidationError(f"Invalid or inactive discount code: {code}")
        if subtotal < rule.min_order_amount:
            raise ValidationError(
                f"Discount {code} requires a minimum order of {rule.min_order_amount}"
            )

        amount = min(discount_amount(rule, subtotal), remaining)
        remaining -= amount
        applied.append(AppliedDiscount(rule=rule, amount=amount))

    return applied


def compute_totals(subtotal: int, discount_total: int, tax_rate_percent: Decimal | None = None) -> Totals:
    if tax_rate_percent is None:
        tax_rate_percent = settings.tax_rate_percent
    discount_total = min(discount_total, subtotal)
    taxable = subtotal - discount_total
    tax = round_cents(Decimal(taxable) * Decimal(tax_rate_percent) / Decimal(100))
    total = max(0, taxable + tax)
    return Totals(subtotal=subtotal, discount_total=discount_total, tax=tax, total=total)
