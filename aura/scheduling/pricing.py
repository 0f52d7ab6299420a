from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
DEFAULT_TAX_RATE = Decimal("0.05")


def to_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Quote:
    subtotal: Decimal
    tax: Decimal
    discount_percent: int
    discount: Decimal
    total: Decimal
    duration_min: int

    def to_dict(self):
        return {
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "discount_percent": self.discount_percent,
            "discount": str(self.discount),
            "total": str(self.total),
            "duration_min": self.duration_min,
        }


def quote(services, products=(), discount_percent=0, tax_rate=DEFAULT_TAX_RATE) -> Quote:
    """Price a selection.

    Services and products both count towards the subtotal; only services add
    duration. Tax is applied first and the promo discount comes off the
    post-tax amount.
    """
    subtotal = sum((to_money(s.price) for s in services), Decimal("0.00"))
    subtotal += sum((to_money(p.price) for p in products), Decimal("0.00"))
    subtotal = to_money(subtotal)

    tax = to_money(subtotal * Decimal(str(tax_rate)))
    after_tax = subtotal + tax

    percent = int(discount_percent or 0)
    percent = max(0, min(percent, 100))
    discount = to_money(after_tax * Decimal(percent) / Decimal(100))

    return Quote(
        subtotal=subtotal,
        tax=tax,
        discount_percent=percent,
        discount=discount,
        total=to_money(after_tax - discount),
        duration_min=sum(int(s.duration_min) for s in services),
    )
