from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    """Coerce to a 2dp Decimal. Floats go through str() to avoid binary noise."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: Decimal = Decimal("0.10")
    flat_shipping: Decimal = Decimal("50.00")

    def line_total(self, quantity: int, unit_price) -> Decimal:
        return money(Decimal(quantity) * money(unit_price))

    def compute_totals(self, lines: Iterable[Tuple[int, Decimal]]) -> Totals:
        """
        lines: (quantity, unit_price) pairs.

        Totals are always derived here from the lines; amounts a client
        may have computed are never consulted.
        """
        lines = list(lines)
        subtotal = sum((self.line_total(q, p) for q, p in lines), ZERO)
        tax = money(subtotal * self.tax_rate)
        shipping = money(self.flat_shipping) if lines else ZERO
        return Totals(
            subtotal=money(subtotal),
            tax=tax,
            shipping=shipping,
            total=money(subtotal + tax + shipping),
        )
