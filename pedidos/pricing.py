from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple

from .models import TYPE_MIXED

UNIT_PRICE = Decimal("100")
DELIVERY_CHARGE = Decimal("50")
GST_RATE = Decimal("0.03")

CENTS = Decimal("0.01")


class Pricing(NamedTuple):
    subtotal: float
    delivery_charge: float
    gst: float
    total_amount: float


def money(value: Decimal) -> float:
    return float(value.quantize(CENTS, rounding=ROUND_HALF_UP))


# quantity = unidades sumadas de todos los items del pedido
def calculate_pricing(quantity: int) -> Pricing:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValueError("quantity must be an integer")
    if quantity < 0:
        raise ValueError("quantity must not be negative")

    subtotal = UNIT_PRICE * quantity
    gst = subtotal * GST_RATE
    total = subtotal + DELIVERY_CHARGE + gst
    return Pricing(
        subtotal=money(subtotal),
        delivery_charge=money(DELIVERY_CHARGE),
        gst=money(gst),
        total_amount=money(total),
    )


def order_level_type(item_types: Iterable[str]) -> str:
    types = set(item_types)
    if len(types) == 1:
        return types.pop()
    return TYPE_MIXED
