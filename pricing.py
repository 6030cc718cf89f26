"""Money arithmetic. Amounts are Decimals rounded half-up to cents, stored as floats."""
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def unit_price(product: dict) -> Decimal:
    """Current unit price of a product after its sale discount."""
    price = Decimal(str(product.get("price", 0)))
    sale = Decimal(str(product.get("sale_percentage") or 0))
    if sale > 0:
        price = price * (1 - sale / 100)
    return to_money(price)


def line_subtotal(price_at_purchase, quantity: int) -> Decimal:
    return to_money(Decimal(str(price_at_purchase)) * quantity)


def order_total(items) -> Decimal:
    """Sum of ``price_at_purchase * quantity`` over order item documents."""
    return sum((line_subtotal(it["price_at_purchase"], it["quantity"]) for it in items), Decimal("0.00"))
