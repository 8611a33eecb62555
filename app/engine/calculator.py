"""
Line item reduction engine.

Pure functions with no side effects or I/O. All monetary math uses Decimal.

The shop and the gateway each keep their own view of a transaction's line
items. After a partial refund the gateway's remaining quantities and unit
prices drift away from the shop's, so the reductions sent with a refund are
computed against the gateway view (base line items) using the amounts the
admin entered in the shop.
"""
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from app.models.gateway import LineItem, LineItemReduction
    from app.models.order import OrderProduct

CENTS = Decimal("0.01")
REDUCTION_PLACES = Decimal("0.00000001")
SHIPPING_MARKER = "shipping"


class CalculationError(Exception):
    """Raised when reductions cannot be computed from the given line items."""
    pass


def floor_cents(value: Decimal) -> Decimal:
    """Truncate down to whole cents. Never rounds up, so a refund is never inflated."""
    return value.quantize(CENTS, rounding=ROUND_FLOOR)


def round_price(value: Decimal, precision: int) -> Decimal:
    """Round half up to the shop's configured price precision."""
    return value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


def get_total_amount_including_tax(line_items: list["LineItem"]) -> Decimal:
    return sum((item.amount_including_tax for item in line_items), Decimal("0"))


def get_reduction_amount(
    line_items: list["LineItem"],
    reductions: list["LineItemReduction"],
) -> Decimal:
    """
    Return the money a set of reductions takes off the given line items.

    A quantity reduction refunds whole units at the line's unit price; a unit
    price reduction applies to every unit left after the quantity reduction.
    Reductions that match no line item contribute nothing.

    Example:
        line: unit_price=25.00, quantity=2
        reduction: quantity_reduction=1, unit_price_reduction=15.00
        → 25.00 * 1 + 15.00 * (2 - 1) = 40.00
    """
    by_unique_id = {item.unique_id: item for item in line_items}
    amount = Decimal("0")
    for reduction in reductions:
        item = by_unique_id.get(reduction.line_item_unique_id)
        if item is None:
            continue
        amount += item.unit_price_including_tax * reduction.quantity_reduction
        amount += reduction.unit_price_reduction * (item.quantity - reduction.quantity_reduction)
    return amount


def _requested_value(request_payload: dict[str, Any], key: str) -> Optional[Decimal]:
    """Read a numeric field of the admin's cancel_product form. Empty and zero count as absent."""
    raw = (request_payload.get("cancel_product") or {}).get(key)
    if raw in (None, ""):
        return None
    value = Decimal(str(raw))
    if value == 0:
        return None
    return value


def _reduce_line_item(
    item: "LineItem",
    shop_unit_price: Decimal,
    refund_value: Decimal,
    quantity: int,
) -> "LineItemReduction":
    """
    Build the reduction for one product line.

    The shop lets the admin refund whole units or lower the refunded value
    below the units' price, never raise it. The gateway only takes a quantity
    plus a unit price reduction spread over the units left in the line, so:

    - whole units (value >= shop price * quantity): reduce the quantity and
      send the shop/gateway unit price discrepancy as the price reduction;
    - reduced value: refund as many whole gateway units as the value covers
      and spread the remainder over the units left.

    Example (reduced value):
        gateway unit price=25.00, gateway quantity=2, value=40.00, quantity=2
        → quantity_reduction = floor(40 / 25) = 1
        → remainder = 4000 % 2500 / 100 = 15.00, spread over 2 - 1 units
        → unit_price_reduction = 15.00
    """
    from app.models.gateway import LineItemReduction

    gateway_unit_price = item.unit_price_including_tax
    gateway_quantity = item.quantity

    max_to_refund = floor_cents(shop_unit_price * quantity)
    if max_to_refund <= refund_value:
        quantity_reduction = Decimal(quantity)
        discrepancy = floor_cents(abs(shop_unit_price - gateway_unit_price))
        remaining = gateway_quantity - quantity_reduction
        unit_price_reduction = discrepancy / remaining if remaining > 0 else discrepancy
    else:
        gateway_unit_cents = int(gateway_unit_price * 100)
        if gateway_unit_cents == 0:
            raise CalculationError(f"Line item {item.unique_id} has no unit price to refund against")
        quantity_reduction = (abs(refund_value / gateway_unit_price)).to_integral_value(rounding=ROUND_FLOOR)
        # Integer cent modulo, matching the gateway's own truncation
        rest = Decimal(abs(int(refund_value * 100) % gateway_unit_cents)) / 100
        remaining = gateway_quantity - quantity_reduction
        unit_price_reduction = rest / remaining if remaining > 0 else rest

    return LineItemReduction(
        line_item_unique_id=item.unique_id,
        quantity_reduction=quantity_reduction,
        unit_price_reduction=unit_price_reduction,
    )


def distribute_proportionally(
    refund_total: Decimal,
    line_items: list["LineItem"],
) -> list["LineItemReduction"]:
    """
    Spread the refund total over every line item by its share of the transaction.

    Example:
        lines: A=60.00 (qty 2), B=40.00 (qty 1), refund_total=50.00
        → rate = 50 / 100 = 0.5
        → A: 60.00 * 0.5 / 2 = 15.00 per unit, B: 40.00 * 0.5 / 1 = 20.00
    """
    from app.models.gateway import LineItemReduction

    base_amount = get_total_amount_including_tax(line_items)
    if base_amount == Decimal("0"):
        raise CalculationError("Cannot distribute refund: transaction amount is zero")

    rate = refund_total / base_amount
    reductions = []
    for item in line_items:
        if item.quantity == 0:
            continue
        reductions.append(
            LineItemReduction(
                line_item_unique_id=item.unique_id,
                quantity_reduction=Decimal("0"),
                unit_price_reduction=(item.amount_including_tax * rate / item.quantity).quantize(
                    REDUCTION_PLACES, rounding=ROUND_HALF_UP
                ),
            )
        )
    return reductions


def fix_reductions(
    refund_total: Decimal,
    reductions: list["LineItemReduction"],
    line_items: list["LineItem"],
    shop_products: list["OrderProduct"],
    request_payload: dict[str, Any],
    compute_precision: int = 2,
) -> list["LineItemReduction"]:
    """
    Return the reductions to send to the gateway for a refund.

    First tries a per line item breakdown from the amounts the admin entered
    (``amount_<order_detail_id>`` / ``quantity_<order_detail_id>`` in the
    request payload). Shipping lines reuse the shop-side shipping reduction.
    If that breakdown is empty or refunds more than the total, falls back to
    the shop-side reductions when they add up to the total, else to a
    proportional distribution over all line items.

    Args:
        refund_total: Total amount the admin asked to refund.
        reductions: Reductions built from the shop's own view of the order.
        line_items: The gateway's current (base) line items of the transaction.
        shop_products: The order's products as the shop sees them.
        request_payload: The raw refund request.
        compute_precision: Decimal places used when comparing totals.

    Returns:
        Reductions that never refund more than ``refund_total``.

    Raises:
        CalculationError: If a gateway unit price or the transaction amount is zero.
    """
    products_by_sku = {product.sku: product for product in shop_products}

    fixed_reductions = []
    refunded_value = Decimal("0")
    for item in line_items:
        if item.type.value == "SHIPPING":
            shipping_reduction = next(
                (r for r in reductions if SHIPPING_MARKER in r.line_item_unique_id.lower()),
                None,
            )
            if shipping_reduction is not None:
                fixed_reductions.append(shipping_reduction)
            continue

        product = products_by_sku.get(item.sku) if item.sku else None
        if product is None:
            continue

        refund_value = _requested_value(request_payload, f"amount_{product.order_detail_id}")
        if refund_value is None or not (Decimal("0") < refund_value <= refund_total):
            continue

        # The shop always refunds at least one unit
        requested_quantity = _requested_value(request_payload, f"quantity_{product.order_detail_id}")
        quantity = int(requested_quantity) if requested_quantity is not None else 1

        fixed_reductions.append(
            _reduce_line_item(item, product.unit_price_tax_incl, refund_value, quantity)
        )
        refunded_value += refund_value

    if refunded_value <= refund_total and fixed_reductions:
        return fixed_reductions

    reduction_amount = get_reduction_amount(line_items, reductions)
    if round_price(refund_total, compute_precision) != round_price(reduction_amount, compute_precision):
        return distribute_proportionally(refund_total, line_items)
    return reductions
