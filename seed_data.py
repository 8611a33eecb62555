"""
Seed data generator for the refund reconciliation service.

Populates the in-memory store with orders and transaction infos, and the
in-memory gateway with the matching invoices.
Imported by app startup outside production, and by the test suite.
"""
from decimal import Decimal
from app.config import GATEWAY_SPACE_ID
from app.gateway.memory import gateway
from app.models.gateway import LineItem, LineItemType, TransactionInvoice, TransactionInvoiceState
from app.models.order import Order, OrderProduct
from app.models.transaction import TransactionInfo, TransactionState
from app.repository.store import store

SHIPPING = Decimal("5.00")


def load_seed_data() -> None:
    """Populate the store and the gateway with test orders."""
    for order, info, gateway_prices in _build_orders():
        store.save_order(order)
        if info is None:
            continue
        store.save_transaction_info(info)
        if gateway_prices is not None:
            gateway.save_invoice(info.space_id, _build_invoice(order, info, gateway_prices))


def _product(order_id: int, position: int, sku: str, quantity: int, unit_price: str) -> OrderProduct:
    detail_id = order_id * 10 + position
    return OrderProduct(
        order_detail_id=detail_id,
        sku=sku,
        name=f"Product {sku}",
        quantity=quantity,
        unit_price_tax_incl=Decimal(unit_price),
        line_item_unique_id=f"product-{detail_id}",
    )


def _order(order_id: int, products: list[OrderProduct]) -> Order:
    total = sum((p.unit_price_tax_incl * p.quantity for p in products), Decimal("0")) + SHIPPING
    return Order(
        id=order_id,
        reference=f"ORD{order_id:06d}",
        currency="EUR",
        products=products,
        shipping_tax_incl=SHIPPING,
        total_paid_tax_incl=total,
    )


def _info(order_id: int, state: TransactionState) -> TransactionInfo:
    return TransactionInfo(
        order_id=order_id,
        space_id=GATEWAY_SPACE_ID,
        transaction_id=1000 + order_id,
        state=state,
    )


def _build_invoice(order: Order, info: TransactionInfo, gateway_prices: dict[str, Decimal]) -> TransactionInvoice:
    line_items = []
    for product in order.products:
        unit_price = gateway_prices.get(product.sku, product.unit_price_tax_incl)
        line_items.append(
            LineItem(
                unique_id=product.line_item_unique_id,
                sku=product.sku,
                name=product.name,
                type=LineItemType.PRODUCT,
                quantity=Decimal(product.quantity),
                unit_price_including_tax=unit_price,
                amount_including_tax=unit_price * product.quantity,
            )
        )
    line_items.append(
        LineItem(
            unique_id=order.shipping_line_item_unique_id,
            sku="shipping",
            name="Shipping",
            type=LineItemType.SHIPPING,
            quantity=Decimal("1"),
            unit_price_including_tax=order.shipping_tax_incl,
            amount_including_tax=order.shipping_tax_incl,
        )
    )
    return TransactionInvoice(
        id=5000 + order.id,
        transaction_id=info.transaction_id,
        state=TransactionInvoiceState.PAID,
        line_items=line_items,
    )


def _build_orders() -> list[tuple[Order, TransactionInfo | None, dict[str, Decimal] | None]]:
    orders = []

    # ── Regular orders (1..20): 2 x 30.00 + 1 x 20.00 + 5.00 shipping ──────

    states = [TransactionState.COMPLETED, TransactionState.FULFILL]
    for i in range(1, 21):
        order = _order(i, [
            _product(i, 1, f"SKU-{i:03d}-A", 2, "30.00"),
            _product(i, 2, f"SKU-{i:03d}-B", 1, "20.00"),
        ])
        orders.append((order, _info(i, states[(i - 1) % 2]), {}))

    # ── Gateway price below shop price (21): 2 x 30.00 shop, 28.00 gateway ──

    order = _order(21, [_product(21, 1, "SKU-021-A", 2, "30.00")])
    orders.append((order, _info(21, TransactionState.COMPLETED), {"SKU-021-A": Decimal("28.00")}))

    # ── Two-unit line at 25.00 (22) ─────────────────────────────────────────

    order = _order(22, [_product(22, 1, "SKU-022-A", 2, "25.00")])
    orders.append((order, _info(22, TransactionState.COMPLETED), {}))

    # ── Declined transaction (23), still refundable ────────────────────────

    order = _order(23, [_product(23, 1, "SKU-023-A", 1, "40.00")])
    orders.append((order, _info(23, TransactionState.DECLINE), {}))

    # ── Authorized only (24), not refundable ───────────────────────────────

    order = _order(24, [_product(24, 1, "SKU-024-A", 1, "40.00")])
    orders.append((order, _info(24, TransactionState.AUTHORIZED), {}))

    # ── Order without transaction (25) ──────────────────────────────────────

    order = _order(25, [_product(25, 1, "SKU-025-A", 1, "40.00")])
    orders.append((order, None, None))

    # ── Completed transaction with no invoice on the gateway (26) ──────────

    order = _order(26, [_product(26, 1, "SKU-026-A", 1, "40.00")])
    orders.append((order, _info(26, TransactionState.COMPLETED), None))

    return orders
