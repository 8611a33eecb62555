import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from app.models.gateway import LineItemReduction, RefundType
from app.models.order import CreditSlip, Order, OrderHistoryEntry, OrderStatus, Voucher
from app.strategy.base import (
    AppliedRefund,
    ApplyError,
    RefundStrategy,
    cancel_product_form,
    form_decimal,
    form_flag,
)

# Platform version from which the admin posts the cancel_product form
CANCEL_PRODUCT_FORM_VERSION = (1, 7, 7)


def parse_version(version: str) -> tuple[int, ...]:
    parts = []
    for part in version.split("."):
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


class DefaultStrategy(RefundStrategy):
    """Generic refund rules for the cancel_product form."""

    def __init__(self, platform_version: str = "1.7.8.0"):
        self.platform_version = platform_version

    def is_voucher_only_refund(self, payload: dict[str, Any]) -> bool:
        if parse_version(self.platform_version) >= CANCEL_PRODUCT_FORM_VERSION:
            form = cancel_product_form(payload)
            return (
                form_flag(form, "voucher")
                and form_flag(form, "voucher_refund_type")
                and "offline_refund" not in form
                and "credit_slip" not in form
            )
        return (
            "generateDiscountRefund" in payload
            and "reinjectQuantities" not in payload
            and "offline_refund" not in payload
        )

    def get_refund_total(self, payload: dict[str, Any]) -> Decimal:
        form = cancel_product_form(payload)
        total = Decimal("0")
        for key in form:
            if key.startswith("amount_") or key == "shipping_amount":
                total += form_decimal(form, key) or Decimal("0")
        return total

    def get_refund_type(self, payload: dict[str, Any]) -> RefundType:
        if form_flag(cancel_product_form(payload), "full_refund"):
            return RefundType.FULL
        return RefundType.PARTIAL

    def create_reductions(self, order: Order, payload: dict[str, Any]) -> list[LineItemReduction]:
        form = cancel_product_form(payload)
        reductions = []
        for product in order.products:
            amount = form_decimal(form, f"amount_{product.order_detail_id}")
            if not amount:
                continue
            quantity = int(form_decimal(form, f"quantity_{product.order_detail_id}") or 1)
            if amount >= product.unit_price_tax_incl * quantity:
                reductions.append(
                    LineItemReduction(
                        line_item_unique_id=product.line_item_unique_id,
                        quantity_reduction=Decimal(quantity),
                    )
                )
            else:
                remaining = product.refundable_quantity
                reductions.append(
                    LineItemReduction(
                        line_item_unique_id=product.line_item_unique_id,
                        unit_price_reduction=amount / remaining if remaining > 0 else amount,
                    )
                )

        shipping_amount = form_decimal(form, "shipping_amount")
        if shipping_amount:
            reductions.append(
                LineItemReduction(
                    line_item_unique_id=order.shipping_line_item_unique_id,
                    unit_price_reduction=shipping_amount,
                )
            )
        return reductions

    def apply_refund(self, order: Order, payload: dict[str, Any]) -> AppliedRefund:
        form = cancel_product_form(payload)
        amount = self.get_refund_total(payload)
        if order.total_refunded + amount > order.total_paid_tax_incl:
            raise ApplyError(
                f"Refund of {amount} {order.currency} exceeds what is left to refund on order {order.reference}"
            )

        restock = form_flag(form, "restock")
        refunded: dict[int, int] = {}
        restocked: dict[int, int] = {}
        for product in order.products:
            requested = form_decimal(form, f"quantity_{product.order_detail_id}")
            if requested is None and form_decimal(form, f"amount_{product.order_detail_id}"):
                requested = Decimal("1")
            quantity = int(requested or 0)
            if quantity == 0:
                continue
            if quantity > product.refundable_quantity:
                raise ApplyError(
                    f"Cannot refund {quantity} x {product.sku}, only {product.refundable_quantity} left on order"
                )
            product.quantity_refunded += quantity
            refunded[product.order_detail_id] = quantity
            if restock:
                product.quantity_reinjected += quantity
                restocked[product.order_detail_id] = quantity

        now = datetime.now(timezone.utc)
        order.total_refunded += amount

        credit_slip_id = None
        if form_flag(form, "credit_slip"):
            credit_slip_id = f"CS-{order.id}-{len(order.credit_slips) + 1:03d}"
            order.credit_slips.append(
                CreditSlip(
                    id=credit_slip_id,
                    amount=amount,
                    shipping_amount=form_decimal(form, "shipping_amount") or Decimal("0"),
                    quantities=refunded,
                    created_at=now,
                )
            )

        voucher_code = None
        if form_flag(form, "voucher"):
            voucher_code = f"V{order.id}-{uuid.uuid4().hex[:8].upper()}"
            order.vouchers.append(Voucher(code=voucher_code, amount=amount, created_at=now))

        return AppliedRefund(
            amount=amount,
            credit_slip_id=credit_slip_id,
            voucher_code=voucher_code,
            refunded_quantities=refunded,
            restocked_quantities=restocked,
        )

    def after_apply_refund_actions(self, order: Order, payload: dict[str, Any], applied: AppliedRefund) -> None:
        if order.total_refunded >= order.total_paid_tax_incl:
            order.status = OrderStatus.REFUNDED
        else:
            order.status = OrderStatus.PARTIALLY_REFUNDED
        message = f"Refund of {applied.amount} {order.currency} applied"
        if applied.credit_slip_id:
            message += f", credit slip {applied.credit_slip_id}"
        order.history.append(
            OrderHistoryEntry(status=order.status, message=message, created_at=datetime.now(timezone.utc))
        )
