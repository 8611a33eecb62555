from typing import Any
from app.strategy.base import cancel_product_form, form_flag
from app.strategy.default import DefaultStrategy


class Strategy1774(DefaultStrategy):
    """Platform 1.7.7.4 posts no voucher_refund_type; the voucher checkbox alone decides."""

    def is_voucher_only_refund(self, payload: dict[str, Any]) -> bool:
        return form_flag(cancel_product_form(payload), "voucher")
