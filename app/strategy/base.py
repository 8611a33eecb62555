"""
Refund strategy interface.

A strategy knows how a given shop platform version encodes a refund request
(the admin's cancel_product form) and how an approved refund is written back
to the shop order.
"""
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from pydantic import BaseModel, Field
from app.models.gateway import LineItemReduction, RefundType
from app.models.order import Order


class ApplyError(Exception):
    """Raised when an approved refund cannot be written to the shop order."""
    pass


class AppliedRefund(BaseModel):
    """What apply_refund changed on the order, handed to the after-apply actions."""

    amount: Decimal
    credit_slip_id: Optional[str] = None
    voucher_code: Optional[str] = None
    refunded_quantities: dict[int, int] = Field(default_factory=dict)
    restocked_quantities: dict[int, int] = Field(default_factory=dict)


class PostApplyResult(BaseModel):
    """Outcome of the best-effort actions that follow a successful apply. Never raised."""

    succeeded: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "PostApplyResult":
        return cls(succeeded=True)

    @classmethod
    def failed(cls, error: str) -> "PostApplyResult":
        return cls(succeeded=False, error=error)


def cancel_product_form(payload: dict[str, Any]) -> dict[str, Any]:
    return payload.get("cancel_product") or {}


def form_decimal(form: dict[str, Any], key: str) -> Optional[Decimal]:
    raw = form.get(key)
    if raw in (None, ""):
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return None


def form_flag(form: dict[str, Any], key: str) -> bool:
    return str(form.get(key, "")).strip() == "1"


class RefundStrategy(ABC):
    @abstractmethod
    def is_voucher_only_refund(self, payload: dict[str, Any]) -> bool:
        """True when the admin refunds with a voucher only, so the gateway is not involved."""

    @abstractmethod
    def get_refund_total(self, payload: dict[str, Any]) -> Decimal:
        ...

    @abstractmethod
    def get_refund_type(self, payload: dict[str, Any]) -> RefundType:
        ...

    @abstractmethod
    def create_reductions(self, order: Order, payload: dict[str, Any]) -> list[LineItemReduction]:
        """Reductions from the shop's own view of the order, before reconciliation with the gateway."""

    @abstractmethod
    def apply_refund(self, order: Order, payload: dict[str, Any]) -> AppliedRefund:
        """Mutate the order for an approved refund. Raises ApplyError when it cannot."""

    @abstractmethod
    def after_apply_refund_actions(self, order: Order, payload: dict[str, Any], applied: AppliedRefund) -> None:
        ...
