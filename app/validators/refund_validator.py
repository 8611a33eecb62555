"""
Business rule validation for refund creation.

Validators only inspect what they are given and never touch the store.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional
from app.models.transaction import TransactionInfo

AMOUNT_PREFIX = "amount_"
QUANTITY_PREFIX = "quantity_"


class ValidationError(Exception):
    """Raised when a refund cannot be created. Nothing is persisted."""

    def __init__(self, code: str, message: str, details: dict | None = None, http_status: int = 422):
        self.code = code
        self.message = message
        self.details = details or {}
        self.http_status = http_status
        super().__init__(message)


class ConflictError(ValidationError):
    """Raised when another refund of the same transaction is still running."""

    def __init__(self, code: str, message: str, details: dict | None = None, http_status: int = 409):
        super().__init__(code, message, details, http_status)


def validate_transaction_info(
    info: Optional[TransactionInfo],
    refundable_states: Iterable[str],
    order_id: int,
) -> TransactionInfo:
    """
    Rule 1: the order must have a transaction. Rule 2: its state must allow refunds.

    Raises:
        ValidationError: With code TRANSACTION_NOT_FOUND or INVALID_TRANSACTION_STATE.
    """
    if info is None:
        raise ValidationError(
            code="TRANSACTION_NOT_FOUND",
            message="Could not load corresponding transaction",
            details={"order_id": order_id},
            http_status=404,
        )
    allowed = set(refundable_states)
    if info.state.value not in allowed:
        raise ValidationError(
            code="INVALID_TRANSACTION_STATE",
            message="The transaction is not in a state to be refunded.",
            details={
                "transaction_id": info.transaction_id,
                "state": info.state.value,
                "refundable_states": sorted(allowed),
            },
        )
    return info


def validate_no_running_refund(is_running: bool, info: TransactionInfo) -> None:
    """Rule 3: only one refund per transaction may be in flight."""
    if is_running:
        raise ConflictError(
            code="REFUND_RUNNING",
            message="Please wait until the existing refund is processed.",
            details={"space_id": info.space_id, "transaction_id": info.transaction_id},
        )


def validate_refund_parameters(parameters: dict[str, Any]) -> None:
    """
    Rule 4: the cancel_product form must hold well-formed, non-negative numbers
    and at least one positive amount.

    Raises:
        ValidationError: With code INVALID_REFUND_PARAMETERS.
    """
    cancel_product = parameters.get("cancel_product")
    if not isinstance(cancel_product, dict):
        raise ValidationError(
            code="INVALID_REFUND_PARAMETERS",
            message="Refund parameters must contain a cancel_product object",
        )

    invalid = []
    positive_amount = False
    for key, raw in cancel_product.items():
        is_amount = key.startswith(AMOUNT_PREFIX) or key == "shipping_amount"
        if not (is_amount or key.startswith(QUANTITY_PREFIX)) or raw in (None, ""):
            continue
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            invalid.append(key)
            continue
        if not value.is_finite() or value < 0:
            invalid.append(key)
        elif key.startswith(QUANTITY_PREFIX) and value != value.to_integral_value():
            invalid.append(key)
        elif is_amount and value > 0:
            positive_amount = True

    if invalid:
        raise ValidationError(
            code="INVALID_REFUND_PARAMETERS",
            message=f"Refund parameters contain invalid values: {sorted(invalid)}",
            details={"invalid_fields": sorted(invalid)},
        )
    if not positive_amount:
        raise ValidationError(
            code="INVALID_REFUND_PARAMETERS",
            message="Refund parameters do not contain any amount to refund",
        )
