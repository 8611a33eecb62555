"""
Gateway-side entities, shaped after the payment gateway's refund API.

These are snapshots fetched per refund computation. Nothing here is persisted locally.
"""
from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class LineItemType(str, Enum):
    PRODUCT = "PRODUCT"
    SHIPPING = "SHIPPING"
    DISCOUNT = "DISCOUNT"
    FEE = "FEE"


class LineItem(BaseModel):
    unique_id: str
    sku: Optional[str] = None
    name: str = ""
    type: LineItemType = LineItemType.PRODUCT
    quantity: Decimal = Field(..., ge=Decimal("0"))
    unit_price_including_tax: Decimal
    amount_including_tax: Decimal


class LineItemReduction(BaseModel):
    line_item_unique_id: str
    quantity_reduction: Decimal = Decimal("0")
    unit_price_reduction: Decimal = Decimal("0")


class RefundType(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class RefundState(str, Enum):
    CREATE = "CREATE"
    PENDING = "PENDING"
    MANUAL_CHECK = "MANUAL_CHECK"
    FAILED = "FAILED"
    SUCCESSFUL = "SUCCESSFUL"


class RefundCreate(BaseModel):
    external_id: str
    transaction: int
    type: RefundType
    reductions: list[LineItemReduction]


class Refund(BaseModel):
    id: int
    external_id: str
    transaction_id: int
    state: RefundState
    type: RefundType
    amount: Decimal
    reductions: list[LineItemReduction] = Field(default_factory=list)
    reduced_line_items: list[LineItem] = Field(default_factory=list)
    created_on: datetime
    failure_reason: Optional[str] = None


class TransactionInvoiceState(str, Enum):
    CREATE = "CREATE"
    OPEN = "OPEN"
    OVERDUE = "OVERDUE"
    CANCELED = "CANCELED"
    PAID = "PAID"
    DERECOGNIZED = "DERECOGNIZED"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class TransactionInvoice(BaseModel):
    id: int
    transaction_id: int
    state: TransactionInvoiceState
    line_items: list[LineItem]


class RefundQuery(BaseModel):
    """Filter for gateway refund searches. Unset fields do not filter."""

    refund_id: Optional[int] = None
    external_id: Optional[str] = None
    transaction_id: Optional[int] = None
    state: Optional[RefundState] = None
    exclude_refund_id: Optional[int] = None
    newest_first: bool = False
    limit: Optional[int] = Field(None, ge=1)
