from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PAYMENT_ACCEPTED = "PAYMENT_ACCEPTED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"


class OrderProduct(BaseModel):
    order_detail_id: int = Field(..., ge=1)
    sku: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=200)
    quantity: int = Field(..., ge=1)
    unit_price_tax_incl: Decimal = Field(..., ge=Decimal("0"))
    # Unique id the shop sent for this product when the transaction was created
    line_item_unique_id: str
    quantity_refunded: int = 0
    quantity_reinjected: int = 0

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - self.quantity_refunded


class CreditSlip(BaseModel):
    id: str
    amount: Decimal
    shipping_amount: Decimal = Decimal("0")
    quantities: dict[int, int] = Field(default_factory=dict)
    created_at: datetime


class Voucher(BaseModel):
    code: str
    amount: Decimal
    created_at: datetime


class OrderHistoryEntry(BaseModel):
    status: OrderStatus
    message: str
    created_at: datetime


class Order(BaseModel):
    id: int = Field(..., ge=1)
    reference: str
    currency: str = Field(..., min_length=3, max_length=3)
    products: list[OrderProduct]
    shipping_tax_incl: Decimal = Decimal("0")
    shipping_line_item_unique_id: str = "shipping"
    total_paid_tax_incl: Decimal
    total_refunded: Decimal = Decimal("0")
    status: OrderStatus = OrderStatus.PAYMENT_ACCEPTED
    credit_slips: list[CreditSlip] = Field(default_factory=list)
    vouchers: list[Voucher] = Field(default_factory=list)
    history: list[OrderHistoryEntry] = Field(default_factory=list)

    def get_product(self, order_detail_id: int) -> Optional[OrderProduct]:
        return next((p for p in self.products if p.order_detail_id == order_detail_id), None)
