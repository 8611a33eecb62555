from .transaction import TransactionInfo, TransactionState
from .order import Order, OrderProduct, OrderStatus, CreditSlip, Voucher, OrderHistoryEntry
from .refund import RefundJob, RefundJobState, RefundRequest, SweepRequest, SweepReport, RefundWebhook
from .gateway import (
    LineItem, LineItemType, LineItemReduction, Refund, RefundCreate, RefundQuery,
    RefundState, RefundType, TransactionInvoice, TransactionInvoiceState,
)

__all__ = [
    "TransactionInfo", "TransactionState",
    "Order", "OrderProduct", "OrderStatus", "CreditSlip", "Voucher", "OrderHistoryEntry",
    "RefundJob", "RefundJobState", "RefundRequest", "SweepRequest", "SweepReport", "RefundWebhook",
    "LineItem", "LineItemType", "LineItemReduction", "Refund", "RefundCreate", "RefundQuery",
    "RefundState", "RefundType", "TransactionInvoice", "TransactionInvoiceState",
]
