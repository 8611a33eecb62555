"""
Contract of the payment gateway's refund API as used by the refund engine.

Implementations raise ClientRejectionError for requests the gateway refuses
and TransientError for anything that may succeed on retry.
"""
from typing import Optional, Protocol
from app.models.gateway import Refund, RefundCreate, RefundQuery, TransactionInvoice


class GatewayClient(Protocol):
    def search_refunds(self, space_id: int, query: RefundQuery) -> list[Refund]:
        ...

    def refund_create(self, space_id: int, refund: RefundCreate) -> Refund:
        ...

    def get_transaction_invoice(self, space_id: int, transaction_id: int) -> Optional[TransactionInvoice]:
        """Return the transaction's invoice that is not canceled, if any."""
        ...
