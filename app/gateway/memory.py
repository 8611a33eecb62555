"""
In-memory payment gateway with thread-safe operations.

Stands in for the remote gateway in development and tests. It follows the
gateway's refund contract: refunds are de-duplicated by external id, every
refund reduces the line items left by the last successful refund (or by the
invoice), and bad reductions are rejected as client errors.
"""
import itertools
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from app.gateway.errors import ClientRejectionError
from app.models.gateway import (
    LineItem,
    LineItemReduction,
    Refund,
    RefundCreate,
    RefundQuery,
    RefundState,
    RefundType,
    TransactionInvoice,
    TransactionInvoiceState,
)


class InMemoryGateway:
    """Thread-safe in-memory gateway keeping invoices and refunds per space."""

    def __init__(self, refund_state: RefundState = RefundState.SUCCESSFUL):
        self._lock = threading.Lock()
        # (space_id, transaction_id) -> invoices
        self._invoices: dict[tuple[int, int], list[TransactionInvoice]] = {}
        # refund_id -> (space_id, refund)
        self._refunds: dict[int, tuple[int, Refund]] = {}
        self._refund_ids = itertools.count(1001)
        self._queued_errors: list[Exception] = []
        # State given to newly created refunds
        self.refund_state = refund_state
        self.received: list[RefundCreate] = []

    def reset(self) -> None:
        """Drop all invoices, refunds and queued errors — intended for test isolation only."""
        with self._lock:
            self._invoices.clear()
            self._refunds.clear()
            self._queued_errors.clear()
            self._refund_ids = itertools.count(1001)
            self.refund_state = RefundState.SUCCESSFUL
            self.received = []

    # ── Test and seed hooks ─────────────────────────────────────────────────

    def save_invoice(self, space_id: int, invoice: TransactionInvoice) -> None:
        with self._lock:
            self._invoices.setdefault((space_id, invoice.transaction_id), []).append(invoice)

    def queue_error(self, error: Exception) -> None:
        """Make the next refund_create call raise ``error``."""
        with self._lock:
            self._queued_errors.append(error)

    def set_refund_state(
        self,
        space_id: int,
        refund_id: int,
        state: RefundState,
        failure_reason: Optional[str] = None,
    ) -> Refund:
        """Move a refund to a new state, as the gateway does when it finishes processing."""
        with self._lock:
            owner, refund = self._refunds[refund_id]
            if owner != space_id:
                raise KeyError(refund_id)
            updated = refund.model_copy(update={"state": state, "failure_reason": failure_reason})
            self._refunds[refund_id] = (space_id, updated)
            return updated.model_copy(deep=True)

    # ── Gateway contract ────────────────────────────────────────────────────

    def search_refunds(self, space_id: int, query: RefundQuery) -> list[Refund]:
        with self._lock:
            refunds = [r for owner, r in self._refunds.values() if owner == space_id]

        if query.refund_id is not None:
            refunds = [r for r in refunds if r.id == query.refund_id]
        if query.external_id is not None:
            refunds = [r for r in refunds if r.external_id == query.external_id]
        if query.transaction_id is not None:
            refunds = [r for r in refunds if r.transaction_id == query.transaction_id]
        if query.state is not None:
            refunds = [r for r in refunds if r.state == query.state]
        if query.exclude_refund_id is not None:
            refunds = [r for r in refunds if r.id != query.exclude_refund_id]

        refunds.sort(key=lambda r: (r.created_on, r.id), reverse=query.newest_first)
        if query.limit is not None:
            refunds = refunds[: query.limit]
        return [r.model_copy(deep=True) for r in refunds]

    def refund_create(self, space_id: int, refund: RefundCreate) -> Refund:
        with self._lock:
            self.received.append(refund.model_copy(deep=True))
            if self._queued_errors:
                raise self._queued_errors.pop(0)

            for owner, existing in self._refunds.values():
                if owner == space_id and existing.external_id == refund.external_id:
                    return existing.model_copy(deep=True)

            base_line_items = self._base_line_items(space_id, refund.transaction)
            if base_line_items is None:
                raise ClientRejectionError(
                    f"Transaction {refund.transaction} has no invoice that could be refunded.", 409
                )

            if refund.type == RefundType.FULL:
                reductions = [
                    LineItemReduction(line_item_unique_id=item.unique_id, quantity_reduction=item.quantity)
                    for item in base_line_items
                ]
            else:
                reductions = refund.reductions
            reduced_line_items, amount = _apply_reductions(base_line_items, reductions)
            if amount <= Decimal("0"):
                raise ClientRejectionError("The refund amount must be greater than zero.", 400)

            created = Refund(
                id=next(self._refund_ids),
                external_id=refund.external_id,
                transaction_id=refund.transaction,
                state=self.refund_state,
                type=refund.type,
                amount=amount,
                reductions=reductions,
                reduced_line_items=reduced_line_items,
                created_on=datetime.now(timezone.utc),
            )
            self._refunds[created.id] = (space_id, created)
            return created.model_copy(deep=True)

    def get_transaction_invoice(self, space_id: int, transaction_id: int) -> Optional[TransactionInvoice]:
        with self._lock:
            invoices = self._invoices.get((space_id, transaction_id), [])
            for invoice in invoices:
                if invoice.state != TransactionInvoiceState.CANCELED:
                    return invoice.model_copy(deep=True)
        return None

    def _base_line_items(self, space_id: int, transaction_id: int) -> Optional[list[LineItem]]:
        """Caller must hold the lock."""
        successful = [
            r for owner, r in self._refunds.values()
            if owner == space_id and r.transaction_id == transaction_id and r.state == RefundState.SUCCESSFUL
        ]
        if successful:
            latest = max(successful, key=lambda r: (r.created_on, r.id))
            return latest.reduced_line_items
        for invoice in self._invoices.get((space_id, transaction_id), []):
            if invoice.state != TransactionInvoiceState.CANCELED:
                return invoice.line_items
        return None


def _apply_reductions(
    line_items: list[LineItem],
    reductions: list[LineItemReduction],
) -> tuple[list[LineItem], Decimal]:
    """Return the line items left after the reductions and the amount taken off."""
    by_unique_id = {r.line_item_unique_id: r for r in reductions}
    unknown = set(by_unique_id) - {item.unique_id for item in line_items}
    if unknown:
        raise ClientRejectionError(f"Unknown line items in reductions: {sorted(unknown)}", 400)

    reduced = []
    amount = Decimal("0")
    for item in line_items:
        reduction = by_unique_id.get(item.unique_id)
        if reduction is None:
            reduced.append(item.model_copy(deep=True))
            continue
        if reduction.quantity_reduction > item.quantity:
            raise ClientRejectionError(
                f"Cannot reduce {reduction.quantity_reduction} units of line item {item.unique_id}, "
                f"only {item.quantity} left.",
                400,
            )
        unit_price = item.unit_price_including_tax - reduction.unit_price_reduction
        if unit_price < Decimal("0"):
            raise ClientRejectionError(
                f"Unit price reduction of line item {item.unique_id} exceeds its unit price.", 400
            )
        quantity = item.quantity - reduction.quantity_reduction
        amount += item.unit_price_including_tax * reduction.quantity_reduction
        amount += reduction.unit_price_reduction * quantity
        reduced.append(
            item.model_copy(
                update={
                    "quantity": quantity,
                    "unit_price_including_tax": unit_price,
                    "amount_including_tax": unit_price * quantity,
                }
            )
        )
    return reduced, amount


# Global singleton: the development gateway, populated by seed_data
gateway = InMemoryGateway()
