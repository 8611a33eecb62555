"""
Refund service — the refund job state machine.

Flow: create (locked, validated, committed) → send to gateway → gateway
confirms (webhook) → apply to shop order → SUCCESS or FAILURE.

Every step that changes a job locks the job's (space_id, transaction_id)
pair and reloads the job first, so webhooks, sweeps and direct calls racing
on the same job never process it twice. The gateway call in send is the only
network call made under the lock; creation commits before sending.
"""
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from app.config import (
    GATEWAY_NAME,
    PLATFORM_VERSION,
    PRICE_COMPUTE_PRECISION,
    get_refundable_states,
)
from app.engine.calculator import CalculationError, fix_reductions
from app.gateway.client import GatewayClient
from app.gateway.errors import ClientRejectionError, RefundNotFoundError, clean_exception_message
from app.gateway.memory import gateway
from app.models.gateway import LineItem, Refund, RefundCreate, RefundQuery, RefundState
from app.models.refund import RefundJob, RefundJobState, SweepReport
from app.repository.store import InMemoryStore, store
from app.strategy.base import AppliedRefund, ApplyError, PostApplyResult, RefundStrategy
from app.strategy.provider import get_strategy
from app.validators.refund_validator import (
    ValidationError,
    validate_no_running_refund,
    validate_refund_parameters,
    validate_transaction_info,
)

logger = logging.getLogger(__name__)

# A job whose shop-side apply failed more often than this is given up
MAX_APPLY_TRIES = 3
# The sweep stops starting new jobs once less than this is left before its deadline
SWEEP_SAFETY_MARGIN_SECONDS = 15

_TRANSITIONS = {
    RefundJobState.CREATED: {RefundJobState.SENT, RefundJobState.PENDING, RefundJobState.FAILURE},
    RefundJobState.SENT: {RefundJobState.APPLY, RefundJobState.FAILURE},
    RefundJobState.PENDING: {RefundJobState.APPLY, RefundJobState.FAILURE},
    RefundJobState.APPLY: {RefundJobState.SUCCESS, RefundJobState.FAILURE},
    RefundJobState.SUCCESS: set(),
    RefundJobState.FAILURE: set(),
}


class InvalidTransitionError(Exception):
    """Raised when a job is asked to move to a state its current state does not lead to."""
    pass


def transition(job: RefundJob, state: RefundJobState) -> None:
    if state not in _TRANSITIONS[job.state]:
        raise InvalidTransitionError(f"Refund job {job.id} cannot move from {job.state.value} to {state.value}")
    logger.info("Refund job %s: %s -> %s", job.id, job.state.value, state.value)
    job.state = state
    job.updated_at = datetime.now(timezone.utc)


def new_external_id(order_id: int) -> str:
    """Idempotency key the gateway uses to recognise a re-sent refund."""
    return f"{order_id}-{uuid.uuid4().hex[:13]}"


class RefundService:
    def __init__(
        self,
        store: InMemoryStore,
        gateway: GatewayClient,
        strategy: RefundStrategy,
        refundable_states: Iterable[str],
        compute_precision: int = 2,
        gateway_name: str = "WeArePlanet",
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.gateway = gateway
        self.strategy = strategy
        self.refundable_states = frozenset(refundable_states)
        self.compute_precision = compute_precision
        self.gateway_name = gateway_name
        self.clock = clock

    # ── Entry points ─────────────────────────────────────────────────────────

    def execute_refund(self, order_id: int, parameters: dict[str, Any]) -> Optional[RefundJob]:
        """
        Create a refund job for the order and send it to the gateway.

        Voucher-only refunds never reach the gateway; None is returned for them.
        Send failures are logged and left to the sweep, so the returned job
        may still be CREATED.

        Raises:
            ValidationError: If the job cannot be created (nothing is persisted).
            ConflictError: If another refund of the transaction is running.
        """
        if self.strategy.is_voucher_only_refund(parameters):
            logger.info("Voucher-only refund for order %s, nothing to send to %s", order_id, self.gateway_name)
            return None

        job_id = self.create_job(order_id, parameters)
        try:
            self.send_refund(job_id)
        except Exception:
            logger.exception("Refund job %s could not be sent, it will be retried", job_id)
        return self.store.get_job(job_id)

    def create_job(self, order_id: int, parameters: dict[str, Any]) -> int:
        """
        Persist a new CREATED job for the order's transaction.

        Steps:
          1. Validate the payload and find the order's transaction.
          2. Lock the transaction and reload it.
          3. Check the transaction state and that no other refund is running.
          4. Save the job and check a refund object can be built from it.
          5. Commit.

        Raises:
            ValidationError: Missing/unrefundable transaction, bad payload, or
                reductions that cannot be computed.
            ConflictError: If another refund of the transaction is running.
        """
        validate_refund_parameters(parameters)
        info = validate_transaction_info(
            self.store.get_transaction_info_for_order(order_id), self.refundable_states, order_id
        )

        with self.store.transaction(info.space_id, info.transaction_id) as tx:
            # Reload after locking
            info = validate_transaction_info(tx.load_transaction_info(), self.refundable_states, order_id)
            validate_no_running_refund(tx.is_refund_running(), info)

            now = datetime.now(timezone.utc)
            job = RefundJob(
                external_id=new_external_id(order_id),
                order_id=order_id,
                space_id=info.space_id,
                transaction_id=info.transaction_id,
                refund_parameters=parameters,
                state=RefundJobState.CREATED,
                created_at=now,
                updated_at=now,
            )
            tx.save_job(job)
            try:
                self.create_refund_object(job)
            except (CalculationError, RefundNotFoundError) as exc:
                raise ValidationError(
                    code="REFUND_NOT_COMPUTABLE",
                    message=f"The refund could not be computed: {exc}",
                    details={"order_id": order_id},
                ) from exc

        logger.info("Created refund job %s for order %s (external id %s)", job.id, order_id, job.external_id)
        return job.id

    def send_refund(self, job_id: int) -> None:
        """
        Send a CREATED job to the gateway. Jobs in any other state are left alone.

        A refund the gateway rejects fails the job for good. Any other error
        leaves the job CREATED for a later retry and is re-raised.
        """
        job = self._require_job(job_id)
        with self.store.transaction(job.space_id, job.transaction_id) as tx:
            job = tx.load_job(job_id)
            if job.state != RefundJobState.CREATED:
                # Already sent in the meantime
                return
            try:
                refund = self.gateway.refund_create(job.space_id, self.create_refund_object(job))
            except ClientRejectionError as exc:
                job.failure_reason = {
                    "en-US": (
                        f"Could not send the refund to {self.gateway_name}. "
                        f"Error: {clean_exception_message(exc.message)}"
                    )
                }
                transition(job, RefundJobState.FAILURE)
                tx.save_job(job)
                logger.warning("Refund job %s rejected by %s: %s", job_id, self.gateway_name, exc.message)
                return
            except Exception as exc:
                tx.save_job(job)
                tx.commit()
                logger.error("Error sending refund job with id %s: %s", job_id, exc)
                raise

            job.refund_id = refund.id
            if refund.state == RefundState.PENDING:
                transition(job, RefundJobState.PENDING)
            else:
                transition(job, RefundJobState.SENT)
            tx.save_job(job)

    def apply_refund_to_shop(self, job_id: int) -> Optional[PostApplyResult]:
        """
        Write an approved refund (job in APPLY) to the shop order.

        On success the job becomes SUCCESS and the after-apply actions run;
        their outcome is returned and never changes the job. A failed apply
        counts against the job's apply tries and is not raised. Returns None
        when nothing was applied.
        """
        job = self._require_job(job_id)
        failure = None
        with self.store.transaction(job.space_id, job.transaction_id) as tx:
            job = tx.load_job(job_id)
            if job.state != RefundJobState.APPLY:
                # Already processed in the meantime
                return None
            try:
                order = tx.load_order(job.order_id)
                if order is None:
                    raise ApplyError(f"Order {job.order_id} not found")
                applied = self.strategy.apply_refund(order, job.refund_parameters)
                transition(job, RefundJobState.SUCCESS)
                tx.save_order(order)
                tx.save_job(job)
            except Exception as exc:
                tx.rollback()
                failure = exc

        if failure is not None:
            self._record_apply_failure(job, failure)
            return None

        logger.info("Refund job %s applied to order %s", job_id, job.order_id)
        result = self._run_after_apply_actions(job, applied)
        if not result.succeeded:
            logger.warning("After-apply actions of refund job %s failed: %s", job_id, result.error)
        return result

    def update_for_order(self, order_id: int) -> None:
        """Advance the running refund of the order's transaction, if there is one."""
        info = self.store.get_transaction_info_for_order(order_id)
        if info is None:
            return
        job = self.store.load_running_refund_for_transaction(info.space_id, info.transaction_id)
        if job is None:
            return
        if job.state == RefundJobState.CREATED:
            self.send_refund(job.id)
        elif job.state == RefundJobState.APPLY:
            self.apply_refund_to_shop(job.id)

    def update_refunds(self, end_time: Optional[float] = None) -> SweepReport:
        """
        Send every unsent job, then apply every unapplied one.

        Stops before starting a job once fewer than SWEEP_SAFETY_MARGIN_SECONDS
        are left before ``end_time`` (epoch seconds). A job that raised, was rejected
        or still waits for an apply retry is listed under ``failed``.
        """
        report = SweepReport()
        for job_id in self.store.load_not_sent_job_ids():
            if self._deadline_reached(end_time):
                report.deadline_reached = True
                return report
            try:
                self.send_refund(job_id)
            except Exception as exc:
                logger.error("Error updating refund job with id %s: %s", job_id, exc)
                report.failed.append(job_id)
                continue
            if self._job_state(job_id) in (RefundJobState.CREATED, RefundJobState.FAILURE):
                report.failed.append(job_id)
            else:
                report.sent.append(job_id)

        for job_id in self.store.load_not_applied_job_ids():
            if self._deadline_reached(end_time):
                report.deadline_reached = True
                return report
            try:
                self.apply_refund_to_shop(job_id)
            except Exception as exc:
                logger.error("Error applying refund job with id %s: %s", job_id, exc)
                report.failed.append(job_id)
                continue
            if self._job_state(job_id) == RefundJobState.SUCCESS:
                report.applied.append(job_id)
            else:
                report.failed.append(job_id)
        return report

    def has_pending_refunds(self) -> bool:
        return bool(self.store.load_not_sent_job_ids() or self.store.load_not_applied_job_ids())

    def get_job(self, job_id: int) -> Optional[RefundJob]:
        return self.store.get_job(job_id)

    def list_jobs(self, order_id: Optional[int] = None) -> list[RefundJob]:
        return self.store.list_jobs(order_id=order_id)

    # ── Gateway side ─────────────────────────────────────────────────────────

    def create_refund_object(self, job: RefundJob) -> RefundCreate:
        """Build the refund-create request for a job from the order and the gateway's line items."""
        order = self.store.get_order(job.order_id)
        if order is None:
            raise ValidationError(code="ORDER_NOT_FOUND", message=f"Order {job.order_id} not found", http_status=404)

        parameters = job.refund_parameters
        amount = self.strategy.get_refund_total(parameters)
        reductions = self.strategy.create_reductions(order, parameters)
        line_items = self.get_base_line_items(job.space_id, job.transaction_id)
        reductions = fix_reductions(
            amount, reductions, line_items, order.products, parameters, self.compute_precision
        )
        return RefundCreate(
            external_id=job.external_id,
            transaction=job.transaction_id,
            type=self.strategy.get_refund_type(parameters),
            reductions=reductions,
        )

    def get_refund_by_external_id(self, space_id: int, external_id: str) -> Refund:
        result = self.gateway.search_refunds(space_id, RefundQuery(external_id=external_id, limit=1))
        if not result:
            raise RefundNotFoundError("The refund could not be found.")
        return result[0]

    def get_base_line_items(
        self,
        space_id: int,
        transaction_id: int,
        exclude_refund_id: Optional[int] = None,
    ) -> list[LineItem]:
        """Line items left by the latest successful refund, or else those of the transaction's invoice."""
        last_refund = self.get_last_successful_refund(space_id, transaction_id, exclude_refund_id)
        if last_refund is not None:
            return last_refund.reduced_line_items
        invoice = self.gateway.get_transaction_invoice(space_id, transaction_id)
        if invoice is None:
            raise RefundNotFoundError("The transaction invoice could not be found.")
        return invoice.line_items

    def get_last_successful_refund(
        self,
        space_id: int,
        transaction_id: int,
        exclude_refund_id: Optional[int] = None,
    ) -> Optional[Refund]:
        query = RefundQuery(
            transaction_id=transaction_id,
            state=RefundState.SUCCESSFUL,
            exclude_refund_id=exclude_refund_id,
            newest_first=True,
            limit=1,
        )
        result = self.gateway.search_refunds(space_id, query)
        return result[0] if result else None

    # ── Internals ────────────────────────────────────────────────────────────

    def _require_job(self, job_id: int) -> RefundJob:
        job = self.store.get_job(job_id)
        if job is None:
            raise LookupError(f"Refund job {job_id} not found")
        return job

    def _job_state(self, job_id: int) -> Optional[RefundJobState]:
        job = self.store.get_job(job_id)
        return job.state if job else None

    def _record_apply_failure(self, job: RefundJob, error: Exception) -> None:
        with self.store.transaction(job.space_id, job.transaction_id) as tx:
            job = tx.load_job(job.id)
            if job.state != RefundJobState.APPLY:
                return
            job.increase_apply_tries()
            if job.apply_tries > MAX_APPLY_TRIES:
                job.failure_reason = {"en-US": str(error)}
                transition(job, RefundJobState.FAILURE)
            else:
                job.updated_at = datetime.now(timezone.utc)
            tx.save_job(job)
        logger.error("Error applying refund job with id %s (try %s): %s", job.id, job.apply_tries, error)

    def _run_after_apply_actions(self, job: RefundJob, applied: AppliedRefund) -> PostApplyResult:
        try:
            with self.store.transaction(job.space_id, job.transaction_id) as tx:
                order = tx.load_order(job.order_id)
                self.strategy.after_apply_refund_actions(order, job.refund_parameters, applied)
                tx.save_order(order)
        except Exception as exc:
            return PostApplyResult.failed(str(exc))
        return PostApplyResult.ok()

    def _deadline_reached(self, end_time: Optional[float]) -> bool:
        return end_time is not None and self.clock() + SWEEP_SAFETY_MARGIN_SECONDS > end_time


def create_refund_service() -> RefundService:
    return RefundService(
        store=store,
        gateway=gateway,
        strategy=get_strategy(PLATFORM_VERSION),
        refundable_states=get_refundable_states(),
        compute_precision=PRICE_COMPUTE_PRECISION,
        gateway_name=GATEWAY_NAME,
    )


# Global singleton: wired to the global store and gateway
refund_service = create_refund_service()
