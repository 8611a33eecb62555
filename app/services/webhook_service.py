"""
Webhook service — reacts to the gateway's refund state notifications.

A notification only names the refund. The refund is read back from the
gateway and matched to its job by external id before anything changes.
"""
import logging
from typing import Optional

from app.gateway.errors import RefundNotFoundError
from app.models.gateway import RefundQuery, RefundState
from app.models.refund import RefundJob, RefundJobState
from app.services.refund_service import RefundService, refund_service, transition

logger = logging.getLogger(__name__)

_AWAITING_GATEWAY = (RefundJobState.CREATED, RefundJobState.SENT, RefundJobState.PENDING)


class RefundWebhookProcessor:
    def __init__(self, service: RefundService):
        self.service = service

    def process(self, space_id: int, refund_id: int) -> Optional[RefundJob]:
        """
        Move the refund's job to APPLY (then apply it) or to FAILURE.

        Notifications for refunds this shop did not create, and for jobs
        already past the gateway step, are ignored.

        Returns:
            The job after processing, or None if no job matches the refund.

        Raises:
            RefundNotFoundError: If the gateway does not know the refund.
        """
        refunds = self.service.gateway.search_refunds(space_id, RefundQuery(refund_id=refund_id, limit=1))
        if not refunds:
            raise RefundNotFoundError(f"Refund {refund_id} could not be found.")
        refund = refunds[0]

        job = self.service.store.load_job_by_external_id(space_id, refund.external_id)
        if job is None:
            logger.info("Ignoring webhook for refund %s: no job with external id %s", refund_id, refund.external_id)
            return None

        ready_to_apply = False
        with self.service.store.transaction(job.space_id, job.transaction_id) as tx:
            job = tx.load_job(job.id)
            if job.state in _AWAITING_GATEWAY and refund.state == RefundState.SUCCESSFUL:
                if job.state == RefundJobState.CREATED:
                    # Sent, but the gateway's answer was lost
                    job.refund_id = refund.id
                    transition(job, RefundJobState.SENT)
                transition(job, RefundJobState.APPLY)
                tx.save_job(job)
                ready_to_apply = True
            elif job.state in _AWAITING_GATEWAY and refund.state == RefundState.FAILED:
                job.refund_id = refund.id
                job.failure_reason = {"en-US": refund.failure_reason or "The refund failed."}
                transition(job, RefundJobState.FAILURE)
                tx.save_job(job)

        if ready_to_apply:
            self.service.apply_refund_to_shop(job.id)
        return self.service.get_job(job.id)


webhook_processor = RefundWebhookProcessor(refund_service)
