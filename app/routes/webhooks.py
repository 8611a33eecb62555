"""Gateway webhook endpoint — POST /api/v1/webhooks/refund"""
from datetime import datetime, timezone
from fastapi import APIRouter, HTTPException, Request, status
from app.gateway.errors import RefundNotFoundError
from app.models.refund import RefundWebhook
from app.security.auth import verify_webhook_space
from app.services.webhook_service import webhook_processor

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


def _envelope(data, request: Request) -> dict:
    return {
        "data": data,
        "meta": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    }


@router.post("/refund")
def refund_webhook(body: RefundWebhook, request: Request) -> dict:
    """Process a refund state change notified by the gateway.

    The payload is not trusted beyond the ids: the refund is read back from the gateway.
    """
    verify_webhook_space(body.space_id)
    try:
        job = webhook_processor.process(body.space_id, body.entity_id)
    except RefundNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": {"code": "REFUND_NOT_FOUND", "message": str(exc)}},
        )
    return _envelope(job.model_dump(mode="json") if job else None, request)
