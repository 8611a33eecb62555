"""Refund job endpoints — create, inspect and advance refund jobs under /api/v1/refunds."""
import logging
import time
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from app.gateway.errors import GatewayError
from app.models.refund import RefundRequest, SweepRequest
from app.security.auth import require_api_key
from app.services.refund_service import refund_service
from app.validators.refund_validator import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/refunds", tags=["refunds"])


def _envelope(data, request: Request) -> dict:
    return {
        "data": data,
        "meta": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_refund(
    body: RefundRequest,
    request: Request,
    _: str = Depends(require_api_key),
) -> JSONResponse:
    """Create a refund job for an order and send it to the gateway.

    Returns 201 with the job. A voucher-only refund creates no job and returns 200 with null data.
    """
    try:
        job = refund_service.execute_refund(body.order_id, body.parameters)
    except ValidationError as exc:
        raise HTTPException(
            status_code=exc.http_status,
            detail={"error": {"code": exc.code, "message": exc.message, "details": exc.details}},
        )

    if job is None:
        return JSONResponse(content=_envelope(None, request), status_code=status.HTTP_200_OK)
    return JSONResponse(content=_envelope(job.model_dump(mode="json"), request), status_code=status.HTTP_201_CREATED)


@router.get("/pending")
def get_pending(request: Request, _: str = Depends(require_api_key)) -> dict:
    """Tell whether any job still waits to be sent or applied."""
    return _envelope({"has_pending_refunds": refund_service.has_pending_refunds()}, request)


@router.post("/sweep")
def sweep_refunds(
    request: Request,
    body: Optional[SweepRequest] = None,
    _: str = Depends(require_api_key),
) -> dict:
    """Advance every job stuck before the gateway or before the shop. Meant to be called by a scheduler."""
    end_time = None
    if body is not None and body.max_runtime_seconds is not None:
        end_time = time.time() + body.max_runtime_seconds
    report = refund_service.update_refunds(end_time)
    return _envelope(report.model_dump(mode="json"), request)


@router.post("/orders/{order_id}/update")
def update_order_refunds(order_id: int, request: Request, _: str = Depends(require_api_key)) -> dict:
    """Advance the running refund of one order. A gateway error leaves the job for the next sweep."""
    try:
        refund_service.update_for_order(order_id)
    except GatewayError as exc:
        logger.warning("Refund of order %s could not be advanced, it will be retried: %s", order_id, exc.message)
    jobs = refund_service.list_jobs(order_id=order_id)
    return _envelope([j.model_dump(mode="json") for j in jobs], request)


@router.get("/{job_id}")
def get_refund_job(job_id: int, request: Request, _: str = Depends(require_api_key)) -> dict:
    """Retrieve a single refund job by its ID."""
    job = refund_service.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": {"code": "REFUND_JOB_NOT_FOUND", "message": f"Refund job {job_id} not found"}},
        )
    return _envelope(job.model_dump(mode="json"), request)


@router.get("")
def list_refund_jobs(
    request: Request,
    order_id: Optional[int] = None,
    _: str = Depends(require_api_key),
) -> dict:
    """List all refund jobs, optionally filtered by order_id."""
    jobs = refund_service.list_jobs(order_id=order_id)
    return _envelope([j.model_dump(mode="json") for j in jobs], request)
