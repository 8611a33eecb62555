"""Order endpoint — GET /api/v1/orders/{id}"""
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, status
from app.repository.store import store
from app.security.auth import require_api_key

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


def _envelope(data, request: Request) -> dict:
    return {
        "data": data,
        "meta": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    }


@router.get("/{order_id}")
def get_order(order_id: int, request: Request, _: str = Depends(require_api_key)) -> dict:
    """Retrieve an order with its refunded quantities, credit slips and vouchers."""
    order = store.get_order(order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": {"code": "ORDER_NOT_FOUND", "message": f"Order {order_id} not found"}},
        )
    return _envelope(order.model_dump(mode="json"), request)
