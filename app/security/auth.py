import hmac
from typing import Optional
from fastapi import Header, HTTPException, status
from app.config import API_KEY, GATEWAY_SPACE_ID

_UNAUTHORIZED = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail={"error": {"code": "UNAUTHORIZED", "message": "Invalid or missing API key"}},
)


async def require_api_key(x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> str:
    """Verify the admin API key using constant-time comparison."""
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), API_KEY.encode()):
        raise _UNAUTHORIZED
    return x_api_key


def verify_webhook_space(space_id: int) -> None:
    """Webhooks are only accepted for the space this shop is connected to."""
    if space_id != GATEWAY_SPACE_ID:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": {"code": "UNKNOWN_SPACE", "message": f"Space {space_id} is not handled here"}},
        )
