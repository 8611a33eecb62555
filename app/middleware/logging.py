import time
import json
import logging
from datetime import datetime, timezone
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("access")


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured JSON access log line per request. Never logs the API key value."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.monotonic()

        response = await call_next(request)

        # Set by RequestIDMiddleware, which runs inside this one
        request_id = getattr(request.state, "request_id", "unknown")
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": request_id,
            "method": request.method,
            "path": str(request.url.path),
            "status_code": response.status_code,
            "duration_ms": round((time.monotonic() - start) * 1000),
            "auth": "present" if "X-API-Key" in request.headers else "missing",
        }
        if response.status_code >= 500:
            logger.error(json.dumps(log_entry))
        else:
            logger.info(json.dumps(log_entry))

        return response
