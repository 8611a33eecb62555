"""
FastAPI application entry point.

Configures logging, registers middleware (in order), routes and exception
handlers, and seeds the in-memory store and gateway outside production.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import LOG_LEVEL, is_production
from app.middleware import RequestIDMiddleware, StructuredLoggingMiddleware
from app.repository.store import LockTimeoutError
from app.routes.orders import router as orders_router
from app.routes.refunds import router as refunds_router
from app.routes.webhooks import router as webhooks_router
from seed_data import load_seed_data

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(application: FastAPI):
    if not is_production():
        load_seed_data()
    yield


def create_app() -> FastAPI:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    docs_url = None if is_production() else "/docs"
    redoc_url = None if is_production() else "/redoc"

    application = FastAPI(
        title="Refund Reconciliation Service",
        description="Idempotent, retryable refund jobs between the shop and the payment gateway.",
        version="1.0.0",
        docs_url=docs_url,
        redoc_url=redoc_url,
        lifespan=lifespan,
    )

    # ── Middleware stack (order matters: last added runs first) ─────────────
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(StructuredLoggingMiddleware)

    # ── Routes ──────────────────────────────────────────────────────────────
    application.include_router(refunds_router)
    application.include_router(webhooks_router)
    application.include_router(orders_router)

    # ── Exception handlers ───────────────────────────────────────────────────
    @application.exception_handler(LockTimeoutError)
    async def lock_timeout_handler(request: Request, exc: LockTimeoutError):
        return JSONResponse(
            status_code=409,
            content={"error": {"code": "TRANSACTION_LOCKED", "message": "The transaction is busy, retry later"}},
        )

    @application.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Never leak stack traces to clients."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "INTERNAL_ERROR", "message": "An unexpected error occurred"}},
        )

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from app.config import PORT

    uvicorn.run(app, host="0.0.0.0", port=PORT)
