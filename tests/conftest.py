"""Shared fixtures for all test modules."""
import os
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("API_KEY", "TEST-KEY-2026")
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("GATEWAY_SPACE_ID", "1")
os.environ.setdefault("PLATFORM_VERSION", "1.7.8.0")

from app.main import app
from app.gateway.memory import gateway
from app.models.refund import RefundJobState
from app.repository.store import store
from app.services.refund_service import RefundService
from app.strategy.default import DefaultStrategy
from seed_data import load_seed_data

REFUNDABLE_STATES = ["COMPLETED", "DECLINE", "FULFILL"]


@pytest.fixture(autouse=True)
def reset_state():
    """Reset the in-memory store and gateway before each test to ensure isolation."""
    store.reset()
    gateway.reset()
    load_seed_data()
    yield


@pytest.fixture
def make_service():
    """Build a RefundService on the seeded store and gateway, with an optional strategy and clock."""

    def _make(strategy=None, clock=None) -> RefundService:
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        return RefundService(
            store=store,
            gateway=gateway,
            strategy=strategy or DefaultStrategy("1.7.8.0"),
            refundable_states=REFUNDABLE_STATES,
            compute_precision=2,
            gateway_name="WeArePlanet",
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service) -> RefundService:
    return make_service()


@pytest.fixture
def client():
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def auth_headers():
    return {"X-API-Key": "TEST-KEY-2026"}


def cancel_product(**fields) -> dict:
    """Build a refund payload the way the shop's cancel_product form posts it."""
    return {"cancel_product": {key: str(value) for key, value in fields.items()}}


def force_state(job_id: int, state: RefundJobState) -> None:
    """Put a job in a given state without going through the state machine."""
    job = store.get_job(job_id)
    with store.transaction(job.space_id, job.transaction_id) as tx:
        job = tx.load_job(job_id)
        job.state = state
        tx.save_job(job)
