"""Integration tests — full HTTP cycle per scenario."""
import threading
from app.gateway.errors import TransientError
from app.gateway.memory import gateway
from app.models.gateway import RefundState
from app.repository.store import store
from conftest import cancel_product


def _create(client, auth_headers, order_id=1, **fields):
    return client.post(
        "/api/v1/refunds",
        json={"order_id": order_id, "parameters": cancel_product(**(fields or {"amount_11": "30.00"}))},
        headers=auth_headers,
    )


def _webhook(client, refund_id, space_id=1):
    return client.post(
        "/api/v1/webhooks/refund",
        json={"space_id": space_id, "entity_id": refund_id, "listener_entity_technical_name": "Refund"},
    )


def test_refund_lifecycle(client, auth_headers):
    resp = _create(client, auth_headers, amount_11="60.00", quantity_11=2, credit_slip=1)
    assert resp.status_code == 201
    job = resp.json()["data"]
    assert job["state"] == "SENT"
    assert job["refund_id"] == 1001

    resp = _webhook(client, job["refund_id"])
    assert resp.status_code == 200
    assert resp.json()["data"]["state"] == "SUCCESS"

    resp = client.get("/api/v1/orders/1", headers=auth_headers)
    order = resp.json()["data"]
    assert order["status"] == "PARTIALLY_REFUNDED"
    assert order["credit_slips"][0]["id"] == "CS-1-001"
    assert order["products"][0]["quantity_refunded"] == 2


def test_get_refund_job_by_id(client, auth_headers):
    job_id = _create(client, auth_headers).json()["data"]["id"]
    resp = client.get(f"/api/v1/refunds/{job_id}", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["id"] == job_id


def test_get_unknown_refund_job(client, auth_headers):
    resp = client.get("/api/v1/refunds/999", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"]["code"] == "REFUND_JOB_NOT_FOUND"


def test_list_refund_jobs_by_order(client, auth_headers):
    _create(client, auth_headers, order_id=1)
    _create(client, auth_headers, order_id=2, amount_21="30.00")
    resp = client.get("/api/v1/refunds", params={"order_id": 2}, headers=auth_headers)
    jobs = resp.json()["data"]
    assert [j["order_id"] for j in jobs] == [2]
    assert len(client.get("/api/v1/refunds", headers=auth_headers).json()["data"]) == 2


def test_voucher_only_refund_returns_no_job(client, auth_headers):
    resp = _create(client, auth_headers, voucher=1, voucher_refund_type=1)
    assert resp.status_code == 200
    assert resp.json()["data"] is None


def test_unrefundable_transaction_rejected(client, auth_headers):
    resp = _create(client, auth_headers, order_id=24, amount_241="40.00")
    assert resp.status_code == 422
    assert resp.json()["detail"]["error"]["code"] == "INVALID_TRANSACTION_STATE"


def test_order_without_transaction_rejected(client, auth_headers):
    resp = _create(client, auth_headers, order_id=25, amount_251="40.00")
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"]["code"] == "TRANSACTION_NOT_FOUND"


def test_running_refund_conflicts(client, auth_headers):
    assert _create(client, auth_headers).status_code == 201
    resp = _create(client, auth_headers, amount_12="20.00")
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"]["code"] == "REFUND_RUNNING"


def test_malformed_request_rejected(client, auth_headers):
    resp = client.post(
        "/api/v1/refunds",
        json={"order_id": 1, "parameters": cancel_product(amount_11="30.00"), "operator": "x"},
        headers=auth_headers,
    )
    assert resp.status_code == 422


def test_locked_transaction_returns_409(client, auth_headers, monkeypatch):
    monkeypatch.setattr(store, "lock_timeout", 0.05)
    entered = threading.Event()
    release = threading.Event()

    def hold():
        with store.transaction(1, 1001):
            entered.set()
            release.wait(2)

    holder = threading.Thread(target=hold)
    holder.start()
    try:
        assert entered.wait(2)
        resp = _create(client, auth_headers)
    finally:
        release.set()
        holder.join()
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "TRANSACTION_LOCKED"


def test_requires_api_key(client):
    assert client.get("/api/v1/refunds").status_code == 401
    assert client.get("/api/v1/orders/1", headers={"X-API-Key": "wrong"}).status_code == 401
    assert client.post("/api/v1/refunds/sweep").status_code == 401


def test_pending_and_sweep(client, auth_headers):
    gateway.queue_error(TransientError("Gateway timed out", 504))
    job = _create(client, auth_headers).json()["data"]
    assert job["state"] == "CREATED"

    resp = client.get("/api/v1/refunds/pending", headers=auth_headers)
    assert resp.json()["data"]["has_pending_refunds"] is True

    resp = client.post("/api/v1/refunds/sweep", json={"max_runtime_seconds": 60}, headers=auth_headers)
    assert resp.status_code == 200
    report = resp.json()["data"]
    assert report["sent"] == [job["id"]]
    assert report["deadline_reached"] is False

    resp = client.get("/api/v1/refunds/pending", headers=auth_headers)
    assert resp.json()["data"]["has_pending_refunds"] is False


def test_sweep_without_body(client, auth_headers):
    resp = client.post("/api/v1/refunds/sweep", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["data"] == {"sent": [], "applied": [], "failed": [], "deadline_reached": False}


def test_update_order_refunds(client, auth_headers):
    gateway.queue_error(TransientError("Gateway timed out", 504))
    job = _create(client, auth_headers).json()["data"]

    resp = client.post("/api/v1/refunds/orders/1/update", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["data"][0]["id"] == job["id"]
    assert resp.json()["data"][0]["state"] == "SENT"


def test_update_order_refunds_keeps_job_on_gateway_error(client, auth_headers):
    gateway.queue_error(TransientError("Gateway timed out", 504))
    job = _create(client, auth_headers).json()["data"]
    gateway.queue_error(TransientError("Gateway timed out", 504))

    resp = client.post("/api/v1/refunds/orders/1/update", headers=auth_headers)
    assert resp.status_code == 200
    jobs = resp.json()["data"]
    assert [j["id"] for j in jobs] == [job["id"]]
    assert jobs[0]["state"] == "CREATED"

    resp = client.post("/api/v1/refunds/orders/1/update", headers=auth_headers)
    assert resp.json()["data"][0]["state"] == "SENT"


def test_webhook_failed_refund(client, auth_headers):
    gateway.refund_state = RefundState.PENDING
    job = _create(client, auth_headers).json()["data"]
    assert job["state"] == "PENDING"
    gateway.set_refund_state(1, job["refund_id"], RefundState.FAILED, "Card expired")

    resp = _webhook(client, job["refund_id"])
    assert resp.json()["data"]["state"] == "FAILURE"
    assert resp.json()["data"]["failure_reason"] == {"en-US": "Card expired"}


def test_webhook_unknown_space(client):
    resp = _webhook(client, 1001, space_id=99)
    assert resp.status_code == 403
    assert resp.json()["detail"]["error"]["code"] == "UNKNOWN_SPACE"


def test_webhook_unknown_refund(client):
    resp = _webhook(client, 4242)
    assert resp.status_code == 404
    assert resp.json()["detail"]["error"]["code"] == "REFUND_NOT_FOUND"


def test_unknown_order(client, auth_headers):
    resp = client.get("/api/v1/orders/999", headers=auth_headers)
    assert resp.status_code == 404


def test_response_envelope_and_request_id(client, auth_headers):
    resp = client.get("/api/v1/refunds", headers={**auth_headers, "X-Request-ID": "req-123"})
    body = resp.json()
    assert resp.headers["X-Request-ID"] == "req-123"
    assert body["meta"]["request_id"] == "req-123"
    assert "timestamp" in body["meta"]


def test_malformed_request_id_is_replaced(client, auth_headers):
    resp = client.get("/api/v1/refunds", headers={**auth_headers, "X-Request-ID": "bad id with spaces"})
    assert resp.headers["X-Request-ID"] != "bad id with spaces"
