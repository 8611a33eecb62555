"""
Regression tests — marked with @pytest.mark.regression.
These must never break.
"""
import threading
import pytest
from decimal import Decimal
from app.gateway.errors import ClientRejectionError
from app.gateway.memory import gateway
from app.models.gateway import RefundQuery
from app.models.refund import RefundJobState
from app.repository.store import store
from app.validators.refund_validator import ConflictError
from conftest import cancel_product, force_state


pytestmark = pytest.mark.regression


def _reduction(service, order_id, **fields):
    job_id = service.create_job(order_id, cancel_product(**fields))
    refund = service.create_refund_object(store.get_job(job_id))
    assert len(refund.reductions) == 1
    return refund.reductions[0]


def test_gateway_price_discrepancy_whole_units(service):
    """2 units at 30.00 in the shop, 28.00 on the gateway, both units refunded in full."""
    reduction = _reduction(service, 21, amount_211="60.00", quantity_211=2)
    assert reduction.line_item_unique_id == "product-211"
    assert reduction.quantity_reduction == Decimal("2")
    # No unit left on the line, so the whole 2.00 discrepancy is sent as is
    assert reduction.unit_price_reduction == Decimal("2.00")


def test_gateway_price_discrepancy_reduced_value(service):
    """56.00 for 2 units stays below the shop's 60.00, so the gateway units are counted instead."""
    reduction = _reduction(service, 21, amount_211="56.00", quantity_211=2)
    assert reduction.quantity_reduction == Decimal("2")
    assert reduction.unit_price_reduction == Decimal("0")


def test_reduced_value_on_two_unit_line(service):
    """40.00 against a 50.00 two-unit line: 1 whole unit plus 15.00 on the unit left."""
    reduction = _reduction(service, 22, amount_221="40.00", quantity_221=2)
    assert reduction.quantity_reduction == Decimal("1")
    assert reduction.unit_price_reduction == Decimal("15")


def test_reduced_value_is_refunded_exactly_by_gateway(service):
    job = service.execute_refund(22, cancel_product(amount_221="40.00", quantity_221=2))
    refund = gateway.search_refunds(1, RefundQuery(refund_id=job.refund_id))[0]
    assert refund.amount == Decimal("40.00")


def test_sweep_with_ten_seconds_left_processes_nothing(make_service):
    service = make_service(clock=lambda: 5000.0)
    job_id = service.create_job(1, cancel_product(amount_11="30.00"))

    report = service.update_refunds(end_time=5000.0 + 10)

    assert report.deadline_reached
    assert report.sent == [] and report.applied == [] and report.failed == []
    assert store.get_job(job_id).state == RefundJobState.CREATED


def test_client_rejection_during_sweep_fails_job_without_raising(service):
    job_id = service.create_job(1, cancel_product(amount_11="30.00"))
    gateway.queue_error(ClientRejectionError("[5e1c-8a] Refund amount exceeds the transaction", 400))

    report = service.update_refunds()

    job = store.get_job(job_id)
    assert job.state == RefundJobState.FAILURE
    assert job.failure_reason == {
        "en-US": "Could not send the refund to WeArePlanet. Error: Refund amount exceeds the transaction"
    }
    assert report.sent == []
    assert report.failed == [job_id]


def test_at_most_one_running_job_per_transaction(service):
    service.execute_refund(1, cancel_product(amount_11="30.00"))
    for _ in range(3):
        with pytest.raises(ConflictError):
            service.execute_refund(1, cancel_product(amount_12="20.00"))
    running = [j for j in store.list_jobs(order_id=1) if j.is_running]
    assert len(running) == 1


def test_racing_creations_leave_one_running_job(service):
    workers = 8
    barrier = threading.Barrier(workers)
    created, conflicts, errors = [], [], []

    def create():
        barrier.wait()
        try:
            created.append(service.create_job(1, cancel_product(amount_11="30.00")))
        except ConflictError:
            conflicts.append(1)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=create) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(created) == 1
    assert len(conflicts) == workers - 1
    running = [j for j in store.list_jobs(order_id=1) if j.is_running]
    assert [j.id for j in running] == created


def test_sweep_lists_failed_apply_under_failed(make_service, service):
    from app.strategy import ApplyError, DefaultStrategy

    class BrokenShop(DefaultStrategy):
        def apply_refund(self, order, payload):
            raise ApplyError("Order locked by another process")

    job = service.execute_refund(1, cancel_product(amount_11="30.00"))
    force_state(job.id, RefundJobState.APPLY)

    report = make_service(strategy=BrokenShop()).update_refunds()

    assert report.applied == []
    assert report.failed == [job.id]
    current = store.get_job(job.id)
    assert current.state == RefundJobState.APPLY
    assert current.apply_tries == 1


def test_apply_is_tried_exactly_three_times(make_service, service):
    from app.strategy import ApplyError, DefaultStrategy

    class BrokenShop(DefaultStrategy):
        def apply_refund(self, order, payload):
            raise ApplyError("Order locked by another process")

    job = service.execute_refund(1, cancel_product(amount_11="30.00"))
    force_state(job.id, RefundJobState.APPLY)
    broken = make_service(strategy=BrokenShop())

    for _ in range(3):
        broken.apply_refund_to_shop(job.id)
    assert store.get_job(job.id).state == RefundJobState.APPLY

    broken.apply_refund_to_shop(job.id)
    assert store.get_job(job.id).state == RefundJobState.FAILURE


def test_refund_after_partial_refund_uses_gateway_remainder(service):
    """A second refund is computed from what the first one left on the gateway."""
    first = service.execute_refund(22, cancel_product(amount_221="40.00", quantity_221=2))
    force_state(first.id, RefundJobState.SUCCESS)

    # 1 unit left on the gateway at 25.00 - 15.00 = 10.00
    second = service.execute_refund(22, cancel_product(amount_221="10.00", quantity_221=1))
    assert second.state == RefundJobState.SENT
    reduction = gateway.received[-1].reductions[0]
    assert reduction.quantity_reduction == Decimal("1")
    assert reduction.unit_price_reduction == Decimal("0")
