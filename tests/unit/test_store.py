"""Unit tests for app/repository/store.py."""
import threading
import pytest
from datetime import datetime, timezone
from app.models.refund import RefundJob, RefundJobState
from app.repository.store import InMemoryStore, LockTimeoutError, store


def _job(state=RefundJobState.CREATED, order_id=1, transaction_id=1001, external_id="1-abc") -> RefundJob:
    now = datetime.now(timezone.utc)
    return RefundJob(
        external_id=external_id,
        order_id=order_id,
        space_id=1,
        transaction_id=transaction_id,
        refund_parameters={"cancel_product": {"amount_11": "30.00"}},
        state=state,
        created_at=now,
        updated_at=now,
    )


def test_commit_on_clean_exit():
    with store.transaction(1, 1001) as tx:
        job = tx.save_job(_job())
    assert job.id == 1
    assert store.get_job(1).state == RefundJobState.CREATED


def test_rollback_on_exception():
    with pytest.raises(RuntimeError):
        with store.transaction(1, 1001) as tx:
            tx.save_job(_job())
            raise RuntimeError("boom")
    assert store.get_job(1) is None
    assert store.list_jobs() == []


def test_explicit_commit_survives_later_exception():
    with pytest.raises(RuntimeError):
        with store.transaction(1, 1001) as tx:
            job = tx.save_job(_job())
            tx.commit()
            job.state = RefundJobState.FAILURE
            tx.save_job(job)
            raise RuntimeError("boom")
    assert store.get_job(1).state == RefundJobState.CREATED


def test_transaction_sees_its_own_staged_changes():
    with store.transaction(1, 1001) as tx:
        job = tx.save_job(_job())
        assert tx.is_refund_running()
        assert tx.load_job(job.id).external_id == "1-abc"
        # Not published yet
        assert store.get_job(job.id) is None


def test_reads_return_copies():
    with store.transaction(1, 1001) as tx:
        tx.save_job(_job())
    job = store.get_job(1)
    job.state = RefundJobState.FAILURE
    assert store.get_job(1).state == RefundJobState.CREATED

    order = store.get_order(1)
    order.products[0].quantity_refunded = 2
    assert store.get_order(1).products[0].quantity_refunded == 0


def test_lock_timeout_when_pair_is_held():
    local = InMemoryStore(lock_timeout=0.05)
    entered = threading.Event()
    release = threading.Event()

    def hold():
        with local.transaction(1, 1001):
            entered.set()
            release.wait(2)

    holder = threading.Thread(target=hold)
    holder.start()
    try:
        assert entered.wait(2)
        with pytest.raises(LockTimeoutError):
            with local.transaction(1, 1001):
                pass
        # Other pairs are not blocked
        with local.transaction(1, 1002):
            pass
    finally:
        release.set()
        holder.join()

    with local.transaction(1, 1001):
        pass


def test_concurrent_transactions_on_same_pair_are_serialized():
    local = InMemoryStore(lock_timeout=5)
    counter = {"value": 0, "max_inside": 0, "inside": 0}
    guard = threading.Lock()

    def work():
        with local.transaction(1, 1001):
            with guard:
                counter["inside"] += 1
                counter["max_inside"] = max(counter["max_inside"], counter["inside"])
            counter["value"] += 1
            with guard:
                counter["inside"] -= 1

    threads = [threading.Thread(target=work) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert counter["value"] == 10
    assert counter["max_inside"] == 1


def test_running_refund_queries():
    with store.transaction(1, 1001) as tx:
        running = tx.save_job(_job(state=RefundJobState.SENT))
    with store.transaction(1, 1002) as tx:
        tx.save_job(_job(state=RefundJobState.SUCCESS, order_id=2, transaction_id=1002, external_id="2-abc"))

    assert store.is_refund_running_for_transaction(1, 1001)
    assert store.load_running_refund_for_transaction(1, 1001).id == running.id
    assert not store.is_refund_running_for_transaction(1, 1002)


def test_not_sent_and_not_applied_job_ids():
    states = [RefundJobState.CREATED, RefundJobState.APPLY, RefundJobState.SENT, RefundJobState.CREATED]
    for i, state in enumerate(states, start=1):
        with store.transaction(1, 1000 + i) as tx:
            tx.save_job(_job(state=state, order_id=i, transaction_id=1000 + i, external_id=f"{i}-x"))
    assert store.load_not_sent_job_ids() == [1, 4]
    assert store.load_not_applied_job_ids() == [2]


def test_load_job_by_external_id_is_scoped_to_space():
    with store.transaction(1, 1001) as tx:
        tx.save_job(_job(external_id="1-ext"))
    assert store.load_job_by_external_id(1, "1-ext").id == 1
    assert store.load_job_by_external_id(2, "1-ext") is None


def test_transaction_info_lookup_by_order():
    info = store.get_transaction_info_for_order(1)
    assert (info.space_id, info.transaction_id) == (1, 1001)
    assert store.get_transaction_info_for_order(25) is None
