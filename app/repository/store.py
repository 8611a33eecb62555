"""
In-memory data store with transaction-scoped locking.

No business logic — only data access primitives. Reads outside a store
transaction return copies. Writes go through StoreTransaction, which holds the
exclusive lock of one (space_id, transaction_id) pair, stages changes on
copies and publishes them on commit.
"""
import itertools
import threading
from contextlib import contextmanager
from typing import Iterator, Optional
from app.config import LOCK_WAIT_TIMEOUT_SECONDS
from app.models.order import Order
from app.models.refund import RefundJob, RefundJobState
from app.models.transaction import TransactionInfo

_RUNNING_STATES = (
    RefundJobState.CREATED,
    RefundJobState.SENT,
    RefundJobState.PENDING,
    RefundJobState.APPLY,
)


class LockTimeoutError(Exception):
    """Raised when a transaction lock could not be acquired in time."""

    def __init__(self, space_id: int, transaction_id: int, timeout: float):
        self.space_id = space_id
        self.transaction_id = transaction_id
        super().__init__(
            f"Could not lock transaction {transaction_id} of space {space_id} within {timeout} seconds"
        )


class StoreTransaction:
    """Unit of work bound to one locked (space_id, transaction_id) pair."""

    def __init__(self, store: "InMemoryStore", space_id: int, transaction_id: int):
        self._store = store
        self.space_id = space_id
        self.transaction_id = transaction_id
        self._jobs: dict[int, RefundJob] = {}
        self._orders: dict[int, Order] = {}

    def load_job(self, job_id: int) -> Optional[RefundJob]:
        """Reload a job, seeing this transaction's own uncommitted changes."""
        if job_id in self._jobs:
            return self._jobs[job_id].model_copy(deep=True)
        return self._store.get_job(job_id)

    def save_job(self, job: RefundJob) -> RefundJob:
        """Stage a job. New jobs get their id here, even if the transaction is rolled back later."""
        if job.id is None:
            job.id = self._store._next_job_id()
        self._jobs[job.id] = job.model_copy(deep=True)
        return job

    def load_transaction_info(self) -> Optional[TransactionInfo]:
        return self._store.load_transaction_info(self.space_id, self.transaction_id)

    def is_refund_running(self) -> bool:
        staged = [j for j in self._jobs.values() if j.state in _RUNNING_STATES]
        return bool(staged) or self._store.is_refund_running_for_transaction(self.space_id, self.transaction_id)

    def load_order(self, order_id: int) -> Optional[Order]:
        if order_id in self._orders:
            return self._orders[order_id].model_copy(deep=True)
        return self._store.get_order(order_id)

    def save_order(self, order: Order) -> None:
        self._orders[order.id] = order.model_copy(deep=True)

    def commit(self) -> None:
        self._store._publish(self._jobs, self._orders)
        self._jobs = {}
        self._orders = {}

    def rollback(self) -> None:
        self._jobs = {}
        self._orders = {}


class InMemoryStore:
    """In-memory store for refund jobs, orders and transaction infos."""

    def __init__(self, lock_timeout: float = 50.0):
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        # (space_id, transaction_id) -> lock held for the duration of a StoreTransaction
        self._transaction_locks: dict[tuple[int, int], threading.Lock] = {}
        self._job_ids = itertools.count(1)
        self._jobs: dict[int, RefundJob] = {}
        self._orders: dict[int, Order] = {}
        self._transaction_infos: dict[tuple[int, int], TransactionInfo] = {}
        # order_id -> (space_id, transaction_id)
        self._transactions_by_order: dict[int, tuple[int, int]] = {}

    def reset(self) -> None:
        """Drop all data — intended for test isolation only."""
        with self._lock:
            self._transaction_locks.clear()
            self._job_ids = itertools.count(1)
            self._jobs.clear()
            self._orders.clear()
            self._transaction_infos.clear()
            self._transactions_by_order.clear()

    # ── Transactions ────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self, space_id: int, transaction_id: int) -> Iterator[StoreTransaction]:
        """
        Lock the (space_id, transaction_id) pair and yield a unit of work.

        Staged changes are committed when the block exits normally and rolled
        back when it raises. An explicit commit() inside the block publishes
        the changes made so far.

        Raises:
            LockTimeoutError: If another transaction holds the pair for longer than lock_timeout.
        """
        with self._lock:
            pair_lock = self._transaction_locks.setdefault((space_id, transaction_id), threading.Lock())
        if not pair_lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError(space_id, transaction_id, self.lock_timeout)
        tx = StoreTransaction(self, space_id, transaction_id)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        else:
            tx.commit()
        finally:
            pair_lock.release()

    def _next_job_id(self) -> int:
        with self._lock:
            return next(self._job_ids)

    def _publish(self, jobs: dict[int, RefundJob], orders: dict[int, Order]) -> None:
        with self._lock:
            self._jobs.update(jobs)
            self._orders.update(orders)

    # ── Refund jobs ─────────────────────────────────────────────────────────

    def get_job(self, job_id: int) -> Optional[RefundJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy(deep=True) if job else None

    def list_jobs(self, order_id: Optional[int] = None) -> list[RefundJob]:
        with self._lock:
            jobs = [j.model_copy(deep=True) for j in self._jobs.values()]
        if order_id is not None:
            jobs = [j for j in jobs if j.order_id == order_id]
        return sorted(jobs, key=lambda j: j.id)

    def load_running_refund_for_transaction(self, space_id: int, transaction_id: int) -> Optional[RefundJob]:
        with self._lock:
            for job in self._jobs.values():
                if (
                    job.space_id == space_id
                    and job.transaction_id == transaction_id
                    and job.state in _RUNNING_STATES
                ):
                    return job.model_copy(deep=True)
        return None

    def is_refund_running_for_transaction(self, space_id: int, transaction_id: int) -> bool:
        return self.load_running_refund_for_transaction(space_id, transaction_id) is not None

    def load_job_by_external_id(self, space_id: int, external_id: str) -> Optional[RefundJob]:
        with self._lock:
            for job in self._jobs.values():
                if job.space_id == space_id and job.external_id == external_id:
                    return job.model_copy(deep=True)
        return None

    def load_not_sent_job_ids(self) -> list[int]:
        with self._lock:
            return sorted(j.id for j in self._jobs.values() if j.state == RefundJobState.CREATED)

    def load_not_applied_job_ids(self) -> list[int]:
        with self._lock:
            return sorted(j.id for j in self._jobs.values() if j.state == RefundJobState.APPLY)

    # ── Orders ──────────────────────────────────────────────────────────────

    def get_order(self, order_id: int) -> Optional[Order]:
        with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    def save_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.id] = order.model_copy(deep=True)

    # ── Transaction infos ───────────────────────────────────────────────────

    def get_transaction_info_for_order(self, order_id: int) -> Optional[TransactionInfo]:
        with self._lock:
            key = self._transactions_by_order.get(order_id)
            info = self._transaction_infos.get(key) if key else None
            return info.model_copy() if info else None

    def load_transaction_info(self, space_id: int, transaction_id: int) -> Optional[TransactionInfo]:
        with self._lock:
            info = self._transaction_infos.get((space_id, transaction_id))
            return info.model_copy() if info else None

    def save_transaction_info(self, info: TransactionInfo) -> None:
        with self._lock:
            key = (info.space_id, info.transaction_id)
            self._transaction_infos[key] = info.model_copy()
            self._transactions_by_order[info.order_id] = key


# Global singleton: initialized at startup and populated by seed_data
store = InMemoryStore(lock_timeout=LOCK_WAIT_TIMEOUT_SECONDS)
