"""Bounded hand-off channel feeding a fixed pool of persist workers."""

from __future__ import annotations

from queue import Full, Queue
from threading import Event, Lock, Thread
from typing import Callable, List

import structlog

from ..errors import PersistenceError
from .dedup import MemberStore, UpsertResult
from .records import MemberRecord

PersistCallback = Callable[[MemberRecord, "UpsertResult | None", "Exception | None"], None]

MAX_WORKERS = 32

_STOP = object()


class ShutdownToken:
    """Cooperative shutdown signal shared by producers and the pool."""

    def __init__(self) -> None:
        self._event = Event()

    def request(self) -> None:
        self._event.set()

    @property
    def requested(self) -> bool:
        return self._event.is_set()


class PersistWorkerPool:
    """Fixed set of threads draining a bounded queue into the store.

    Producers block while the queue is full and workers block while it is
    empty. ``close`` enqueues one stop marker per worker behind any pending
    records, so everything already handed off is persisted before the
    workers exit.
    """

    def __init__(
        self,
        store: MemberStore,
        workers: int = 4,
        queue_size: int = 256,
        token: ShutdownToken | None = None,
        name: str = "persist",
        put_timeout: float = 0.1,
    ) -> None:
        if not 1 <= workers <= MAX_WORKERS:
            raise ValueError(f"workers must be between 1 and {MAX_WORKERS}")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self.store = store
        self.workers = workers
        self.name = name
        self.token = token or ShutdownToken()
        self.put_timeout = put_timeout
        self.logger = structlog.get_logger("member_scraper.pool")
        self._queue: Queue = Queue(maxsize=queue_size)
        self._threads: List[Thread] = []
        self._lock = Lock()
        self._closed = False

    @property
    def started(self) -> bool:
        return bool(self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads or self._closed:
                return
            for index in range(self.workers):
                thread = Thread(target=self._run, name=f"{self.name}-{index}", daemon=True)
                thread.start()
                self._threads.append(thread)
        self.logger.debug("pool_started", workers=self.workers, queue_size=self._queue.maxsize)

    def submit(self, record: MemberRecord, on_done: PersistCallback) -> bool:
        """Hand ``record`` to the workers; ``False`` once shutdown was requested."""

        if not self.started:
            raise RuntimeError("PersistWorkerPool.start must be called before submit")
        while not self.token.requested:
            try:
                self._queue.put((record, on_done), timeout=self.put_timeout)
                return True
            except Full:
                continue
        return False

    def join(self) -> None:
        """Block until every handed-off record has been processed."""

        self._queue.join()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            threads = list(self._threads)
        for _ in threads:
            self._queue.put(_STOP)
        for thread in threads:
            thread.join()
        self.logger.debug("pool_closed", workers=len(threads))

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                record, on_done = item
                self._persist(record, on_done)
            finally:
                self._queue.task_done()

    def _persist(self, record: MemberRecord, on_done: PersistCallback) -> None:
        result: UpsertResult | None = None
        error: Exception | None = None
        try:
            result = self.store.upsert(record)
        except PersistenceError as exc:
            error = exc
        except Exception as exc:  # noqa: BLE001
            self.logger.error(
                "upsert_crashed",
                entity_id=record.entity_id,
                source_group=record.source_group,
                error=str(exc),
            )
            error = exc
        try:
            on_done(record, result, error)
        except Exception as exc:  # noqa: BLE001
            self.logger.error("persist_callback_failed", entity_id=record.entity_id, error=str(exc))


__all__ = ["MAX_WORKERS", "PersistCallback", "PersistWorkerPool", "ShutdownToken"]
