"""Ingestion coordinator: scrape targets, normalise, hand off to persist workers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Callable, Iterable

import structlog

from ..errors import FetchError, ValidationError
from ..ui import ProgressReporter
from .dedup import MemberStore, UpsertResult
from .records import MemberRecord, normalize_record
from .thread_pool import PersistWorkerPool, ShutdownToken

CANCELLED = "cancelled"


@dataclass
class TargetReport:
    """Per-target accounting; every received record lands in one bucket."""

    target: str
    requested: int
    received: int = 0
    persisted: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None

    @property
    def balanced(self) -> bool:
        return self.received == self.persisted + self.skipped + self.failed

    @property
    def ok(self) -> bool:
        return self.error is None

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class IngestionReport:
    targets: list[TargetReport] = field(default_factory=list)
    cancelled: bool = False

    def totals(self) -> dict[str, int]:
        keys = ("requested", "received", "persisted", "skipped", "failed")
        return {key: sum(getattr(report, key) for report in self.targets) for key in keys}

    def report_for(self, target: str) -> TargetReport | None:
        return next((report for report in self.targets if report.target == target), None)

    @property
    def failed_targets(self) -> list[TargetReport]:
        return [report for report in self.targets if not report.ok]


def _default_logger(target: str) -> structlog.BoundLogger:
    return structlog.get_logger("member_scraper.ingestion").bind(target=target)


class IngestionCoordinator:
    """Drive raw records from a source client into the member store.

    Targets are scraped one after another on the calling thread; the records
    of each target are fanned out to a bounded pool of persist workers and
    the coordinator waits for the target to drain before moving on.
    """

    def __init__(
        self,
        store: MemberStore,
        workers: int = 4,
        queue_size: int = 256,
        progress_factory: Callable[[str], ProgressReporter] | None = None,
        logger_factory: Callable[[str], structlog.BoundLogger] = _default_logger,
        token: ShutdownToken | None = None,
    ) -> None:
        self.store = store
        self.workers = workers
        self.queue_size = queue_size
        self.progress_factory = progress_factory
        self.logger_factory = logger_factory
        self.token = token or ShutdownToken()

    def request_shutdown(self) -> None:
        """Stop handing off new records; in-flight upserts still complete."""

        self.token.request()

    def run(self, targets: Iterable[str], max_per_target: int, client) -> IngestionReport:
        if max_per_target < 0:
            raise ValueError("max_per_target must be >= 0")
        report = IngestionReport()
        pool = PersistWorkerPool(
            self.store, workers=self.workers, queue_size=self.queue_size, token=self.token
        )
        pool.start()
        try:
            for target in targets:
                if self.token.requested:
                    report.targets.append(
                        TargetReport(target=target, requested=max_per_target, error=CANCELLED)
                    )
                    continue
                report.targets.append(self._ingest_target(pool, target, max_per_target, client))
        finally:
            pool.close()
        report.cancelled = self.token.requested
        return report

    def _ingest_target(
        self, pool: PersistWorkerPool, target: str, max_per_target: int, client
    ) -> TargetReport:
        log = self.logger_factory(target)
        report = TargetReport(target=target, requested=max_per_target)
        if max_per_target == 0:
            log.info("target_skipped", reason="zero_limit")
            return report

        try:
            raw_records = list(client.scrape(target, max_per_target))
        except FetchError as exc:
            report.error = exc.reason
            log.warning("target_fetch_failed", error=exc.reason)
            return report
        except Exception as exc:  # noqa: BLE001
            report.error = str(exc) or type(exc).__name__
            log.error("target_fetch_crashed", error=report.error)
            return report

        if len(raw_records) > max_per_target:
            log.warning("target_overflow_ignored", extra=len(raw_records) - max_per_target)
            raw_records = raw_records[:max_per_target]
        report.received = len(raw_records)

        progress = self.progress_factory(target) if self.progress_factory else None
        if progress is not None:
            progress.set_label(target)
            progress.start(report.received)

        tally_lock = Lock()

        def _on_done(
            record: MemberRecord, result: UpsertResult | None, error: Exception | None
        ) -> None:
            with tally_lock:
                if error is None:
                    report.persisted += 1
                else:
                    report.failed += 1
            if error is not None:
                log.warning("upsert_failed", entity_id=record.entity_id, error=str(error))
            if progress is not None:
                progress.advance(persisted=error is None, failed=error is not None)

        try:
            for index, raw in enumerate(raw_records):
                try:
                    record = normalize_record(raw, target)
                except ValidationError as exc:
                    with tally_lock:
                        report.skipped += 1
                    log.info("record_skipped", index=index, reason=str(exc))
                    if progress is not None:
                        progress.advance(skipped=True)
                    continue
                if not pool.submit(record, _on_done):
                    abandoned = report.received - index
                    with tally_lock:
                        report.failed += abandoned
                    report.error = CANCELLED
                    log.warning("target_cancelled", abandoned=abandoned)
                    break
            pool.join()
        finally:
            if progress is not None:
                progress.close()

        log.info("target_ingested", **report.as_dict())
        return report


__all__ = ["CANCELLED", "IngestionCoordinator", "IngestionReport", "TargetReport"]
