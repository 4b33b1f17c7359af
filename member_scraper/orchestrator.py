"""Pipeline orchestrator wiring connect, ingestion, persistence and export."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable

import structlog

from .config import GlobalConfig
from .engine import IngestionCoordinator, IngestionReport, MemberStore, ShutdownToken
from .engine.exporter import artifact_paths, export_rows
from .errors import AuthError, ExportError, PersistenceError, StorageUnavailable
from .infra import SourceClient, SQLiteManager
from .logging_conf import LOGGER_NAME
from .ui import ProgressReporter


class PipelineState(str, Enum):
    IDLE = "idle"
    CONNECTED = "connected"
    SCRAPING = "scraping"
    PERSISTING = "persisting"
    EXPORTING = "exporting"
    DONE = "done"
    FAILED = "failed"


_ALLOWED_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.CONNECTED, PipelineState.FAILED},
    PipelineState.CONNECTED: {PipelineState.SCRAPING, PipelineState.FAILED},
    PipelineState.SCRAPING: {PipelineState.PERSISTING, PipelineState.FAILED},
    PipelineState.PERSISTING: {PipelineState.EXPORTING, PipelineState.FAILED},
    PipelineState.EXPORTING: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}


@dataclass(slots=True)
class RunResult:
    """Outcome of one pipeline run."""

    state: PipelineState
    ingestion: IngestionReport
    run_tag: int
    stored_total: int | None = None
    exports: dict[str, Path] = field(default_factory=dict)
    export_errors: dict[str, str] = field(default_factory=dict)

    @property
    def exported(self) -> bool:
        return bool(self.exports) and not self.export_errors


class Orchestrator:
    """Own the lifecycle of every component for a single run.

    Only a failed connect (``AuthError``) or an unopenable store
    (``StorageUnavailable``) move the machine to ``FAILED``; both are
    re-raised to the caller. ``CONNECTED`` is only entered once the client
    accepted the credentials, so a failed connect goes straight from
    ``IDLE`` to ``FAILED``. Target, record and export failures are reported
    on the returned ``RunResult``.
    """

    def __init__(
        self,
        config: GlobalConfig,
        client: SourceClient,
        db_path: Path,
        output_dir: Path | None = None,
        manager: SQLiteManager | None = None,
        progress_factory: Callable[[str], ProgressReporter] | None = None,
        logger_factory: Callable[[str], structlog.BoundLogger] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.client = client
        self.db_path = Path(db_path)
        self.output_dir = Path(output_dir) if output_dir is not None else config.export.output_dir
        self.manager = manager
        self.progress_factory = progress_factory
        self.logger_factory = logger_factory
        self.clock = clock
        self.logger = structlog.get_logger(LOGGER_NAME).bind(component="orchestrator")
        self.state = PipelineState.IDLE
        self.history: list[PipelineState] = [PipelineState.IDLE]
        self._token = ShutdownToken()

    def shutdown(self) -> None:
        """Cooperatively stop the current run after in-flight writes finish."""

        self.logger.warning("shutdown_requested", state=self.state.value)
        self._token.request()

    def _transition(self, new_state: PipelineState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal transition {self.state.value} -> {new_state.value}")
        self.logger.info("state_transition", previous=self.state.value, state=new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def run(
        self,
        targets: Iterable[str],
        max_per_target: int | None = None,
        base_name: str | None = None,
    ) -> RunResult:
        if self.state is not PipelineState.IDLE:
            raise RuntimeError("Orchestrator.run can only be called once")
        target_list = list(dict.fromkeys(t.strip() for t in targets if t and t.strip()))
        if not target_list:
            raise ValueError("at least one target is required")
        limit = self.config.ingestion.default_max_members if max_per_target is None else max_per_target
        if limit < 0:
            raise ValueError("max_per_target must be >= 0")

        try:
            try:
                self.client.connect(self.config.source.credentials)
            except AuthError as exc:
                self.logger.error("connect_failed", error=str(exc))
                self._transition(PipelineState.FAILED)
                raise
            self._transition(PipelineState.CONNECTED)

            self._transition(PipelineState.SCRAPING)
            try:
                store = MemberStore.open(
                    self.db_path,
                    busy_timeout=self.config.storage.busy_timeout,
                    manager=self.manager,
                )
            except StorageUnavailable as exc:
                self.logger.error("store_unavailable", path=str(self.db_path), error=str(exc))
                self._transition(PipelineState.FAILED)
                raise
            try:
                return self._run_with_store(store, target_list, limit, base_name)
            finally:
                store.close()
        finally:
            self.client.close()

    def _run_with_store(
        self, store: MemberStore, targets: list[str], limit: int, base_name: str | None
    ) -> RunResult:
        coordinator_kwargs = {}
        if self.logger_factory is not None:
            coordinator_kwargs["logger_factory"] = self.logger_factory
        coordinator = IngestionCoordinator(
            store,
            workers=self.config.ingestion.workers,
            queue_size=self.config.ingestion.queue_size,
            progress_factory=self.progress_factory,
            token=self._token,
            **coordinator_kwargs,
        )
        report = coordinator.run(targets, limit, self.client)
        result = RunResult(state=self.state, ingestion=report, run_tag=int(self.clock()))

        self._transition(PipelineState.PERSISTING)
        try:
            store.checkpoint()
            result.stored_total = store.count()
        except PersistenceError as exc:
            self.logger.warning("store_finalise_failed", error=str(exc))

        self._transition(PipelineState.EXPORTING)
        self._export(store, targets, base_name, result)

        self._transition(PipelineState.DONE)
        result.state = self.state
        totals = report.totals()
        self.logger.info(
            "run_completed",
            targets=len(report.targets),
            failed_targets=len(report.failed_targets),
            stored_total=result.stored_total,
            **totals,
        )
        return result

    def _export(
        self, store: MemberStore, targets: list[str], base_name: str | None, result: RunResult
    ) -> None:
        export_cfg = self.config.export
        try:
            paths = artifact_paths(
                base_name or export_cfg.base_name, self.output_dir, export_cfg.formats, result.run_tag
            )
        except ExportError as exc:
            result.export_errors["config"] = str(exc)
            return
        try:
            rows = store.snapshot(targets if export_cfg.only_run_targets else None)
        except PersistenceError as exc:
            self.logger.error("snapshot_failed", error=str(exc))
            for fmt in paths:
                result.export_errors[fmt] = f"snapshot failed: {exc}"
            return
        for fmt, path in paths.items():
            try:
                result.exports[fmt] = export_rows(rows, fmt, path)
                self.logger.info("export_written", format=fmt, path=str(path), rows=len(rows))
            except ExportError as exc:
                self.logger.error("export_failed", format=fmt, path=str(path), error=str(exc))
                result.export_errors[fmt] = str(exc)


__all__ = ["Orchestrator", "PipelineState", "RunResult"]
