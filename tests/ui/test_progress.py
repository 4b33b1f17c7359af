from __future__ import annotations

import io
from concurrent.futures import ThreadPoolExecutor

import pytest
from rich.console import Console

from member_scraper.ui import ProgressReporter


def test_advance_requires_start() -> None:
    with pytest.raises(RuntimeError):
        ProgressReporter(enabled=False).advance(persisted=True)


def test_counts_from_many_threads() -> None:
    reporter = ProgressReporter(enabled=False)
    reporter.start(300)
    outcomes = [{"persisted": True}, {"failed": True}, {"skipped": True}] * 100
    with ThreadPoolExecutor(max_workers=6) as executor:
        list(executor.map(lambda kwargs: reporter.advance(**kwargs), outcomes))
    reporter.close()
    assert reporter.summary() == {"persisted": 100, "failed": 100, "skipped": 100}
    assert reporter.state.completed == 300


def test_non_terminal_console_stays_silent() -> None:
    buffer = io.StringIO()
    reporter = ProgressReporter(console=Console(file=buffer, force_terminal=False))
    reporter.set_label("@python")
    reporter.start(2)
    reporter.advance(persisted=True)
    reporter.close()
    assert buffer.getvalue() == ""
    assert reporter.summary()["persisted"] == 1


def test_summary_before_start() -> None:
    assert ProgressReporter().summary() == {"persisted": 0, "failed": 0, "skipped": 0}
