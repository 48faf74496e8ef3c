"""Shared test fixtures for the httprunner test suite.

Provides a controllable clock, fake process handles for registry tests,
and a guard that restores logging configuration after tests that call
setup_logging.
"""

from __future__ import annotations

import itertools
import logging
from typing import Callable, Iterator

import pytest

from httprunner.runner.registry import ProcessRegistry
from httprunner.utils.logging import UVICORN_LOGGERS


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Process handles
# ---------------------------------------------------------------------------


class FakeHandle:
    """Stands in for a live process in registry tests."""

    def __init__(self, pid: int, fail_kill: bool = False) -> None:
        self.pid = pid
        self.kill_calls = 0
        self._fail_kill = fail_kill

    def kill(self) -> None:
        self.kill_calls += 1
        if self._fail_kill:
            raise ProcessLookupError(f"process {self.pid} already exited")


@pytest.fixture
def make_handle() -> Callable[..., FakeHandle]:
    """Factory for FakeHandle with auto-incrementing pids."""
    pids = itertools.count(4000)

    def _make(fail_kill: bool = False) -> FakeHandle:
        return FakeHandle(next(pids), fail_kill=fail_kill)

    return _make


@pytest.fixture
def registry() -> ProcessRegistry:
    return ProcessRegistry()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo logger changes made by setup_logging during a test."""
    names = ("httprunner", *UVICORN_LOGGERS)
    saved = {}
    for name in names:
        lg = logging.getLogger(name)
        saved[name] = (list(lg.handlers), lg.level, lg.propagate)
    yield
    for name, (handlers, level, propagate) in saved.items():
        lg = logging.getLogger(name)
        for handler in list(lg.handlers):
            if handler not in handlers:
                lg.removeHandler(handler)
                handler.close()
        lg.setLevel(level)
        lg.propagate = propagate
