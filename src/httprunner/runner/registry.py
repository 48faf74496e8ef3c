"""Registry of the processes started by the run endpoint.

Every spawned process is tracked from start until its completion watcher
sees it exit, or until a bulk kill forgets it. Entries are keyed by start
time paired with a spawn counter, so two processes started within the same
clock tick still get distinct keys.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from httprunner.domain.models import ProcessInfo

logger = logging.getLogger(__name__)


class ProcessHandle(Protocol):
    """What the registry needs from a live process."""

    @property
    def pid(self) -> int: ...

    def kill(self) -> None: ...


@dataclass(frozen=True, order=True)
class ProcessKey:
    """Registry key. Orders by start time, then spawn order."""

    started_at: datetime
    sequence: int


@dataclass
class ManagedProcess:
    """A spawned process owned by the registry."""

    key: ProcessKey
    pid: int
    handle: ProcessHandle = field(repr=False, compare=False)
    command: str = ""

    @property
    def started_at(self) -> datetime:
        return self.key.started_at

    def info(self) -> ProcessInfo:
        return ProcessInfo(
            started_at=self.key.started_at,
            sequence=self.key.sequence,
            pid=self.pid,
            command=self.command,
        )


class ProcessRegistry:
    """Concurrency-safe map of live processes.

    Each instance is independent; the server owns one and hands it to the
    executor and the request handlers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._processes: dict[ProcessKey, ManagedProcess] = {}
        self._sequence = itertools.count()

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._processes

    def register(
        self,
        handle: ProcessHandle,
        started_at: datetime | None = None,
        command: str = "",
    ) -> ManagedProcess:
        """Start tracking ``handle`` and return its registry entry."""
        if started_at is None:
            started_at = datetime.now().astimezone()
        with self._lock:
            key = ProcessKey(started_at=started_at, sequence=next(self._sequence))
            entry = ManagedProcess(key=key, pid=handle.pid, handle=handle, command=command)
            self._processes[key] = entry
        logger.debug("Registered pid %d as #%d", entry.pid, key.sequence)
        return entry

    def unregister(self, key: ProcessKey) -> bool:
        """Stop tracking ``key``. Returns False if it was already gone."""
        with self._lock:
            entry = self._processes.pop(key, None)
        if entry is None:
            return False
        logger.debug("Unregistered pid %d", entry.pid)
        return True

    def terminate_all(self) -> list[Exception]:
        """Kill every tracked process and forget them all.

        Entries are dropped even when their kill failed: the registry stops
        tracking them, it does not confirm they died.

        Returns:
            The per-process kill failures, in start order.
        """
        errors: list[Exception] = []
        with self._lock:
            entries = sorted(self._processes.values(), key=lambda e: e.key)
            for entry in entries:
                try:
                    entry.handle.kill()
                except OSError as e:
                    logger.warning("Couldn't kill child %d: %s", entry.pid, e)
                    errors.append(e)
            self._processes.clear()
        if entries:
            logger.info(
                "Terminated %d process(es), %d failure(s)", len(entries), len(errors)
            )
        return errors

    def list_ordered(self) -> list[ProcessInfo]:
        """Snapshot of the tracked processes, oldest first."""
        with self._lock:
            entries = sorted(self._processes.values(), key=lambda e: e.key)
        return [entry.info() for entry in entries]
