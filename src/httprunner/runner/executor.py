"""Spawning and supervision of the configured command.

The executor turns one run request into a tracked background process:
check the rate limiter, start the command, register it, and launch the
background tasks that outlive the request:

- a stdout pump feeding the request's capture buffer,
- a stderr pump feeding a small buffer used in failure logs,
- a completion watcher that unregisters the process once it exits.

Exactly one watcher runs per spawn, and it always unregisters in a
``finally`` block, whether the process exited on its own, was killed,
or the watcher itself failed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from dataclasses import dataclass, field
from typing import Any, Coroutine

from httprunner.runner.buffer import DEFAULT_CAPTURE_LIMIT, CaptureBuffer
from httprunner.runner.limiter import RateLimiter
from httprunner.runner.registry import ManagedProcess, ProcessKey, ProcessRegistry

logger = logging.getLogger(__name__)

DEFAULT_STDERR_LIMIT = 64 << 10
READ_CHUNK_SIZE = 32 << 10
# How long the watcher waits for the pipes to drain after the process exited
PIPE_DRAIN_TIMEOUT = 1.0


class RunnerError(Exception):
    """Base class for errors raised while starting the command."""


class RateLimitedError(RunnerError):
    """Raised when a start is refused by the rate limiter."""


class SpawnError(RunnerError):
    """Raised when the command could not be started."""


@dataclass
class RunningCommand:
    """What a run request gets back: the output and a completion signal.

    The process handle itself stays with the registry.
    """

    process: ManagedProcess
    output: CaptureBuffer
    finished: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def key(self) -> ProcessKey:
        return self.process.key

    @property
    def pid(self) -> int:
        return self.process.pid


class CommandExecutor:
    """Starts the fixed command and keeps its background tasks alive.

    Args:
        command: Command line, split on whitespace.
        registry: Where started processes are tracked.
        limiter: Spawn rate limiter shared by all requests.
        capture_limit: Byte ceiling of each run's stdout capture.
        stderr_limit: Byte ceiling of the stderr kept for log messages.
        echo_output: Also copy the command's stdout to the server's stdout.
    """

    def __init__(
        self,
        command: str,
        registry: ProcessRegistry,
        limiter: RateLimiter,
        capture_limit: int = DEFAULT_CAPTURE_LIMIT,
        stderr_limit: int = DEFAULT_STDERR_LIMIT,
        echo_output: bool = False,
    ) -> None:
        self._argv = command.split()
        if not self._argv:
            raise ValueError("No command to run")
        self._registry = registry
        self._limiter = limiter
        self._capture_limit = capture_limit
        self._stderr_limit = stderr_limit
        self._echo_output = echo_output
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def argv(self) -> list[str]:
        return list(self._argv)

    @property
    def program(self) -> str:
        return self._argv[0]

    @property
    def registry(self) -> ProcessRegistry:
        return self._registry

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    async def start(self) -> RunningCommand:
        """Start one instance of the command.

        Spawning runs in its own task, so a child forked before the
        calling request was cancelled is still registered and watched.

        Raises:
            RateLimitedError: If the previous start was too recent.
            SpawnError: If the command could not be started.
        """
        if not self._limiter.try_acquire():
            raise RateLimitedError("Command process creation is rate limited")

        launch = self._spawn_task(self._launch(), name=f"launch-{self.program}")
        try:
            return await asyncio.shield(launch)
        except asyncio.CancelledError:
            launch.add_done_callback(_release_unclaimed)
            raise

    async def _launch(self) -> RunningCommand:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("%s failed to start: %s", self.program, e)
            raise SpawnError(f"{self.program} failed to start: {e}") from e

        if process.stdout is None or process.stderr is None:
            logger.error("%s (pid %d) has no output pipes", self.program, process.pid)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            raise SpawnError(f"{self.program} started without output pipes")

        logger.info("Started %s with pid %d", self.program, process.pid)
        entry = self._registry.register(process, command=self.program)
        self._limiter.record_start()

        output = CaptureBuffer(self._capture_limit)
        errors = CaptureBuffer(self._stderr_limit)
        running = RunningCommand(process=entry, output=output)

        pumps = [
            self._spawn_task(
                self._pump(process.stdout, output, echo=self._echo_output),
                name=f"stdout-{process.pid}",
            ),
            self._spawn_task(
                self._pump(process.stderr, errors, echo=False),
                name=f"stderr-{process.pid}",
            ),
        ]
        self._spawn_task(
            self._watch(process, running, pumps, errors),
            name=f"watch-{process.pid}",
        )
        return running

    async def aclose(self, timeout: float = 1.0) -> None:
        """Give background tasks ``timeout`` seconds, then cancel the rest.

        Processes are left running; only their supervision stops.
        """
        tasks = list(self._tasks)
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info("Stopped supervising %d background task(s)", len(pending))

    def _spawn_task(
        self, coro: Coroutine[Any, Any, Any], name: str
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _pump(
        self, stream: asyncio.StreamReader, sink: CaptureBuffer, echo: bool
    ) -> None:
        """Copy a pipe into ``sink`` until EOF, never holding the writer back."""
        error: BaseException | None = None
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                sink.write(chunk)
                if echo:
                    _echo(chunk)
        except OSError as e:
            logger.warning("Output copy error: %s", e)
            error = e
        finally:
            sink.close(error)

    async def _watch(
        self,
        process: asyncio.subprocess.Process,
        running: RunningCommand,
        pumps: list[asyncio.Task[None]],
        errors: CaptureBuffer,
    ) -> None:
        """Wait for the process to exit, log the outcome, unregister it."""
        try:
            returncode = await process.wait()
            await asyncio.wait(pumps, timeout=PIPE_DRAIN_TIMEOUT)
            if returncode == 0:
                logger.info("%s (pid %d) exited", self.program, process.pid)
            else:
                logger.warning(
                    "%s (pid %d) failed: %s, %s",
                    self.program,
                    process.pid,
                    _describe_returncode(returncode),
                    errors.drain().decode("utf-8", errors="replace").strip(),
                )
        except Exception:
            logger.exception("Completion watcher for pid %d failed", process.pid)
        finally:
            self._registry.unregister(running.key)
            running.finished.set()


def _release_unclaimed(launch: asyncio.Task[RunningCommand]) -> None:
    """Free the output of a start whose request went away mid-spawn."""
    if launch.cancelled() or launch.exception() is not None:
        return
    launch.result().output.release()


def _echo(chunk: bytes) -> None:
    """Mirror a chunk of command output on the server's own stdout."""
    try:
        out = getattr(sys.stdout, "buffer", None)
        if out is None:
            sys.stdout.write(chunk.decode("utf-8", errors="replace"))
        else:
            out.write(chunk)
        sys.stdout.flush()
    except (OSError, ValueError) as e:
        logger.debug("Could not echo command output: %s", e)


def _describe_returncode(returncode: int) -> str:
    if returncode < 0:
        try:
            return f"signal: {signal.Signals(-returncode).name}"
        except ValueError:
            return f"signal: {-returncode}"
    return f"exit status {returncode}"
