"""Streaming response driver for the run endpoint.

Drives one run request through ``STARTING -> STREAMING -> FINISHED``:

- STARTING: the executor checks the rate limiter, spawns and registers.
- STREAMING: output is drained from the capture buffer chunk by chunk.
  Two timers bound this state. The absolute deadline (``max_duration``,
  counted from loop entry) flushes what is already buffered and then
  stops streaming unconditionally; the idle timeout stops it once no
  output arrived for longer than ``idle_timeout``. End of output and
  producer errors stop it too.
- FINISHED: the capture buffer is released. The process is left running
  and is reaped by its completion watcher.

Between empty drains the driver sleeps on the buffer's readiness event,
never longer than the time left before a timer fires.
"""

from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Callable

from httprunner.domain.models import StreamState
from httprunner.runner.executor import CommandExecutor, RunnerError, RunningCommand

logger = logging.getLogger(__name__)

NO_OUTPUT_MESSAGE = "Command started but no output yet."

DEFAULT_MAX_DURATION = 1.0
DEFAULT_IDLE_TIMEOUT = 0.2
# Slack added to each wait so an expired timer is observed on the next cycle
TIMER_GRANULARITY = 0.005


class OutputStreamer:
    """Per-request state machine that turns command output into chunks.

    Usage::

        streamer = OutputStreamer(executor)
        await streamer.start()
        first = await streamer.next_chunk()
        if first is None:
            ...  # nothing captured, answer NO_OUTPUT_MESSAGE
        async for chunk in streamer.stream(first):
            ...
    """

    def __init__(
        self,
        executor: CommandExecutor,
        max_duration: float = DEFAULT_MAX_DURATION,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._executor = executor
        self._max_duration = max_duration
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._state = StreamState.STARTING
        self._running: RunningCommand | None = None
        self._deadline = 0.0
        self._last_data = 0.0
        self._bytes_streamed = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def running(self) -> RunningCommand | None:
        return self._running

    @property
    def bytes_streamed(self) -> int:
        return self._bytes_streamed

    async def start(self) -> RunningCommand:
        """Spawn the command and enter STREAMING.

        Raises:
            RateLimitedError: Start refused; nothing was spawned.
            SpawnError: The command could not be started; nothing registered.
        """
        if self._state is not StreamState.STARTING:
            raise RuntimeError(f"Cannot start from state {self._state.value}")
        try:
            self._running = await self._executor.start()
        except RunnerError:
            self._state = StreamState.FINISHED
            raise
        now = self._clock()
        self._deadline = now + self._max_duration
        self._last_data = now
        self._state = StreamState.STREAMING
        return self._running

    async def next_chunk(self) -> bytes | None:
        """Wait for the next output chunk.

        Returns:
            The drained bytes, or None once the stream has finished.
        """
        while self._state is StreamState.STREAMING:
            assert self._running is not None
            output = self._running.output
            now = self._clock()
            chunk = output.drain()
            if now >= self._deadline:
                logger.debug("Deadline of %.3fs reached, wrapping up.", self._max_duration)
                self._bytes_streamed += len(chunk)
                self.finish()
                return chunk or None

            if chunk:
                self._last_data = now
                self._bytes_streamed += len(chunk)
                return chunk

            if output.error is not None:
                logger.error("Output copy error: %s", output.error)
                break
            if output.at_eof:
                logger.debug("Output of pid %d ended", self._running.pid)
                break
            idle_for = now - self._last_data
            if idle_for > self._idle_timeout:
                logger.info(
                    "No output for more than %.0fms, wrapping up.",
                    self._idle_timeout * 1000,
                )
                break

            wait = min(self._deadline - now, self._idle_timeout - idle_for)
            await output.wait_readable(max(wait, 0.0) + TIMER_GRANULARITY)

        self.finish()
        return None

    async def stream(self, first: bytes | None = None) -> AsyncIterator[bytes]:
        """Yield ``first`` (if given) and every following chunk.

        Closing the generator early, for instance when the client goes
        away, finishes the stream without touching the process.
        """
        try:
            if first:
                yield first
            while True:
                chunk = await self.next_chunk()
                if chunk is None:
                    break
                yield chunk
        finally:
            self.finish()

    def finish(self) -> None:
        """Enter FINISHED and release the capture buffer. Idempotent."""
        if self._state is StreamState.FINISHED:
            return
        self._state = StreamState.FINISHED
        if self._running is not None:
            self._running.output.release()
            logger.info(
                "Streamed %d bytes from pid %d", self._bytes_streamed, self._running.pid
            )
