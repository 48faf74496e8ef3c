"""Bounded capture buffer for a command's output.

The spawned process's stdout is pumped into a CaptureBuffer while the run
request drains it into the HTTP response. The buffer keeps at most ``limit``
bytes; once the producer has written past that ceiling the buffer switches
to discarding for good and silently drops everything else, so a verbose
command can never exhaust server memory nor be slowed down by its reader.
"""

from __future__ import annotations

import asyncio
import logging
import threading

logger = logging.getLogger(__name__)

DEFAULT_CAPTURE_LIMIT = 1 << 20


class CaptureBuffer:
    """Size-capped byte sink with a non-blocking, in-order drain.

    The producer calls :meth:`write` and finally :meth:`close`; the consumer
    calls :meth:`drain` and, between empty drains, :meth:`wait_readable`.
    Writes and drains happen on the event loop thread; the lock keeps each
    write atomic with respect to a drain.
    """

    def __init__(self, limit: int = DEFAULT_CAPTURE_LIMIT) -> None:
        if limit < 0:
            raise ValueError(f"limit must not be negative, got {limit}")
        self._limit = limit
        self._lock = threading.Lock()
        self._pending = bytearray()
        self._retained = 0
        self._discarding = False
        self._closed = False
        self._released = False
        self._error: BaseException | None = None
        self._readable = asyncio.Event()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def retained(self) -> int:
        """Total bytes ever stored, drained or not. Never exceeds the limit."""
        return self._retained

    @property
    def discarding(self) -> bool:
        return self._discarding

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> BaseException | None:
        """The failure that ended the producer side, if any."""
        return self._error

    @property
    def at_eof(self) -> bool:
        """True once no more bytes can ever be drained."""
        with self._lock:
            return not self._pending and (self._discarding or self._closed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def write(self, data: bytes) -> int:
        """Store ``data`` up to the ceiling and report it all as written."""
        size = len(data)
        with self._lock:
            if self._discarding:
                return size
            room = self._limit - self._retained
            if size > room:
                if room > 0:
                    self._pending += data[:room]
                    self._retained += room
                self._discarding = True
                if not self._released:
                    logger.info(
                        "Output exceeded %d bytes, discarding the rest", self._limit
                    )
            else:
                self._pending += data
                self._retained += size
            self._readable.set()
        return size

    def drain(self) -> bytes:
        """Return every stored byte not drained yet, or ``b""`` if none."""
        with self._lock:
            if not self._pending:
                if not (self._discarding or self._closed):
                    self._readable.clear()
                return b""
            chunk = bytes(self._pending)
            self._pending.clear()
            if not (self._discarding or self._closed):
                self._readable.clear()
            return chunk

    async def wait_readable(self, timeout: float) -> bool:
        """Wait until a write or close happens, or ``timeout`` elapses.

        Returns:
            True if the buffer became readable, False on timeout.
        """
        if timeout <= 0:
            return self._readable.is_set()
        try:
            await asyncio.wait_for(self._readable.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def close(self, error: BaseException | None = None) -> None:
        """Mark the end of the producer's output, optionally with a failure."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._error = error
            self._readable.set()

    def release(self) -> None:
        """Detach the reader: drop pending bytes and discard from now on."""
        with self._lock:
            self._released = True
            self._discarding = True
            self._pending.clear()
            self._readable.set()
