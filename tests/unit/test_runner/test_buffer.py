"""Tests for the bounded capture buffer."""

from __future__ import annotations

import asyncio

import pytest

from httprunner.runner.buffer import DEFAULT_CAPTURE_LIMIT, CaptureBuffer


class TestCaptureBufferWrite:
    def test_default_limit_is_one_mib(self) -> None:
        assert CaptureBuffer().limit == DEFAULT_CAPTURE_LIMIT == 1 << 20

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(ValueError):
            CaptureBuffer(limit=-1)

    def test_write_reports_full_length(self) -> None:
        buf = CaptureBuffer(limit=4)
        assert buf.write(b"ab") == 2
        assert buf.write(b"cdefgh") == 6
        assert buf.write(b"ijk") == 3

    def test_exactly_at_limit_keeps_accepting_nothing_more(self) -> None:
        buf = CaptureBuffer(limit=4)
        buf.write(b"abcd")
        assert not buf.discarding
        buf.write(b"e")
        assert buf.discarding
        assert buf.drain() == b"abcd"

    def test_crossing_write_keeps_the_part_that_fits(self) -> None:
        buf = CaptureBuffer(limit=5)
        buf.write(b"abc")
        buf.write(b"defgh")
        assert buf.discarding
        assert buf.retained == 5
        assert buf.drain() == b"abcde"

    def test_writes_after_discarding_are_dropped(self) -> None:
        buf = CaptureBuffer(limit=3)
        buf.write(b"abcdef")
        assert buf.drain() == b"abc"
        assert buf.write(b"more") == 4
        assert buf.drain() == b""
        assert buf.retained == 3

    def test_two_mib_against_one_mib_ceiling(self) -> None:
        """Only the first MiB of a 2 MiB burst is captured."""
        buf = CaptureBuffer()
        data = bytes(i % 251 for i in range(2 << 20))
        chunk = 64 << 10
        for start in range(0, len(data), chunk):
            assert buf.write(data[start:start + chunk]) == chunk
        captured = buf.drain()
        assert captured == data[: 1 << 20]
        assert buf.at_eof

    @pytest.mark.parametrize(
        "chunks, limit",
        [
            ([b"a" * 10, b"b" * 10, b"c" * 10], 15),
            ([b"x"] * 50, 7),
            ([b"", b"abc", b"", b"defg"], 100),
        ],
    )
    def test_retains_prefix_of_everything_written(
        self, chunks: list[bytes], limit: int
    ) -> None:
        buf = CaptureBuffer(limit=limit)
        for c in chunks:
            buf.write(c)
        everything = b"".join(chunks)
        assert buf.drain() == everything[:limit]


class TestCaptureBufferDrain:
    def test_drain_empty_returns_nothing(self) -> None:
        buf = CaptureBuffer()
        assert buf.drain() == b""
        assert not buf.at_eof

    def test_drain_preserves_write_order(self) -> None:
        buf = CaptureBuffer()
        buf.write(b"one ")
        buf.write(b"two ")
        assert buf.drain() == b"one two "
        buf.write(b"three")
        assert buf.drain() == b"three"
        assert len(buf) == 0

    def test_discarding_buffer_still_returns_stored_bytes(self) -> None:
        buf = CaptureBuffer(limit=2)
        buf.write(b"abc")
        assert not buf.at_eof
        assert buf.drain() == b"ab"
        assert buf.at_eof
        assert buf.drain() == b""

    def test_close_marks_end_of_stream(self) -> None:
        buf = CaptureBuffer()
        buf.write(b"tail")
        buf.close()
        assert buf.closed
        assert not buf.at_eof
        assert buf.drain() == b"tail"
        assert buf.at_eof
        assert buf.error is None

    def test_close_records_error(self) -> None:
        buf = CaptureBuffer()
        err = OSError("broken pipe")
        buf.close(err)
        buf.close(OSError("ignored"))
        assert buf.error is err

    def test_release_drops_pending_and_discards(self) -> None:
        buf = CaptureBuffer()
        buf.write(b"unread")
        buf.release()
        assert buf.drain() == b""
        assert buf.write(b"later") == 5
        assert len(buf) == 0
        assert buf.at_eof


class TestCaptureBufferWaiting:
    @pytest.mark.asyncio
    async def test_wait_times_out_without_writes(self) -> None:
        buf = CaptureBuffer()
        assert await buf.wait_readable(0.01) is False

    @pytest.mark.asyncio
    async def test_wait_wakes_on_write(self) -> None:
        buf = CaptureBuffer()

        async def produce() -> None:
            await asyncio.sleep(0.01)
            buf.write(b"hi")

        task = asyncio.create_task(produce())
        assert await buf.wait_readable(2.0) is True
        assert buf.drain() == b"hi"
        await task

    @pytest.mark.asyncio
    async def test_wait_wakes_on_close(self) -> None:
        buf = CaptureBuffer()
        asyncio.get_running_loop().call_later(0.01, buf.close)
        assert await buf.wait_readable(2.0) is True
        assert buf.at_eof

    @pytest.mark.asyncio
    async def test_drain_resets_readiness(self) -> None:
        buf = CaptureBuffer()
        buf.write(b"x")
        assert await buf.wait_readable(0.01) is True
        buf.drain()
        assert await buf.wait_readable(0.01) is False

    @pytest.mark.asyncio
    async def test_concurrent_producer_and_drainer_keep_order(self) -> None:
        buf = CaptureBuffer()
        pieces = [f"{i:05d};".encode() for i in range(500)]

        async def produce() -> None:
            for i, piece in enumerate(pieces):
                buf.write(piece)
                if i % 7 == 0:
                    await asyncio.sleep(0)
            buf.close()

        task = asyncio.create_task(produce())
        received = bytearray()
        while not buf.at_eof:
            received += buf.drain()
            await buf.wait_readable(0.05)
        received += buf.drain()
        await task
        assert bytes(received) == b"".join(pieces)
