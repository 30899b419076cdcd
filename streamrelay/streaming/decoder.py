"""Incremental decoder turning a raw event-stream byte feed into data records."""

import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DATA_PREFIX = b"data:"
DONE_MARKER = "[DONE]"


class FrameDecoder:
    """Buffers bytes and yields the payload of every complete ``data:`` line.

    Lines are split on raw bytes before decoding, so a multi-byte character
    cut by a chunk boundary simply waits in the buffer for the rest of the
    line. Lines without the ``data:`` prefix (comments, keep-alives, other
    event fields) are dropped. A ``data: [DONE]`` line ends the stream.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._done = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet terminated by a newline."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[str]:
        """Consume a chunk and return the records completed by it."""
        if self._done or not chunk:
            return []

        self._buffer.extend(chunk)
        records: list[str] = []
        while not self._done:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            line = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            record = self._parse_line(line)
            if record is not None:
                records.append(record)
        return records

    def _parse_line(self, line: bytes) -> str | None:
        line = line.rstrip(b"\r").strip()
        if not line.startswith(DATA_PREFIX):
            return None

        try:
            payload = line[len(DATA_PREFIX):].decode("utf-8").strip()
        except UnicodeDecodeError:
            logger.warning("Dropping event line with invalid UTF-8 (%d bytes)", len(line))
            return None

        if payload == DONE_MARKER:
            self._done = True
            self._buffer.clear()
            return None
        return payload or None


async def iter_records(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Lazily decode an async byte stream into data records.

    Stops at the terminal marker without reading further chunks. A trailing
    line with no terminator when the stream ends is discarded.
    """
    decoder = FrameDecoder()
    async for chunk in chunks:
        for record in decoder.feed(chunk):
            yield record
        if decoder.done:
            return
