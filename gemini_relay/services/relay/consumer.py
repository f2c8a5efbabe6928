"""
Downstream consumers of a streamed answer
"""
import asyncio
from typing import AsyncGenerator, Dict, Mapping, Protocol, runtime_checkable

from ...core.exceptions import ConsumerDisconnectedError


SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@runtime_checkable
class StreamConsumer(Protocol):
    """Write target of the streaming relay."""

    def set_headers(self, headers: Mapping[str, str]) -> None:
        ...

    async def write(self, data: bytes) -> None:
        ...


@runtime_checkable
class Flushable(Protocol):
    """Capability: buffered bytes can be pushed to the client on demand."""

    async def flush(self) -> None:
        ...


class SSEQueueConsumer:
    """
    Stream consumer backed by a bounded asyncio.Queue.

    The relay writes and flushes into it; ``iter_events`` drains it into a
    StreamingResponse. A full queue blocks ``flush`` until the client reads,
    and once the client goes away every write raises
    ConsumerDisconnectedError.
    """

    def __init__(self, max_pending: int = 64):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self._buffer = bytearray()
        self.headers: Dict[str, str] = {}
        self.headers_ready = asyncio.Event()
        self.bytes_written = 0
        self._closed = False
        self._disconnected = False

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def set_headers(self, headers: Mapping[str, str]) -> None:
        if self.bytes_written:
            raise RuntimeError("headers must be set before the first byte is written")
        self.headers.update(headers)
        self.headers_ready.set()

    async def write(self, data: bytes) -> None:
        self._check_open()
        self._buffer.extend(data)

    async def flush(self) -> None:
        self._check_open()
        if not self._buffer:
            return
        chunk = bytes(self._buffer)
        self._buffer.clear()
        await self._queue.put(chunk)
        self.bytes_written += len(chunk)

    async def close(self) -> None:
        """Signal end of stream. Unflushed bytes are delivered first."""
        if self._closed:
            return
        self._closed = True
        if self._disconnected:
            return
        if self._buffer:
            await self._queue.put(bytes(self._buffer))
            self._buffer.clear()
        await self._queue.put(None)

    def mark_disconnected(self) -> None:
        self._disconnected = True
        # Освобождаем место, чтобы заблокированный flush вернулся
        while not self._queue.empty():
            self._queue.get_nowait()

    async def iter_events(self) -> AsyncGenerator[bytes, None]:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            if not self._closed:
                self.mark_disconnected()

    def _check_open(self):
        if self._disconnected:
            raise ConsumerDisconnectedError("client disconnected")
        if self._closed:
            raise ConsumerDisconnectedError("stream already closed")


