import asyncio
from typing import List, Optional


class FakeWriter:
    """In-memory stand-in for asyncio.StreamWriter."""

    def __init__(self, fail_after: Optional[int] = None) -> None:
        self.chunks: List[bytes] = []
        self.closed = False
        self._fail_after = fail_after

    def write(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("writer closed")
        if self._fail_after is not None and len(self.chunks) >= self._fail_after:
            raise ConnectionResetError("peer reset")
        self.chunks.append(bytes(data))

    async def drain(self) -> None:
        await asyncio.sleep(0)

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def get_extra_info(self, name, default=None):
        return default

    @property
    def data(self) -> bytes:
        return b"".join(self.chunks)


class ScriptedReader:
    """
    Returns the scripted chunks one read at a time, never more than asked
    for, and records every requested size.
    """

    def __init__(self, chunks: List[bytes]) -> None:
        self._chunks = list(chunks)
        self.requests: List[int] = []

    async def read(self, n: int) -> bytes:
        self.requests.append(n)
        await asyncio.sleep(0)
        if not self._chunks:
            return b""
        chunk = self._chunks.pop(0)
        if len(chunk) > n:
            self._chunks.insert(0, chunk[n:])
            chunk = chunk[:n]
        return chunk

    @property
    def remaining(self) -> bytes:
        return b"".join(self._chunks)


def split_every(data: bytes, size: int) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]
