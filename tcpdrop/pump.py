"""
tcpdrop/pump.py

Chunked copy loops between a file handle and an asyncio stream.

Neither direction ever holds more than one chunk of a file in memory.
Each chunk is written completely (write + drain) before the next read is
issued, so bytes leave in exactly the order they were read.
"""

import asyncio
import logging
from typing import BinaryIO, Callable, Optional

from tcpdrop.config import DEFAULT_CHUNK_SIZE
from tcpdrop.errors import ConnectionLost, ReadError, WriteError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


async def write_all(writer: asyncio.StreamWriter, data: bytes) -> None:
    """
    Write data and wait until the transport has accepted it.

    Raises:
        ConnectionLost: the peer reset or the socket is closed
    """
    try:
        writer.write(data)
        await writer.drain()
    except (ConnectionError, OSError) as exc:
        raise ConnectionLost(f"Write failed: {exc}") from exc


async def read_some(
    reader: asyncio.StreamReader,
    n: int,
    idle_timeout: Optional[float] = None,
) -> bytes:
    """
    Read up to n bytes. Returns b"" only at end-of-stream.

    Raises:
        ConnectionLost: socket error, or nothing arrived within idle_timeout
    """
    try:
        if idle_timeout is not None:
            return await asyncio.wait_for(reader.read(n), timeout=idle_timeout)
        return await reader.read(n)
    except asyncio.TimeoutError:
        raise ConnectionLost(f"No data for {idle_timeout:.1f}s") from None
    except (ConnectionError, OSError) as exc:
        raise ConnectionLost(f"Read failed: {exc}") from exc


async def pump_to_socket(
    fh: BinaryIO,
    writer: asyncio.StreamWriter,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    total: Optional[int] = None,
    progress: Optional[ProgressCallback] = None,
) -> int:
    """
    Stream a file into the socket.

    Args:
        fh:         Source file opened for binary reading
        writer:     Destination stream
        chunk_size: Bytes per read
        total:      Exact number of bytes to send; None streams to end-of-file
        progress:   Called with the byte count of every chunk sent

    Returns:
        Number of bytes sent.

    Raises:
        ReadError:      the file failed, or ended before total bytes were read
        ConnectionLost: the socket failed
    """
    sent = 0
    while total is None or sent < total:
        want = chunk_size if total is None else min(chunk_size, total - sent)
        try:
            chunk = fh.read(want)
        except OSError as exc:
            raise ReadError(f"Read failed after {sent} bytes: {exc}") from exc

        if not chunk:
            if total is None:
                break
            raise ReadError(f"Source ended after {sent}/{total} bytes")

        await write_all(writer, chunk)
        sent += len(chunk)
        if progress is not None:
            progress(len(chunk))

    logger.debug("pump_to_socket: %d bytes sent", sent)
    return sent


async def pump_from_socket(
    reader: asyncio.StreamReader,
    fh: BinaryIO,
    expected_total: int,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    idle_timeout: Optional[float] = None,
    progress: Optional[ProgressCallback] = None,
) -> int:
    """
    Copy exactly expected_total bytes from the socket into a file.

    Reads never ask for more than what is still owed, so bytes of a following
    frame stay in the reader.

    Returns:
        Number of bytes written (== expected_total).

    Raises:
        ConnectionLost: end-of-stream, socket error or idle timeout before completion
        WriteError:     the file rejected a write
    """
    received = 0
    while received < expected_total:
        chunk = await read_some(
            reader, min(chunk_size, expected_total - received), idle_timeout
        )
        if not chunk:
            raise ConnectionLost(
                f"Peer closed after {received}/{expected_total} bytes"
            )
        try:
            fh.write(chunk)
        except OSError as exc:
            raise WriteError(f"Write failed after {received} bytes: {exc}") from exc

        received += len(chunk)
        if progress is not None:
            progress(len(chunk))

    logger.debug("pump_from_socket: %d bytes received", received)
    return received
