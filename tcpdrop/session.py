"""
tcpdrop/session.py

Transfer sessions: the per-connection protocol state machine.

    CONNECTING → AWAITING_HEADER → STREAMING_BODY → COMPLETE
                       ↑                  │
                       └──── next frame ──┘          (any state) → FAILED

Session state lives in a SessionTable owned by the dispatcher, keyed by
session id. Sessions and callbacks refer to records by id only.

ReceiverSession reads frames until a sentinel or a clean end-of-stream at a
frame boundary. SenderSession writes one frame per send() call; several
calls on the same session pipeline frames on one connection.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

from tcpdrop.config import DEFAULT_CHUNK_SIZE
from tcpdrop.connection import close_writer
from tcpdrop.errors import (
    ConnectionLost,
    IncompleteHeader,
    TransferError,
    WriteError,
)
from tcpdrop.files import FileSink, open_source
from tcpdrop.metrics import SessionMetrics
from tcpdrop.protocol import (
    FileDescriptor,
    decode_header,
    encode_header,
    encode_sentinel,
    is_sentinel,
)
from tcpdrop.pump import pump_from_socket, pump_to_socket, read_some, write_all

logger = logging.getLogger(__name__)

FileCompleteCallback = Callable[[int, FileDescriptor, str], None]
FileFailedCallback   = Callable[[int, FileDescriptor, TransferError], None]
SentinelCallback     = Callable[[int], None]


class SessionState(Enum):
    CONNECTING      = "connecting"
    AWAITING_HEADER = "awaiting_header"
    STREAMING_BODY  = "streaming_body"
    COMPLETE        = "complete"
    FAILED          = "failed"


@dataclass
class SessionRecord:
    """Mutable state of one connection, stored in the SessionTable."""
    session_id: int
    role: str
    peer: str
    state: SessionState = SessionState.CONNECTING
    descriptor: Optional[FileDescriptor] = None    # file currently in flight
    bytes_transferred: int = 0                     # body bytes of that file
    files_done: int = 0
    saw_sentinel: bool = False
    error: Optional[TransferError] = None


class SessionTable:
    """Arena of active sessions, owned by one dispatcher."""

    def __init__(self) -> None:
        self._records: dict[int, SessionRecord] = {}
        self._next_id = 1

    def open(self, role: str, peer: str = "") -> SessionRecord:
        record = SessionRecord(session_id=self._next_id, role=role, peer=peer)
        self._records[record.session_id] = record
        self._next_id += 1
        return record

    def __getitem__(self, session_id: int) -> SessionRecord:
        return self._records[session_id]

    def get(self, session_id: int) -> Optional[SessionRecord]:
        return self._records.get(session_id)

    def remove(self, session_id: int) -> Optional[SessionRecord]:
        return self._records.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[SessionRecord]:
        return iter(list(self._records.values()))


def _noop(*_args) -> None:
    pass


class _Session:
    def __init__(
        self,
        session_id: int,
        table: SessionTable,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        metrics: SessionMetrics,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_file_complete: Optional[FileCompleteCallback] = None,
        on_file_failed: Optional[FileFailedCallback] = None,
    ) -> None:
        self.session_id        = session_id
        self._table            = table
        self._reader           = reader
        self._writer           = writer
        self._metrics          = metrics
        self._chunk_size       = chunk_size
        self._on_file_complete = on_file_complete or _noop
        self._on_file_failed   = on_file_failed or _noop

    @property
    def record(self) -> SessionRecord:
        return self._table[self.session_id]

    def _set_state(self, state: SessionState) -> None:
        record = self.record
        if record.state is not state:
            logger.debug(
                "Session %d: %s → %s", self.session_id, record.state.value, state.value,
            )
            record.state = state

    def _count(self, n: int) -> None:
        self.record.bytes_transferred += n
        self._metrics.record_bytes(n)

    def _begin_file(self, descriptor: FileDescriptor) -> None:
        record = self.record
        record.descriptor = descriptor
        record.bytes_transferred = 0

    def _end_file(self, location: str) -> None:
        record = self.record
        descriptor = record.descriptor
        record.descriptor = None
        record.files_done += 1
        self._set_state(SessionState.COMPLETE)
        logger.info(
            "Session %d: %s complete (%d bytes)",
            self.session_id, descriptor.path, descriptor.size,
        )
        self._on_file_complete(self.session_id, descriptor, location)

    def _fail(self, exc: TransferError) -> None:
        record = self.record
        logger.error(
            "Session %d (%s) failed in %s: %s",
            self.session_id, record.peer, record.state.value, exc,
        )
        record.state = SessionState.FAILED
        record.error = exc
        if record.descriptor is not None:
            descriptor = record.descriptor
            record.descriptor = None
            self._on_file_failed(self.session_id, descriptor, exc)

    async def close(self) -> None:
        await close_writer(self._writer)


# ---------------------------------------------------------------------------
# ReceiverSession
# ---------------------------------------------------------------------------

class ReceiverSession(_Session):
    """
    Receives frames from one accepted connection into a FileSink.

    Bytes that arrive together with a header are body bytes of that frame;
    anything beyond the declared size stays buffered for the next header.
    """

    def __init__(
        self,
        session_id: int,
        table: SessionTable,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        sink: FileSink,
        metrics: SessionMetrics,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        idle_timeout: Optional[float] = None,
        on_file_complete: Optional[FileCompleteCallback] = None,
        on_file_failed: Optional[FileFailedCallback] = None,
        on_sentinel: Optional[SentinelCallback] = None,
    ) -> None:
        super().__init__(
            session_id, table, reader, writer, metrics, chunk_size,
            on_file_complete, on_file_failed,
        )
        self._sink         = sink
        self._idle_timeout = idle_timeout
        self._on_sentinel  = on_sentinel or _noop
        self._buffer       = bytearray()

    async def run(self) -> SessionRecord:
        """Receive until sentinel, end-of-stream or failure. Never raises TransferError."""
        self._set_state(SessionState.AWAITING_HEADER)
        try:
            while True:
                frame = await self._read_header()
                if frame is None:
                    logger.debug("Session %d: peer closed at frame boundary", self.session_id)
                    break

                path, size = frame
                if is_sentinel(path, size):
                    self.record.saw_sentinel = True
                    logger.info("Session %d: sentinel received, no more files", self.session_id)
                    self._on_sentinel(self.session_id)
                    break

                await self._receive_body(FileDescriptor(path=path, size=size))
                self._set_state(SessionState.AWAITING_HEADER)

            self._set_state(SessionState.COMPLETE)
        except TransferError as exc:
            self._fail(exc)
        finally:
            await self.close()
        return self.record

    async def _read_header(self) -> Optional[tuple[str, int]]:
        """
        Returns:
            (path, size), or None on end-of-stream with nothing buffered.

        Raises:
            MalformedHeader: protocol violation
            ConnectionLost:  stream ended or failed inside a header
        """
        while True:
            try:
                path, size, consumed = decode_header(self._buffer)
            except IncompleteHeader:
                chunk = await read_some(self._reader, self._chunk_size, self._idle_timeout)
                if not chunk:
                    if self._buffer:
                        raise ConnectionLost(
                            f"Peer closed inside a header ({len(self._buffer)} bytes buffered)"
                        )
                    return None
                self._buffer.extend(chunk)
                continue

            del self._buffer[:consumed]
            return path, size

    async def _receive_body(self, descriptor: FileDescriptor) -> None:
        self._begin_file(descriptor)
        self._set_state(SessionState.STREAMING_BODY)
        fh, target = self._sink.open(descriptor.path, descriptor.size)
        try:
            prefix = bytes(self._buffer[:descriptor.size])
            del self._buffer[:len(prefix)]
            if prefix:
                try:
                    fh.write(prefix)
                except OSError as exc:
                    raise WriteError(f"Write to {target} failed: {exc}") from exc
                self._count(len(prefix))

            remaining = descriptor.size - len(prefix)
            if remaining:
                await pump_from_socket(
                    self._reader,
                    fh,
                    remaining,
                    chunk_size=self._chunk_size,
                    idle_timeout=self._idle_timeout,
                    progress=self._count,
                )
        finally:
            fh.close()

        self._end_file(str(target))


# ---------------------------------------------------------------------------
# SenderSession
# ---------------------------------------------------------------------------

class SenderSession(_Session):
    """
    Sends frames over one connected stream.

    The dispatcher calls send() once per claimed descriptor and finish()
    when it has nothing more for this connection.
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._set_state(SessionState.AWAITING_HEADER)

    async def send(self, descriptor: FileDescriptor) -> bool:
        """
        Write header + body for one file.

        Returns:
            True once the whole body has been handed to the socket, False if
            the session failed (the failure is already recorded and reported).
        """
        if self.record.state is SessionState.FAILED:
            return False

        self._begin_file(descriptor)
        self._set_state(SessionState.AWAITING_HEADER)
        try:
            fh = open_source(descriptor)
            with fh:
                await write_all(self._writer, encode_header(descriptor.path, descriptor.size))
                self._set_state(SessionState.STREAMING_BODY)
                await pump_to_socket(
                    fh,
                    self._writer,
                    chunk_size=self._chunk_size,
                    total=descriptor.size,
                    progress=self._count,
                )
        except TransferError as exc:
            self._fail(exc)
            return False

        self._end_file(descriptor.location)
        return True

    async def finish(self, send_sentinel: bool = True) -> SessionRecord:
        """Optionally send the sentinel frame, then close the connection."""
        record = self.record
        try:
            if send_sentinel and record.state is not SessionState.FAILED:
                await write_all(self._writer, encode_sentinel())
                logger.debug("Session %d: sentinel sent", self.session_id)
            if record.state is not SessionState.FAILED:
                self._set_state(SessionState.COMPLETE)
        except TransferError as exc:
            self._fail(exc)
        finally:
            await self.close()
        return record
