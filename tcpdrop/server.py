"""
tcpdrop/server.py

tcpdrop receiver (server side).

Responsibilities:
  - Listen on a TCP port for sender connections
  - Run one ReceiverSession per accepted connection, concurrently
  - Keep accepting regardless of how individual sessions end
  - Stop on an external signal, or on the first sentinel when configured

Architecture:
  - One asyncio event loop; asyncio.Server re-arms accept on its own
  - One task per connection, tracked in a SessionTable by session id
  - Files land under ReceiverConfig.output_dir through a FileSink
"""

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from tcpdrop.config import ReceiverConfig
from tcpdrop.connection import close_writer, listen
from tcpdrop.errors import TransferError
from tcpdrop.files import FileSink
from tcpdrop.metrics import MetricsCollector
from tcpdrop.protocol import FileDescriptor
from tcpdrop.session import (
    FileCompleteCallback,
    FileFailedCallback,
    ReceiverSession,
    SessionState,
    SessionTable,
)

logger = logging.getLogger(__name__)


class TransferServer:
    """
    TCP server that receives files from tcpdrop senders.

    Usage:
        server = TransferServer(ReceiverConfig(port=1234, output_dir="./received"))
        await server.start()
        await server.wait_closed()      # until stop() / signal / sentinel
    """

    def __init__(
        self,
        config: ReceiverConfig,
        on_file_complete: Optional[FileCompleteCallback] = None,
        on_file_failed: Optional[FileFailedCallback] = None,
    ) -> None:
        self.config  = config
        self.sink    = FileSink(config.output_dir)
        self.table   = SessionTable()
        self.metrics = MetricsCollector()

        self._user_complete = on_file_complete
        self._user_failed   = on_file_failed
        self._server: Optional[asyncio.AbstractServer] = None
        self._tasks: set[asyncio.Task] = set()
        self._closed: Optional[asyncio.Event] = None
        self.sentinels_received = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Bind and start accepting. Returns once the socket is listening."""
        Path(self.config.output_dir).mkdir(parents=True, exist_ok=True)
        self._closed = asyncio.Event()
        self._server = await listen(
            self.config.host,
            self.config.port,
            self._handle_connection,
            backlog=self.config.backlog,
        )
        logger.info("Server started on %s:%d", self.config.host, self.port)

    @property
    def port(self) -> int:
        """Bound port (differs from config.port when that was 0)."""
        if self._server is None or not self._server.sockets:
            return self.config.port
        return self._server.sockets[0].getsockname()[1]

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    def stop(self) -> None:
        """Stop accepting. Sessions already streaming run to completion."""
        if self._server is not None and self._server.is_serving():
            self._server.close()
            logger.info("Server stopped accepting connections")
        self._maybe_closed()

    async def shutdown(self) -> None:
        """Stop accepting and cancel every in-flight session."""
        self.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._maybe_closed()

    async def wait_closed(self) -> None:
        """Wait until the server stopped accepting and all sessions ended."""
        if self._closed is None:
            return
        await self._closed.wait()
        if self._server is not None:
            await self._server.wait_closed()

    async def serve_forever(self) -> None:
        """start(), install SIGINT/SIGTERM handlers, and block until closed."""
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._on_signal)
            except (NotImplementedError, RuntimeError):
                # Windows event loops and non-main threads have no signal support.
                pass

        print(f"\n  tcpdrop server listening on {self.config.host}:{self.port}")
        print(f"  Output directory : {os.path.abspath(self.config.output_dir)}")
        print(f"  Press Ctrl-C to stop\n")

        await self.wait_closed()

    def _on_signal(self) -> None:
        print("\n  Shutting down server...")
        asyncio.ensure_future(self.shutdown())

    def _maybe_closed(self) -> None:
        if self._closed is None or self._tasks:
            return
        if self._server is None or not self._server.is_serving():
            self._closed.set()

    # ------------------------------------------------------------------
    # Per-connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peername = writer.get_extra_info("peername")
        peer = f"{peername[0]}:{peername[1]}" if peername else "?"

        if not self.is_serving:
            logger.info("Rejecting connection from %s: server stopping", peer)
            await close_writer(writer)
            return

        record = self.table.open(role="receiver", peer=peer)
        sm = self.metrics.register_session(record.session_id)
        logger.info("New connection from %s (session %d)", peer, record.session_id)

        session = ReceiverSession(
            record.session_id,
            self.table,
            reader,
            writer,
            self.sink,
            sm,
            chunk_size=self.config.chunk_size,
            idle_timeout=self.config.idle_timeout,
            on_file_complete=self._file_complete,
            on_file_failed=self._file_failed,
            on_sentinel=self._sentinel,
        )

        task = asyncio.current_task()
        self._tasks.add(task)
        try:
            record = await session.run()
        finally:
            self._tasks.discard(task)
            failed = self.table[record.session_id].state is SessionState.FAILED
            self.metrics.unregister_session(record.session_id, failed=failed)
            self.table.remove(record.session_id)
            self._maybe_closed()

        logger.info(
            "Session %d from %s ended %s after %d file(s)",
            record.session_id, peer, record.state.value, record.files_done,
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _file_complete(self, session_id: int, descriptor: FileDescriptor, location: str) -> None:
        self.metrics.record_file(session_id, descriptor.path, descriptor.size, ok=True)
        print(f"  ✓ Received {descriptor.path}  ({descriptor.size / 1e6:.2f} MB) → {location}")
        if self._user_complete is not None:
            self._user_complete(session_id, descriptor, location)

    def _file_failed(self, session_id: int, descriptor: FileDescriptor, error: TransferError) -> None:
        self.metrics.record_file(session_id, descriptor.path, descriptor.size, ok=False)
        print(f"  ✗ Failed {descriptor.path}: {error}")
        if self._user_failed is not None:
            self._user_failed(session_id, descriptor, error)

    def _sentinel(self, session_id: int) -> None:
        self.sentinels_received += 1
        if self.config.stop_on_sentinel:
            logger.info("Session %d sent the sentinel; stopping", session_id)
            self.stop()

    def get_stats(self) -> dict:
        stats = self.metrics.snapshot()
        stats["serving"] = self.is_serving
        stats["sentinels_received"] = self.sentinels_received
        return stats
