"""
tcpdrop/sender.py

Sender-side dispatcher.

  1. Holds the TransferQueue of FileDescriptors
  2. Opens a connection; as soon as it connects, it claims a descriptor and
     the next connection attempt starts (at most one attempt pending)
  3. Each connection sends its frame(s), then the sentinel, then closes
  4. Once the queue is empty no new connection is opened; run() returns
     when every in-flight session has finished

No framing code here (session.py / protocol.py), no socket code
(connection.py).
"""

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Optional

from tcpdrop.config import SenderConfig
from tcpdrop.connection import connect_with_retry
from tcpdrop.errors import FileOpenFailure, TransferError, UnreachableHost
from tcpdrop.metrics import MetricsCollector
from tcpdrop.protocol import FileDescriptor
from tcpdrop.session import (
    FileCompleteCallback,
    FileFailedCallback,
    SenderSession,
    SessionState,
    SessionTable,
)

logger = logging.getLogger(__name__)


class TransferQueue:
    """
    Pending descriptors shared by every connection of a run.

    claim() hands each descriptor out exactly once, in FIFO order. All
    callers run on the event loop thread, so a claim never interleaves
    with another.
    """

    def __init__(self, descriptors: Iterable[FileDescriptor] = ()) -> None:
        self._pending: deque = deque()
        for descriptor in descriptors:
            self.put(descriptor)

    def put(self, descriptor: FileDescriptor) -> None:
        if descriptor.is_sentinel:
            raise ValueError("The sentinel frame can not be queued as a file")
        self._pending.append(descriptor)

    def claim(self) -> Optional[FileDescriptor]:
        if not self._pending:
            return None
        return self._pending.popleft()

    def drain(self) -> list[FileDescriptor]:
        """Remove and return everything still pending."""
        items = list(self._pending)
        self._pending.clear()
        return items

    def __len__(self) -> int:
        return len(self._pending)

    def __bool__(self) -> bool:
        return bool(self._pending)


@dataclass
class TransferReport:
    """Outcome of one sender run."""
    completed: list = field(default_factory=list)     # FileDescriptors
    failed: list = field(default_factory=list)        # (FileDescriptor, error)
    unsent: list = field(default_factory=list)        # FileDescriptors never claimed
    fatal: Optional[TransferError] = None
    stats: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.fatal is None and not self.failed and not self.unsent


class TransferSender:
    """
    Sends a queue of files to one receiver over as many connections as
    the configuration allows.

    Usage:
        sender = TransferSender(walk_descriptors(paths), SenderConfig(host, port))
        report = await sender.run()
    """

    def __init__(
        self,
        descriptors: Iterable[FileDescriptor],
        config: SenderConfig,
        on_file_complete: Optional[FileCompleteCallback] = None,
        on_file_failed: Optional[FileFailedCallback] = None,
    ) -> None:
        self.config  = config
        self.queue   = TransferQueue(descriptors)
        self.table   = SessionTable()
        self.metrics = MetricsCollector()

        self._user_complete = on_file_complete
        self._user_failed   = on_file_failed
        self._report        = TransferReport()
        self._tasks: set[asyncio.Task] = set()
        self._connecting    = 0
        self._stopped       = False
        self._done: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def run(self) -> TransferReport:
        """Send every queued file; returns once all sessions have ended."""
        self._done = asyncio.Event()
        total = len(self.queue)
        logger.info(
            "Sending %d file(s) to %s:%d (max connections: %s, pipeline: %s)",
            total, self.config.host, self.config.port,
            self.config.max_connections or "unlimited", self.config.pipeline,
        )

        self._maybe_spawn()
        self._check_done()
        await self._done.wait()

        self._report.unsent.extend(self.queue.drain())
        self.metrics.finish()
        self._report.stats = self.metrics.snapshot()
        return self._report

    def stop(self, reason: Optional[TransferError] = None) -> None:
        """Open no further connections; in-flight sessions run to completion."""
        if reason is not None and self._report.fatal is None:
            self._report.fatal = reason
        self._stopped = True
        self._check_done()

    # ------------------------------------------------------------------
    # Internal: connection management
    # ------------------------------------------------------------------

    def _open_connections(self) -> int:
        return len(self._tasks)

    def _maybe_spawn(self) -> None:
        if self._stopped or self._connecting or not self.queue:
            return
        limit = self.config.max_connections
        if limit is not None and self._open_connections() >= limit:
            return

        self._connecting += 1
        task = asyncio.create_task(self._connection())
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            logger.error("Connection task crashed: %r", exc)
            self.stop(TransferError(f"Connection task crashed: {exc!r}"))
        self._maybe_spawn()
        self._check_done()

    def _check_done(self) -> None:
        if self._done is None or self._tasks:
            return
        if self._stopped or not self.queue:
            self._done.set()

    async def _connection(self) -> None:
        record = self.table.open(role="sender")
        cfg = self.config
        try:
            reader, writer, endpoint = await connect_with_retry(
                cfg.host, cfg.port,
                retries=cfg.connect_retries,
                backoff=cfg.retry_backoff,
                timeout=cfg.connect_timeout,
            )
        except UnreachableHost as exc:
            record.state = SessionState.FAILED
            record.error = exc
            self.table.remove(record.session_id)
            logger.error("Giving up: %s", exc)
            self.stop(exc)
            return
        finally:
            self._connecting -= 1

        record.peer = str(endpoint)
        sm = self.metrics.register_session(record.session_id)
        session = SenderSession(
            record.session_id,
            self.table,
            reader,
            writer,
            sm,
            cfg.chunk_size,
            self._file_complete,
            self._file_failed,
        )

        # Claim before the next attempt starts so it only fires if work remains.
        descriptor = self.queue.claim()
        self._maybe_spawn()

        try:
            while descriptor is not None:
                if not await session.send(descriptor):
                    break
                if not cfg.pipeline or self._stopped:
                    break
                descriptor = self.queue.claim()

            await session.finish(send_sentinel=cfg.send_sentinel and not self.queue)
        finally:
            failed = session.record.state is SessionState.FAILED
            self.metrics.unregister_session(record.session_id, failed=failed)
            if failed and cfg.abort_on_open_failure and isinstance(
                session.record.error, FileOpenFailure
            ):
                self.stop(session.record.error)
            self.table.remove(record.session_id)

    # ------------------------------------------------------------------
    # Internal: per-file notifications
    # ------------------------------------------------------------------

    def _file_complete(self, session_id: int, descriptor: FileDescriptor, location: str) -> None:
        self._report.completed.append(descriptor)
        self.metrics.record_file(session_id, descriptor.path, descriptor.size, ok=True)
        if self._user_complete is not None:
            self._user_complete(session_id, descriptor, location)

    def _file_failed(self, session_id: int, descriptor: FileDescriptor, error: TransferError) -> None:
        self._report.failed.append((descriptor, error))
        self.metrics.record_file(session_id, descriptor.path, descriptor.size, ok=False)
        if self._user_failed is not None:
            self._user_failed(session_id, descriptor, error)


# ---------------------------------------------------------------------------
# Console front-end
# ---------------------------------------------------------------------------

def print_banner(descriptors: list, config: SenderConfig) -> None:
    total = sum(d.size for d in descriptors)
    print(f"\n  tcpdrop sender")
    print(f"  Files       : {len(descriptors)}")
    print(f"  Size        : {total / 1e6:.2f} MB")
    print(f"  Receiver    : {config.host}:{config.port}")
    print(f"  Connections : {config.max_connections or 'unlimited'}"
          f"{'  (pipelined)' if config.pipeline else ''}\n")


def print_summary(report: TransferReport) -> None:
    stats  = report.stats
    status = "✓ COMPLETED" if report.success else "✗ FAILED"
    fatal  = f" — {report.fatal}" if report.fatal else ""

    print(f"\n  {'─'*56}")
    print(f"  Transfer Summary")
    print(f"  {'─'*56}")
    print(f"  Status          : {status}{fatal}")
    print(f"  Files sent      : {len(report.completed)}")
    print(f"  Files failed    : {len(report.failed)}")
    print(f"  Files unsent    : {len(report.unsent)}")
    print(f"  Bytes           : {stats.get('bytes_total', 0) / 1e6:.2f} MB")
    print(f"  Duration        : {stats.get('elapsed_s', 0):.2f} s")
    print(f"  Avg throughput  : {stats.get('throughput_mbps', 0):.2f} Mbps")
    print(f"  Connections     : {stats.get('sessions_total', 0)}")
    for descriptor, error in report.failed:
        print(f"    ✗ {descriptor.path}: {error}")
    print(f"  {'─'*56}\n")


async def send_files(descriptors: list, config: SenderConfig) -> TransferReport:
    """Console entry: banner, run, summary."""
    print_banner(descriptors, config)

    def _done(session_id: int, descriptor: FileDescriptor, location: str) -> None:
        print(f"  ✓ {descriptor.path}  ({descriptor.size / 1e6:.2f} MB)  [{os.path.basename(location)}]")

    sender = TransferSender(descriptors, config, on_file_complete=_done)
    report = await sender.run()
    print_summary(report)
    return report
