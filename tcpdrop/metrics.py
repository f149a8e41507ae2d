"""
tcpdrop/metrics.py

Per-session transfer counters and the run-wide aggregate used for the
end-of-run summary.

Everything here is touched from the event loop thread only, so there is
no locking: a counter update never straddles an await.
"""

import time
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class SessionMetrics:
    """Byte and file counters for one connection."""
    session_id: int
    bytes_transferred: int = 0
    files_completed: int = 0
    files_failed: int = 0
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None

    def record_bytes(self, n: int) -> None:
        self.bytes_transferred += n

    def close(self) -> None:
        if self.end_time is None:
            self.end_time = time.monotonic()

    @property
    def elapsed(self) -> float:
        return (self.end_time or time.monotonic()) - self.start_time


class MetricsCollector:
    """
    Aggregates metrics across all sessions of one run.

        files_completed / files_failed — file outcomes
        bytes_total                    — body bytes over all sessions
        throughput_mbps                — bytes_total over wall-clock time
    """

    def __init__(self) -> None:
        self._sessions: dict[int, SessionMetrics] = {}
        self._start_time = time.monotonic()
        self._end_time: Optional[float] = None
        self._bytes_closed = 0
        self.files_completed = 0
        self.files_failed = 0
        self.sessions_total = 0
        self.sessions_failed = 0

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def register_session(self, session_id: int) -> SessionMetrics:
        sm = SessionMetrics(session_id=session_id)
        self._sessions[session_id] = sm
        self.sessions_total += 1
        logger.debug("MetricsCollector: registered session %d", session_id)
        return sm

    def unregister_session(self, session_id: int, failed: bool = False) -> None:
        sm = self._sessions.pop(session_id, None)
        if sm is None:
            return
        sm.close()
        self._bytes_closed += sm.bytes_transferred
        if failed:
            self.sessions_failed += 1
        logger.debug(
            "MetricsCollector: session %d closed, %d bytes in %.2fs",
            session_id, sm.bytes_transferred, sm.elapsed,
        )

    # ------------------------------------------------------------------
    # File outcomes
    # ------------------------------------------------------------------

    def record_file(self, session_id: int, path: str, size: int, ok: bool) -> None:
        sm = self._sessions.get(session_id)
        if ok:
            self.files_completed += 1
            if sm is not None:
                sm.files_completed += 1
        else:
            self.files_failed += 1
            if sm is not None:
                sm.files_failed += 1

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def finish(self) -> None:
        if self._end_time is None:
            self._end_time = time.monotonic()

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    @property
    def bytes_total(self) -> int:
        live = sum(sm.bytes_transferred for sm in self._sessions.values())
        return self._bytes_closed + live

    @property
    def elapsed(self) -> float:
        return (self._end_time or time.monotonic()) - self._start_time

    def snapshot(self) -> dict:
        elapsed = self.elapsed
        throughput = (self.bytes_total * 8) / (elapsed * 1e6) if elapsed > 0 else 0.0
        return {
            "files_completed": self.files_completed,
            "files_failed":    self.files_failed,
            "bytes_total":     self.bytes_total,
            "sessions_total":  self.sessions_total,
            "sessions_failed": self.sessions_failed,
            "active_sessions": self.active_sessions,
            "elapsed_s":       round(elapsed, 2),
            "throughput_mbps": round(throughput, 2),
        }
