"""
tcpdrop/config.py

Defaults and the configuration objects handed to the sender and the
receiver at startup. Nothing here is mutated at runtime.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_HOST       = "0.0.0.0"
DEFAULT_PORT       = 1234
DEFAULT_OUTPUT_DIR = "./received"

DEFAULT_CHUNK_SIZE = 40960          # bytes per pump read
MIN_CHUNK_SIZE     = 1024
MAX_CHUNK_SIZE     = 1024 * 1024

CONNECT_TIMEOUT    = 20.0           # seconds per endpoint attempt
RETRY_BACKOFF      = 0.5            # first retry delay, doubled each attempt
LISTEN_BACKLOG     = 64


def clamp_chunk_size(chunk_size: int) -> int:
    return max(MIN_CHUNK_SIZE, min(MAX_CHUNK_SIZE, int(chunk_size)))


@dataclass
class ReceiverConfig:
    """
    Receiver (server) settings.

    Args:
        host:             Interface to bind
        port:             TCP port to listen on (0 picks a free port)
        output_dir:       Root directory for received files
        chunk_size:       Bytes per socket read while streaming a body
        backlog:          listen() backlog
        idle_timeout:     Seconds a session may wait for bytes (None = forever)
        stop_on_sentinel: Stop accepting once any connection sends a sentinel
    """
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    output_dir: str = DEFAULT_OUTPUT_DIR
    chunk_size: int = DEFAULT_CHUNK_SIZE
    backlog: int = LISTEN_BACKLOG
    idle_timeout: Optional[float] = None
    stop_on_sentinel: bool = False

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}")
        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        self.chunk_size = clamp_chunk_size(self.chunk_size)


@dataclass
class SenderConfig:
    """
    Sender settings.

    Args:
        host, port:            Receiver address
        chunk_size:            Bytes per file read while streaming a body
        max_connections:       Concurrent connections (None = unlimited)
        pipeline:              Keep sending queued files on an open connection
        send_sentinel:         Send the sentinel frame before closing a connection
        connect_timeout:       Seconds per endpoint connect attempt
        connect_retries:       Extra attempts after UnreachableHost (0 = none)
        retry_backoff:         Delay before the first retry, doubled each time
        abort_on_open_failure: Treat an unopenable source file as fatal for the run
    """
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_connections: Optional[int] = None
    pipeline: bool = False
    send_sentinel: bool = True
    connect_timeout: float = CONNECT_TIMEOUT
    connect_retries: int = 0
    retry_backoff: float = RETRY_BACKOFF
    abort_on_open_failure: bool = False

    def __post_init__(self) -> None:
        if not 0 < self.port <= 65535:
            raise ValueError(f"Invalid port: {self.port}")
        if self.max_connections is not None and self.max_connections < 1:
            raise ValueError("max_connections must be at least 1")
        if self.connect_retries < 0:
            raise ValueError("connect_retries must be >= 0")
        self.chunk_size = clamp_chunk_size(self.chunk_size)
