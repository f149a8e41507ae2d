"""
tcpdrop/connection.py

Connection lifecycle for both roles.

Sender:   resolve "host:port" to a list of endpoints and try them in order
          until one connects. Exhausting the list is UnreachableHost.
Receiver: bind + listen; asyncio re-arms accept() on its own, so new
          connections are taken while earlier sessions are still streaming.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable

from tcpdrop.config import CONNECT_TIMEOUT, LISTEN_BACKLOG, RETRY_BACKOFF
from tcpdrop.errors import UnreachableHost

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[
    [asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]
]


@dataclass(frozen=True)
class Endpoint:
    family: int
    proto: int
    sockaddr: tuple

    def __str__(self) -> str:
        host, port = self.sockaddr[0], self.sockaddr[1]
        if self.family == socket.AF_INET6:
            return f"[{host}]:{port}"
        return f"{host}:{port}"


def parse_address(address: str) -> tuple[str, int]:
    """
    Split "host:port" (or "[v6addr]:port") into its parts.

    Raises:
        ValueError: no port, or the port is not a number in 1..65535
    """
    host, sep, port_text = address.rpartition(":")
    if not sep or not host:
        raise ValueError(f"No port number specified in {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in {address!r}") from None
    if not 0 < port <= 65535:
        raise ValueError(f"Port out of range in {address!r}")
    return host, port


async def resolve(host: str, port: int) -> list[Endpoint]:
    """Resolve host/port to stream endpoints in resolver order."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise UnreachableHost(f"Cannot resolve {host}:{port}: {exc}") from exc

    endpoints = []
    for family, _type, proto, _canon, sockaddr in infos:
        ep = Endpoint(family=family, proto=proto, sockaddr=sockaddr)
        if ep not in endpoints:
            endpoints.append(ep)
    return endpoints


async def connect(
    host: str,
    port: int,
    timeout: float = CONNECT_TIMEOUT,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter, Endpoint]:
    """
    Connect to the first endpoint of host:port that accepts.

    Returns:
        (reader, writer, endpoint)

    Raises:
        UnreachableHost: resolution failed or every endpoint failed
    """
    loop = asyncio.get_running_loop()
    endpoints = await resolve(host, port)
    if not endpoints:
        raise UnreachableHost(f"No endpoints for {host}:{port}")

    last_error = None
    for ep in endpoints:
        sock = socket.socket(ep.family, socket.SOCK_STREAM, ep.proto)
        sock.setblocking(False)
        try:
            await asyncio.wait_for(loop.sock_connect(sock, ep.sockaddr), timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            # Partial socket is discarded; the next endpoint gets a fresh one.
            sock.close()
            last_error = exc
            logger.debug("Connect to %s failed: %r", ep, exc)
            continue

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        reader, writer = await asyncio.open_connection(sock=sock)
        logger.debug("Connected to %s", ep)
        return reader, writer, ep

    raise UnreachableHost(
        f"All {len(endpoints)} endpoint(s) for {host}:{port} failed: {last_error!r}"
    )


async def connect_with_retry(
    host: str,
    port: int,
    retries: int = 0,
    backoff: float = RETRY_BACKOFF,
    timeout: float = CONNECT_TIMEOUT,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter, Endpoint]:
    """
    connect() with bounded exponential backoff.

    retries=0 is a single attempt. The last UnreachableHost is re-raised
    once the attempts are used up.
    """
    attempt = 0
    while True:
        try:
            return await connect(host, port, timeout=timeout)
        except UnreachableHost as exc:
            if attempt >= retries:
                raise
            delay = backoff * (2 ** attempt)
            attempt += 1
            logger.warning(
                "%s — retry %d/%d in %.2fs", exc, attempt, retries, delay,
            )
            await asyncio.sleep(delay)


async def listen(
    host: str,
    port: int,
    handler: ConnectionHandler,
    backlog: int = LISTEN_BACKLOG,
) -> asyncio.AbstractServer:
    """Bind, listen and start accepting; handler runs once per connection."""
    server = await asyncio.start_server(
        handler,
        host=host,
        port=port,
        backlog=backlog,
        reuse_address=True,
    )
    for sock in server.sockets:
        logger.debug("Listening on %s", sock.getsockname())
    return server


async def close_writer(writer: asyncio.StreamWriter) -> None:
    """Close a stream, ignoring errors from an already broken socket."""
    if writer.is_closing():
        return
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError) as exc:
        logger.debug("Ignoring error on close: %r", exc)
