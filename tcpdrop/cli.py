#!/usr/bin/env python3
"""
tcpdrop — CLI entry point

Subcommands
───────────
  start   Start the tcpdrop receiver server
  send    Send files and directories to a running receiver

Usage examples
──────────────
  # Receive on port 1234, save files under ./received/
  tcpdrop start --port 1234 --output-dir ./received

  # Send a file and a directory, one connection per file, all in parallel
  tcpdrop send 192.168.1.50:1234 report.pdf photos/

  # Send over at most two connections, each carrying several files
  tcpdrop send 192.168.1.50:1234 photos/ --connections 2 --pipeline
"""

import argparse
import asyncio
import logging
import sys

from tcpdrop.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_HOST,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PORT,
    CONNECT_TIMEOUT,
    ReceiverConfig,
    SenderConfig,
)

# ---------------------------------------------------------------------------
# Logging setup (called before anything else so imports log correctly)
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    fmt   = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
    datefmt = "%H:%M:%S"
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt)
    # Per-chunk pump logs are only interesting when debugging
    if not verbose:
        logging.getLogger("tcpdrop.pump").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Subcommand: start
# ---------------------------------------------------------------------------

def cmd_start(args: argparse.Namespace) -> int:
    """Start the tcpdrop receiver server."""
    from tcpdrop.server import TransferServer

    try:
        config = ReceiverConfig(
            host=args.host,
            port=args.port,
            output_dir=args.output_dir,
            chunk_size=args.chunk_size,
            idle_timeout=args.idle_timeout,
            stop_on_sentinel=args.stop_on_sentinel,
        )
    except ValueError as exc:
        print(f"\n  Error: {exc}", file=sys.stderr)
        return 1

    server = TransferServer(config)
    try:
        asyncio.run(server.serve_forever())   # blocks
    except OSError as exc:
        print(f"\n  Error: cannot listen on {args.host}:{args.port}: {exc}", file=sys.stderr)
        return 1
    return 0


# ---------------------------------------------------------------------------
# Subcommand: send
# ---------------------------------------------------------------------------

def cmd_send(args: argparse.Namespace) -> int:
    """Send files to a tcpdrop receiver."""
    from tcpdrop.connection import parse_address
    from tcpdrop.files import walk_descriptors
    from tcpdrop.sender import send_files

    try:
        host, port = parse_address(args.address)
        config = SenderConfig(
            host=host,
            port=port,
            chunk_size=args.chunk_size,
            max_connections=args.connections,
            pipeline=args.pipeline,
            send_sentinel=not args.no_sentinel,
            connect_timeout=args.timeout,
            connect_retries=args.retries,
        )
        descriptors = list(walk_descriptors(args.paths))
    except (ValueError, FileNotFoundError) as exc:
        print(f"\n  Error: {exc}", file=sys.stderr)
        return 1

    if not descriptors:
        print("\n  Nothing to send", file=sys.stderr)
        return 1

    report = asyncio.run(send_files(descriptors, config))
    return 0 if report.success else 1


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcpdrop",
        description="tcpdrop — streaming multi-file transfer over plain TCP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    # ── start ──────────────────────────────────────────────────────────
    p_start = sub.add_parser(
        "start",
        help="Start the tcpdrop receiver server",
        description="Start the tcpdrop server (receiver). Accepts connections until stopped.",
    )
    p_start.add_argument(
        "--host", default=DEFAULT_HOST, metavar="HOST",
        help=f"Interface to bind (default: {DEFAULT_HOST})",
    )
    p_start.add_argument(
        "--port", type=int, default=DEFAULT_PORT, metavar="PORT",
        help=f"TCP port to listen on (default: {DEFAULT_PORT})",
    )
    p_start.add_argument(
        "--output-dir", default=DEFAULT_OUTPUT_DIR, metavar="DIR",
        help=f"Directory to save received files (default: {DEFAULT_OUTPUT_DIR})",
    )
    p_start.add_argument(
        "--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, metavar="BYTES",
        help=f"Socket read size (default: {DEFAULT_CHUNK_SIZE})",
    )
    p_start.add_argument(
        "--idle-timeout", type=float, default=None, metavar="SECS",
        help="Drop a session that sends nothing for this long (default: never)",
    )
    p_start.add_argument(
        "--stop-on-sentinel", action="store_true",
        help="Exit after the first sender signals it has no more files",
    )

    # ── send ───────────────────────────────────────────────────────────
    p_send = sub.add_parser(
        "send",
        help="Send files to a tcpdrop server",
        description="Send files and directories, one or more connections in parallel.",
    )
    p_send.add_argument(
        "address", metavar="HOST:PORT",
        help="Receiver address",
    )
    p_send.add_argument(
        "paths", nargs="+", metavar="PATH",
        help="Files or directories to send",
    )
    p_send.add_argument(
        "--connections", type=int, default=None, metavar="N",
        help="Maximum parallel connections (default: unlimited)",
    )
    p_send.add_argument(
        "--pipeline", action="store_true",
        help="Send several files back to back on each connection",
    )
    p_send.add_argument(
        "--no-sentinel", action="store_true",
        help="Close connections without the end-of-files sentinel frame",
    )
    p_send.add_argument(
        "--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE, metavar="BYTES",
        help=f"File read size (default: {DEFAULT_CHUNK_SIZE})",
    )
    p_send.add_argument(
        "--retries", type=int, default=0, metavar="N",
        help="Connection retries with exponential backoff (default: 0)",
    )
    p_send.add_argument(
        "--timeout", type=float, default=CONNECT_TIMEOUT, metavar="SECS",
        help=f"Per-endpoint connect timeout (default: {CONNECT_TIMEOUT})",
    )

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv=None) -> None:
    parser = build_parser()
    args   = parser.parse_args(argv)
    _setup_logging(args.verbose)

    dispatch = {
        "start": cmd_start,
        "send":  cmd_send,
    }

    handler = dispatch.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(handler(args))


if __name__ == "__main__":
    main()
