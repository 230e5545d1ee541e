"""
lanchat: subnet broadcast chat and file transfer, CLI entry point.

Usage:
    python -m lanchat [--port N] [--broadcast ADDR] [--dir DIR]
                      [--chunk-size N] [--log-dir DIR | --no-log]
                      [--no-serve] [--quiet] [-v]

Everything typed is broadcast to the subnet; everything heard is printed.
Type ``:send <file>``, ``:get <file>``, ``:log`` or ``exit``.

Nothing is encrypted or authenticated. Anyone on the subnet can read the
chat, and with serving enabled anyone can fetch any file this process can
read. Use --no-serve on machines you care about.
"""

from __future__ import annotations

import argparse
import functools
import logging
import sys
from pathlib import Path

from .chatlog import ChatLog
from .console import Console, LineReader
from .progress import NullProgress, ProgressTracker
from .protocol import BROADCAST_ADDRESS, CHUNK_SIZE, DEFAULT_BASE_PORT, RECV_BUFFER_SIZE
from .registry import TransferRegistry
from .session import ChatSession
from .transport import Transport, TransportError


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def _setup_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        level=level,
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------

def cmd_chat(args: argparse.Namespace) -> int:
    dest = Path(args.dir)
    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        print(f"Error: cannot use download directory {dest}: {exc}", file=sys.stderr)
        return 1

    transport = Transport(base_port=args.port, broadcast_address=args.broadcast)
    try:
        transport.open()
    except TransportError as exc:
        print(f"I was unable to set up the network: {exc}", file=sys.stderr)
        return exc.exit_code

    registry = TransferRegistry(dest_dir=dest)
    chatlog = None
    if not args.no_log:
        chatlog = ChatLog(directory=args.log_dir)
        if not chatlog.open():
            chatlog = None

    if args.quiet:
        progress_factory = NullProgress
    else:
        progress_factory = functools.partial(ProgressTracker, chunk_size=args.chunk_size)

    with ChatSession(transport, registry, chunk_size=args.chunk_size,
                     serve_gets=not args.no_serve) as session:
        print(f"[lanchat] sending on port {transport.send_port}, "
              f"listening on port {transport.receive_port}, saving to {dest}")
        print("[lanchat] :send <file>  :get <file>  :log  exit\n")
        console = Console(session, chatlog, LineReader(sys.stdin.fileno()),
                          progress_factory=progress_factory)
        try:
            return console.run()
        finally:
            if chatlog is not None:
                chatlog.close()


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lanchat",
        description="Subnet broadcast chat and file transfer over UDP")
    parser.add_argument("--port", type=int, default=DEFAULT_BASE_PORT,
                        help=f"Base UDP port; base and base+1 are used (default {DEFAULT_BASE_PORT})")
    parser.add_argument("--broadcast", default=BROADCAST_ADDRESS,
                        help=f"Destination address for every datagram (default {BROADCAST_ADDRESS})")
    parser.add_argument("--dir", default=".",
                        help="Directory to save received files (default: current directory)")
    parser.add_argument("--chunk-size", type=int, default=CHUNK_SIZE,
                        help=f"Bytes of file data per datagram (default {CHUNK_SIZE})")
    parser.add_argument("--log-dir", default=".",
                        help="Directory for the chat transcript (default: current directory)")
    parser.add_argument("--no-log", action="store_true",
                        help="Do not write a chat transcript")
    parser.add_argument("--no-serve", action="store_true",
                        help="Ignore :get requests from other machines")
    parser.add_argument("--quiet", action="store_true",
                        help="No progress bars, warnings only")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not 0 < args.chunk_size <= RECV_BUFFER_SIZE:
        parser.error(f"--chunk-size must be between 1 and {RECV_BUFFER_SIZE}")
    _setup_logging(args.verbose, args.quiet)
    sys.exit(cmd_chat(args))


if __name__ == "__main__":
    main()
