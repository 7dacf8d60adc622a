"""Command-line client: reads orders as text and sends them to the engine."""

from __future__ import annotations

import os
import re
import select
import socket
import sys
import threading
from typing import Iterable, Optional, Sequence, Tuple

from matchbook.protocol import INSTRUMENT_LENGTH, ClientCommand, CommandType, ProtocolError

PROG = "matchbook-client"

_UINT = re.compile(r"\s*([+-]?\d+)")
_WORD = re.compile(r"\s*(\S{1,%d})" % INSTRUMENT_LENGTH)
_LETTERS = {"B": CommandType.BUY, "S": CommandType.SELL, "C": CommandType.CANCEL}


class _ScanError(Exception):
    pass


def _scan_uint(text: str, pos: int) -> Tuple[int, int]:
    match = _UINT.match(text, pos)
    if match is None:
        raise _ScanError
    return int(match.group(1)) % (1 << 32), match.end()


def _scan_word(text: str, pos: int) -> Tuple[str, int]:
    match = _WORD.match(text, pos)
    if match is None:
        raise _ScanError
    return match.group(1), match.end()


def parse_line(line: str) -> Optional[ClientCommand]:
    """Parse one input line; return None for blank lines and comments.

    Raises ValueError for a line that is not a valid command.
    """
    if not line or line[0] in "#\n":
        return None
    shown = line.rstrip("\n")
    command_type = _LETTERS.get(line[0])
    if command_type is None:
        raise ValueError(f"Invalid command '{line[0]}'")
    rest = line[1:]
    if command_type is CommandType.CANCEL:
        try:
            order_id, _ = _scan_uint(rest, 0)
        except _ScanError:
            raise ValueError(f"Invalid cancel order: {shown}") from None
        return ClientCommand(command_type, order_id)
    try:
        order_id, pos = _scan_uint(rest, 0)
        instrument, pos = _scan_word(rest, pos)
        price, pos = _scan_uint(rest, pos)
        count, _ = _scan_uint(rest, pos)
    except _ScanError:
        raise ValueError(f"Invalid new order: {shown}") from None
    return ClientCommand(command_type, order_id, price, count, instrument)


def _watch_hangup(fd: int, exiting: threading.Event) -> None:
    poller = select.poll()
    poller.register(fd, 0)
    while not exiting.is_set():
        try:
            events = poller.poll()
        except OSError as exc:
            print(f"poll: {exc}", file=sys.stderr, flush=True)
            os._exit(1)
        if exiting.is_set():
            return
        for _, mask in events:
            if mask & select.POLLNVAL:
                return
            if mask & (select.POLLERR | select.POLLHUP):
                print("Connection closed by server", file=sys.stderr, flush=True)
                os._exit(0)


def _send_commands(sock: socket.socket, lines: Iterable[str]) -> int:
    for line in lines:
        try:
            command = parse_line(line)
        except ValueError as exc:
            print(exc, file=sys.stderr)
            return 1
        if command is None:
            continue
        try:
            data = command.pack()
        except ProtocolError as exc:
            print(f"Invalid new order: {line.rstrip(chr(10))} ({exc})", file=sys.stderr)
            return 1
        try:
            sock.sendall(data)
        except OSError:
            print("Failed to write command", file=sys.stderr)
            return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Send the commands read from standard input to the engine's socket."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print(f"Usage: {PROG} <path of socket to connect to> < <input>", file=sys.stderr)
        return 1

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.connect(args[0])
    except OSError as exc:
        sock.close()
        print(f"connect: {exc}", file=sys.stderr)
        return 1

    exiting = threading.Event()
    watcher = threading.Thread(target=_watch_hangup, args=(sock.fileno(), exiting), daemon=True)
    watcher.start()
    try:
        return _send_commands(sock, sys.stdin)
    finally:
        exiting.set()
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        watcher.join(timeout=1.0)
        sock.close()


if __name__ == "__main__":
    sys.exit(main())