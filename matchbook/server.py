"""Listening side: accepts client connections on a Unix socket and feeds the engine."""

from __future__ import annotations

import contextlib
import os
import signal
import socket
import sys
import threading
from typing import NoReturn, Optional, Sequence, Union

from matchbook.engine import Engine
from matchbook.protocol import ClientConnection

PROG = "matchbook-server"
LISTEN_BACKLOG = 8


class _Shutdown(Exception):
    """Raised from a signal handler to leave the accept loop."""


def _raise_shutdown(signum: int, frame: object) -> NoReturn:
    raise _Shutdown(signum)


def serve(socket_path: Union[str, "os.PathLike[str]"], engine: Engine) -> NoReturn:
    """Bind to socket_path and hand every accepted connection to engine.

    Runs until accepting fails or an exception interrupts it. Once the
    socket is bound, it is closed and its path removed on the way out.
    """
    path = os.fspath(socket_path)
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        listener.bind(path)
    except OSError:
        listener.close()
        raise
    try:
        listener.listen(LISTEN_BACKLOG)
        while True:
            connection, _ = listener.accept()
            engine.accept(ClientConnection(connection))
    finally:
        listener.close()
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the matching engine on the socket path given as the first argument."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        print(f"Usage: {PROG} <socket path>", file=sys.stderr)
        return 1

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, _raise_shutdown)
    try:
        serve(args[0], Engine())
    except _Shutdown:
        return 0
    except OSError as exc:
        print(f"{PROG}: {exc}", file=sys.stderr)
        return 1
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
    return 0


if __name__ == "__main__":
    sys.exit(main())