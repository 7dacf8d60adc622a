"""Wire format of client commands and the text lines the engine reports."""

from __future__ import annotations

import enum
import socket
import struct
import sys
import threading
from dataclasses import dataclass
from typing import IO, Iterator, Optional

INSTRUMENT_LENGTH = 8

# type, order id, price, count, NUL-terminated instrument, padding to 4 bytes
_COMMAND_STRUCT = struct.Struct("<IIII9s3x")
COMMAND_SIZE = _COMMAND_STRUCT.size


class ProtocolError(ValueError):
    """A command could not be encoded, decoded or read from a connection."""


class CommandType(enum.IntEnum):
    """Kind of client command; the value is the command's letter."""

    BUY = ord("B")
    SELL = ord("S")
    CANCEL = ord("C")


@dataclass(frozen=True)
class ClientCommand:
    """One fixed-size command sent by a client."""

    type: CommandType
    order_id: int
    price: int = 0
    count: int = 0
    instrument: str = ""

    def pack(self) -> bytes:
        """Encode the command into its fixed-size binary form."""
        try:
            name = self.instrument.encode("ascii")
        except UnicodeEncodeError as exc:
            raise ProtocolError(f"instrument {self.instrument!r} is not ASCII") from exc
        if len(name) > INSTRUMENT_LENGTH or b"\0" in name:
            raise ProtocolError(
                f"instrument {self.instrument!r} must be at most {INSTRUMENT_LENGTH} characters"
            )
        try:
            return _COMMAND_STRUCT.pack(
                int(self.type), self.order_id, self.price, self.count, name
            )
        except struct.error as exc:
            raise ProtocolError(f"cannot encode command: {exc}") from exc

    @classmethod
    def unpack(cls, data: bytes) -> "ClientCommand":
        """Decode a command from exactly COMMAND_SIZE bytes."""
        if len(data) != COMMAND_SIZE:
            raise ProtocolError(f"expected {COMMAND_SIZE} bytes, got {len(data)}")
        raw_type, order_id, price, count, raw_name = _COMMAND_STRUCT.unpack(data)
        try:
            command_type = CommandType(raw_type)
        except ValueError as exc:
            raise ProtocolError(f"unknown command type {raw_type}") from exc
        instrument = raw_name.split(b"\0", 1)[0].decode("latin-1")
        return cls(command_type, order_id, price, count, instrument)


class ClientConnection:
    """A connected client socket that yields decoded commands."""

    def __init__(self, sock: socket.socket) -> None:
        self._sock: Optional[socket.socket] = sock

    def read_command(self) -> Optional[ClientCommand]:
        """Read the next command; return None at a clean end of stream."""
        if self._sock is None:
            raise ProtocolError("connection is closed")
        buffer = bytearray()
        try:
            while len(buffer) < COMMAND_SIZE:
                chunk = self._sock.recv(COMMAND_SIZE - len(buffer))
                if not chunk:
                    if not buffer:
                        return None
                    raise ProtocolError("connection closed in the middle of a command")
                buffer += chunk
        except OSError as exc:
            raise ProtocolError(f"error reading input: {exc}") from exc
        return ClientCommand.unpack(bytes(buffer))

    def __iter__(self) -> Iterator[ClientCommand]:
        while (command := self.read_command()) is not None:
            yield command

    def close(self) -> None:
        """Close the underlying socket; closing twice is harmless."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> "ClientConnection":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SyncWriter:
    """Writes whole lines to a stream, one writer thread at a time."""

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stdout

    def write_line(self, line: str) -> None:
        """Write one line followed by a newline and flush it."""
        with self._lock:
            stream = self.stream
            stream.write(f"{line}\n")
            stream.flush()


def format_order_added(
    order_id: int, symbol: str, price: int, count: int, is_sell_side: bool, timestamp: int
) -> str:
    side = "S" if is_sell_side else "B"
    return f"{side} {order_id} {symbol} {price} {count} {timestamp}"


def format_order_executed(
    resting_id: int, new_id: int, execution_id: int, price: int, count: int, timestamp: int
) -> str:
    return f"E {resting_id} {new_id} {execution_id} {price} {count} {timestamp}"


def format_order_deleted(order_id: int, cancel_accepted: bool, timestamp: int) -> str:
    verdict = "A" if cancel_accepted else "R"
    return f"X {order_id} {verdict} {timestamp}"