import io
import os
import shutil
import socket
import sys
import tempfile
import threading

import pytest

from matchbook.client import main, parse_line
from matchbook.protocol import ClientCommand, CommandType


@pytest.mark.parametrize("line", ["# a comment\n", "\n", ""])
def test_parse_line_skips_blank_and_comments(line):
    assert parse_line(line) is None


def test_parse_line_cancel():
    assert parse_line("C 5\n") == ClientCommand(CommandType.CANCEL, 5)


def test_parse_line_buy():
    assert parse_line("B 1 ABC 100 10\n") == ClientCommand(CommandType.BUY, 1, 100, 10, "ABC")


def test_parse_line_sell_without_spaces_after_letter():
    assert parse_line("S2 XYZ 7 3") == ClientCommand(CommandType.SELL, 2, 7, 3, "XYZ")


def test_parse_line_instrument_stops_at_eight_characters():
    command = parse_line("S 2 ABCDEFGH9 5\n")
    assert command == ClientCommand(CommandType.SELL, 2, 9, 5, "ABCDEFGH")


def test_parse_line_ignores_trailing_text():
    assert parse_line("B 1 ABC 100 10 extra\n") == ClientCommand(CommandType.BUY, 1, 100, 10, "ABC")


def test_parse_line_negative_wraps_like_unsigned():
    assert parse_line("C -1\n").order_id == 4294967295


def test_parse_line_round_trips_through_wire_format():
    command = parse_line("B 42 GOOG 1234 56\n")
    assert ClientCommand.unpack(command.pack()) == command


@pytest.mark.parametrize(
    "line",
    ["B 1 ABC 100\n", "S 1 ABCDEFGHIJ 5 5\n", "B x ABC 1 1\n", "B\n"],
)
def test_parse_line_rejects_bad_new_order(line):
    with pytest.raises(ValueError, match="Invalid new order"):
        parse_line(line)


def test_parse_line_rejects_bad_cancel():
    with pytest.raises(ValueError, match="Invalid cancel order"):
        parse_line("C abc\n")


def test_parse_line_rejects_unknown_command():
    with pytest.raises(ValueError, match="Invalid command 'X'"):
        parse_line("X 1\n")


@pytest.fixture
def listener():
    directory = tempfile.mkdtemp(prefix="mb")
    path = os.path.join(directory, "s")
    server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    server.bind(path)
    server.listen(1)
    received = bytearray()

    def collect():
        connection, _ = server.accept()
        with connection:
            while chunk := connection.recv(4096):
                received.extend(chunk)

    thread = threading.Thread(target=collect, daemon=True)
    thread.start()

    def result():
        thread.join(timeout=5.0)
        return bytes(received)

    yield path, result
    server.close()
    shutil.rmtree(directory, ignore_errors=True)


def test_main_sends_packed_commands(listener, monkeypatch):
    path, result = listener
    monkeypatch.setattr(sys, "stdin", io.StringIO("# header\nB 1 ABC 100 10\n\nC 1\n"))
    assert main([path]) == 0
    expected = (
        ClientCommand(CommandType.BUY, 1, 100, 10, "ABC").pack()
        + ClientCommand(CommandType.CANCEL, 1).pack()
    )
    assert result() == expected


def test_main_stops_at_invalid_line(listener, monkeypatch, capsys):
    path, result = listener
    monkeypatch.setattr(sys, "stdin", io.StringIO("S 3 XYZ 5 5\nZ\nB 4 XYZ 5 5\n"))
    assert main([path]) == 1
    assert "Invalid command 'Z'" in capsys.readouterr().err
    assert result() == ClientCommand(CommandType.SELL, 3, 5, 5, "XYZ").pack()


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 1
    assert "Usage:" in capsys.readouterr().err


def test_main_reports_connect_failure(capsys):
    directory = tempfile.mkdtemp(prefix="mb")
    try:
        assert main([os.path.join(directory, "absent")]) == 1
    finally:
        shutil.rmtree(directory, ignore_errors=True)
    assert "connect" in capsys.readouterr().err