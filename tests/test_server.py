import io
import os
import shutil
import socket
import tempfile
import threading
import time

import pytest

from matchbook.engine import Engine
from matchbook.protocol import ClientCommand, CommandType, SyncWriter
from matchbook.server import main, serve


@pytest.fixture
def socket_dir():
    directory = tempfile.mkdtemp(prefix="mb")
    yield directory
    shutil.rmtree(directory, ignore_errors=True)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _connect(path, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(path)
            return sock
        except OSError:
            sock.close()
            if time.monotonic() > deadline:
                raise
            time.sleep(0.01)


def _start_server(path):
    output = io.StringIO()
    engine = Engine(output=SyncWriter(output), log=SyncWriter(io.StringIO()))
    thread = threading.Thread(target=serve, args=(path, engine), daemon=True)
    thread.start()
    return output


def _lines(output):
    return [line.split() for line in output.getvalue().splitlines()]


def test_serve_matches_orders_from_one_connection(socket_dir):
    path = os.path.join(socket_dir, "s")
    output = _start_server(path)
    with _connect(path) as client:
        client.sendall(ClientCommand(CommandType.SELL, 1, 100, 10, "ABC").pack())
        client.sendall(ClientCommand(CommandType.BUY, 2, 100, 10, "ABC").pack())
        assert _wait_for(lambda: len(_lines(output)) >= 2)
    lines = _lines(output)
    assert lines[0][:5] == ["S", "1", "ABC", "100", "10"]
    assert lines[1][:6] == ["E", "1", "2", "1", "100", "10"]


def test_serve_shares_book_between_connections(socket_dir):
    path = os.path.join(socket_dir, "s")
    output = _start_server(path)
    with _connect(path) as seller, _connect(path) as buyer:
        seller.sendall(ClientCommand(CommandType.SELL, 7, 50, 4, "XYZ").pack())
        assert _wait_for(lambda: len(_lines(output)) >= 1)
        buyer.sendall(ClientCommand(CommandType.BUY, 8, 60, 6, "XYZ").pack())
        assert _wait_for(lambda: len(_lines(output)) >= 3)
    lines = _lines(output)
    assert lines[0][:5] == ["S", "7", "XYZ", "50", "4"]
    assert lines[1][:5] == ["B", "8", "XYZ", "60", "2"]
    assert lines[2][:6] == ["E", "7", "8", "1", "50", "4"]


def test_serve_creates_socket_file(socket_dir):
    path = os.path.join(socket_dir, "s")
    _start_server(path)
    assert _wait_for(lambda: os.path.exists(path))
    with _connect(path) as client:
        assert client.getpeername() == path


def test_serve_raises_when_directory_missing(socket_dir):
    path = os.path.join(socket_dir, "missing", "s")
    with pytest.raises(OSError):
        serve(path, Engine(output=SyncWriter(io.StringIO()), log=SyncWriter(io.StringIO())))


def test_serve_keeps_existing_file_when_bind_fails(socket_dir):
    path = os.path.join(socket_dir, "s")
    with open(path, "w") as handle:
        handle.write("keep")
    with pytest.raises(OSError):
        serve(path, Engine(output=SyncWriter(io.StringIO()), log=SyncWriter(io.StringIO())))
    with open(path) as handle:
        assert handle.read() == "keep"


def test_main_without_arguments_prints_usage(capsys):
    assert main([]) == 1
    assert "Usage:" in capsys.readouterr().err


def test_main_reports_bind_failure(socket_dir, capsys):
    path = os.path.join(socket_dir, "missing", "s")
    assert main([path]) == 1
    assert capsys.readouterr().err.strip()