"""
Brief: Unit tests for UDP/TCP upstream transports using local echo stubs.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import threading

import pytest

from dohdns.transports.tcp import TCPError, _read_exact, tcp_query
from dohdns.transports.udp import UDPError, udp_query


class _UDPEcho:
    """Echo server; with decoy=True a second socket answers first with junk."""

    def __init__(self, decoy=False):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.addr = self.sock.getsockname()
        self.decoy = None
        if decoy:
            self.decoy = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            self.decoy.bind(("127.0.0.1", 0))
        self._stop = threading.Event()
        self.thread = threading.Thread(target=self._loop, daemon=True)

    def _loop(self):
        self.sock.settimeout(0.1)
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(4096)
                if self.decoy is not None:
                    self.decoy.sendto(b"decoy", peer)
                self.sock.sendto(data, peer)
            except OSError:
                continue

    def close(self):
        self._stop.set()
        self.thread.join(timeout=1.0)
        self.sock.close()
        if self.decoy is not None:
            self.decoy.close()


def _echo_frame(conn, body):
    conn.sendall(len(body).to_bytes(2, "big") + body)


class _TCPStub:
    """Length-prefixed server; respond(conn, body) writes the reply."""

    def __init__(self, respond=_echo_frame):
        self.respond = respond
        self.sock = socket.socket()
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(5)
        self.addr = self.sock.getsockname()
        self._stop = threading.Event()
        self.thread = threading.Thread(target=self._loop, daemon=True)

    def _loop(self):
        self.sock.settimeout(0.1)
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except OSError:
                continue
            threading.Thread(target=self._conn, args=(conn,), daemon=True).start()

    def _conn(self, conn):
        with conn:
            try:
                size = int.from_bytes(_read_exact(conn, 2, "length prefix"), "big")
                body = _read_exact(conn, size, "message")
            except (TCPError, OSError):
                return
            self.respond(conn, body)

    def wait(self, timeout):
        self._stop.wait(timeout)

    def close(self):
        self._stop.set()
        self.thread.join(timeout=1.0)
        self.sock.close()


@pytest.fixture
def udp_echo():
    s = _UDPEcho()
    s.thread.start()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def tcp_stub():
    stubs = []

    def _start(respond=_echo_frame):
        stub = _TCPStub(respond)
        stub.thread.start()
        stubs.append(stub)
        return stub

    try:
        yield _start
    finally:
        for stub in stubs:
            stub.close()


def _tcp(stub, query=b"\x12\x34hello", read_timeout_ms=500):
    return tcp_query(
        stub.addr[0],
        stub.addr[1],
        query,
        connect_timeout_ms=500,
        read_timeout_ms=read_timeout_ms,
    )


def test_udp_query_roundtrip(udp_echo):
    q = b"\x12\x34hello"
    assert udp_query(udp_echo.addr[0], udp_echo.addr[1], q, timeout_ms=500) == q


def test_udp_ignores_datagrams_from_other_peers():
    """
    Brief: Only a datagram from the queried address is accepted as the reply.

    Inputs:
      - None

    Outputs:
      - None: Asserts the decoy datagram is skipped.
    """
    stub = _UDPEcho(decoy=True)
    stub.thread.start()
    try:
        q = b"\x12\x34hello"
        assert udp_query(stub.addr[0], stub.addr[1], q, timeout_ms=500) == q
    finally:
        stub.close()


def test_udp_timeout_raises():
    """
    Brief: A silent UDP peer raises UDPError once the timeout elapses.

    Inputs:
      - None

    Outputs:
      - None: Asserts UDPError chained from the socket timeout.
    """
    silent = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    silent.bind(("127.0.0.1", 0))
    try:
        with pytest.raises(UDPError) as excinfo:
            udp_query("127.0.0.1", silent.getsockname()[1], b"\x12\x34", timeout_ms=50)
        assert isinstance(excinfo.value.__cause__, OSError)
    finally:
        silent.close()


def test_tcp_query_roundtrip(tcp_stub):
    assert _tcp(tcp_stub()) == b"\x12\x34hello"


def test_tcp_connection_refused_raises():
    # Bind then close to get a port with nothing listening.
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    with pytest.raises(TCPError):
        tcp_query("127.0.0.1", port, b"\x00\x01", connect_timeout_ms=200)


def test_tcp_read_timeout_raises(tcp_stub):
    stub = tcp_stub(lambda conn, body: stub.wait(1.0))
    with pytest.raises(TCPError):
        _tcp(stub, read_timeout_ms=100)


@pytest.mark.parametrize(
    "reply",
    [b"\x00\x0aabc", b"\x00", b"\x00\x00"],
    ids=["short-message", "short-prefix", "empty-message"],
)
def test_tcp_bad_reply_framing_raises(tcp_stub, reply):
    stub = tcp_stub(lambda conn, body: conn.sendall(reply))
    with pytest.raises(TCPError):
        _tcp(stub)


def test_tcp_oversized_query_rejected_before_connecting():
    with pytest.raises(TCPError):
        tcp_query("127.0.0.1", 9, bytes(0x10000))
