import socket


class TCPError(Exception):
    """
    Brief: DNS-over-TCP transport error (connect, send, read or framing).

    Inputs:
      - message: Error description.

    Outputs:
      - Exception instance.
    """


def _frame(message: bytes) -> bytes:
    if len(message) > 0xFFFF:
        raise TCPError(f"message of {len(message)} bytes exceeds the TCP length prefix")
    return len(message).to_bytes(2, "big") + message


def _read_exact(sock: socket.socket, n: int, what: str) -> bytes:
    """
    Brief: Read exactly n bytes or fail.

    Inputs:
      - sock: connected blocking socket
      - n: byte count
      - what: name of the field being read, used in the error

    Outputs:
      - bytes of length n

    Raises:
      - TCPError when the peer closes the connection early.
    """
    buf = bytearray()
    while len(buf) < n:
        chunk = sock.recv(n - len(buf))
        if not chunk:
            raise TCPError(f"connection closed after {len(buf)}/{n} bytes of {what}")
        buf += chunk
    return bytes(buf)


def _read_frame(sock: socket.socket) -> bytes:
    size = int.from_bytes(_read_exact(sock, 2, "length prefix"), "big")
    if size == 0:
        raise TCPError("empty DNS message in TCP reply")
    return _read_exact(sock, size, "message")


def tcp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    connect_timeout_ms: int = 1000,
    read_timeout_ms: int = 1500,
) -> bytes:
    """
    Brief: Send one query over a fresh TCP connection (RFC 7766 framing).

    Inputs:
      - host: upstream resolver host/IP
      - port: upstream TCP port
      - query: wire-format DNS query bytes
      - connect_timeout_ms: connect timeout
      - read_timeout_ms: timeout applied to each send/receive

    Outputs:
      - bytes: wire-format DNS response

    Example:
      >>> resp = tcp_query('9.9.9.9', 53, DNSRecord.question('example.com').pack())
    """
    payload = _frame(query)
    try:
        with socket.create_connection(
            (host, int(port)), timeout=connect_timeout_ms / 1000.0
        ) as sock:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.settimeout(read_timeout_ms / 1000.0)
            sock.sendall(payload)
            return _read_frame(sock)
    except OSError as e:
        raise TCPError(f"TCP exchange with {host}:{port} failed: {e}") from e
