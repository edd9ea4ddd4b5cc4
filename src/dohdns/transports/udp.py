import socket
import time
from typing import Any, Optional, Tuple


class UDPError(Exception):
    """
    Brief: DNS-over-UDP transport error.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """


def _resolve(host: str, port: int) -> Tuple[int, Any]:
    """Return (family, sockaddr) for the first UDP address of host:port."""
    infos = socket.getaddrinfo(host, int(port), 0, socket.SOCK_DGRAM)
    if not infos:
        raise UDPError(f"no address for {host}:{port}")
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


def udp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout_ms: int = 2000,
    source_ip: Optional[str] = None,
) -> bytes:
    """
    Brief: Send one query as a UDP datagram and wait for the reply.

    Inputs:
    - host: upstream resolver host/IP
    - port: upstream UDP port
    - query: wire-format DNS query bytes
    - timeout_ms: overall wait for a reply in milliseconds
    - source_ip: optional source address to bind

    Outputs:
    - bytes: wire-format DNS response

    Notes:
    - Datagrams from any address other than the upstream are dropped; the
      timeout covers the whole wait, not each receive.

    Example:
        >>> try:
        ...     udp_query('127.0.0.1', 53, b'\x00\x01')
        ... except UDPError:
        ...     pass
    """
    try:
        family, upstream = _resolve(host, port)
        with socket.socket(family, socket.SOCK_DGRAM) as s:
            if source_ip:
                s.bind((source_ip, 0))
            s.sendto(query, upstream)
            deadline = time.monotonic() + timeout_ms / 1000.0
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise socket.timeout("timed out")
                s.settimeout(remaining)
                data, peer = s.recvfrom(65535)
                if peer[:2] == upstream[:2]:
                    return data
    except OSError as e:
        raise UDPError(f"UDP exchange with {host}:{port} failed: {e}") from e
