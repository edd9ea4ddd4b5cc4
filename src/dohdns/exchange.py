from __future__ import annotations

import logging
import time
from typing import Tuple

from dnslib import DNSRecord

from .transports.tcp import TCPError, tcp_query
from .transports.udp import UDPError, udp_query

logger = logging.getLogger("dohdns.exchange")

_TRANSPORTS = ("udp", "tcp")


class ExchangeError(Exception):
    """
    Brief: A DNS exchange with an upstream resolver failed.

    Inputs:
      - message: description

    Outputs:
      - Exception instance
    """


def join_host_port(host: str, port: str | int) -> str:
    """
    Brief: Combine host and port into "host:port", bracketing IPv6 literals.

    Inputs:
      - host: hostname or IP literal
      - port: port number or string

    Outputs:
      - str address

    Example:
      >>> join_host_port("::1", "53")
      '[::1]:53'
    """
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(address: str) -> Tuple[str, int]:
    """
    Brief: Inverse of join_host_port.

    Inputs:
      - address: "host:port" or "[v6]:port"

    Outputs:
      - (host, port) tuple

    Raises:
      - ValueError when the address has no port or the port is not numeric.
    """
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep or not rest.startswith(":"):
            raise ValueError(f"missing port in address {address!r}")
        port = rest[1:]
    else:
        host, sep, port = address.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {address!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {address!r}")
    return host, int(port)


class Exchanger:
    """Base class for DNS exchange implementations.

    Brief:
      An Exchanger sends one structured DNS query to a resolver address and
      returns the structured reply. ProxyBackend only depends on this
      interface so tests and alternate transports can be substituted.
    """

    def exchange(self, query: DNSRecord, address: str) -> Tuple[DNSRecord, float]:
        """Brief: Send query to address and wait for the reply.

        Inputs:
          - query: dnslib DNSRecord
          - address: "host:port" of the resolver

        Outputs:
          - (reply, elapsed_seconds)
        """
        raise NotImplementedError


class UpstreamExchanger(Exchanger):
    """
    Brief: Standard exchanger speaking plain DNS over UDP or TCP.

    Inputs (constructor):
      - transport: "udp" (default) or "tcp"
      - timeout_ms: per-exchange timeout in milliseconds

    Outputs:
      - Exchanger instance

    Example:
      >>> ex = UpstreamExchanger(transport="tcp", timeout_ms=1500)
      >>> reply, rtt = ex.exchange(DNSRecord.question("example.com"), "1.1.1.1:53")
    """

    def __init__(self, transport: str = "udp", timeout_ms: int = 2000) -> None:
        transport = str(transport).lower()
        if transport not in _TRANSPORTS:
            raise ValueError(
                f"transport must be one of {', '.join(_TRANSPORTS)}, got {transport!r}"
            )
        self.transport = transport
        self.timeout_ms = int(timeout_ms)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UpstreamExchanger):
            return NotImplemented
        return (self.transport, self.timeout_ms) == (other.transport, other.timeout_ms)

    def __repr__(self) -> str:
        return (
            f"UpstreamExchanger(transport={self.transport!r}, "
            f"timeout_ms={self.timeout_ms})"
        )

    def exchange(self, query: DNSRecord, address: str) -> Tuple[DNSRecord, float]:
        host, port = split_host_port(address)
        wire = query.pack()
        start = time.perf_counter()
        try:
            if self.transport == "tcp":
                resp_wire = tcp_query(
                    host,
                    port,
                    wire,
                    connect_timeout_ms=self.timeout_ms,
                    read_timeout_ms=self.timeout_ms,
                )
            else:
                resp_wire = udp_query(host, port, wire, timeout_ms=self.timeout_ms)
        except (UDPError, TCPError) as exc:
            raise ExchangeError(str(exc)) from exc
        rtt = time.perf_counter() - start

        try:
            reply = DNSRecord.parse(resp_wire)
        except Exception as exc:
            raise ExchangeError(f"unable to parse reply from {address}: {exc}") from exc

        if reply.header.id != query.header.id:
            raise ExchangeError(
                f"reply id {reply.header.id} does not match query id {query.header.id}"
            )
        logger.debug(
            "%s exchange with %s took %.1f ms", self.transport, address, rtt * 1000.0
        )
        return reply, rtt
