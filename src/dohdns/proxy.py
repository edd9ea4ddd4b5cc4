"""Resolver proxy backend.

Brief:
  ProxyBackend forwards wire-format DNS queries to a recursive resolver. Only
  the first configured server is ever contacted; there is no failover across
  the list.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Tuple

import dns.exception
import dns.resolver
from dnslib import DNSRecord

from .backend import Backend, BackendError
from .exchange import Exchanger, UpstreamExchanger, join_host_port

logger = logging.getLogger("dohdns.proxy")

DEFAULT_RESOLV_CONF = "/etc/resolv.conf"
DEFAULT_PORT = "53"


class ResolverConfigError(Exception):
    """
    Brief: The resolver configuration file could not be read or parsed.

    Inputs:
      - message: description

    Outputs:
      - Exception instance
    """


def read_resolv_conf(path: str = DEFAULT_RESOLV_CONF) -> list[str]:
    """
    Brief: Return the nameserver addresses listed in a resolv.conf file.

    Inputs:
      - path: filesystem path of a resolv.conf-format file

    Outputs:
      - list of nameserver address strings in file order

    Raises:
      - ResolverConfigError when the file is missing, unparseable or lists no
        nameservers.

    Example:
      >>> read_resolv_conf("/etc/resolv.conf")
      ['127.0.0.53']
    """
    try:
        resolver = dns.resolver.Resolver(filename=path, configure=True)
    except (dns.exception.DNSException, OSError, ValueError) as exc:
        raise ResolverConfigError(f"unable to read {path}: {exc}") from exc

    # dnspython may hold Nameserver objects rather than plain strings.
    servers = [str(getattr(ns, "address", ns)) for ns in resolver.nameservers]
    if not servers:
        raise ResolverConfigError(f"no nameservers in {path}")
    return servers


class ProxyBackend(Backend):
    """
    Brief: Backend that passes queries on to a recursive DNS resolver.

    Inputs (constructor):
      - servers: non-empty sequence of resolver addresses
      - port: resolver port as a string
      - exchanger: Exchanger used for the network round trip

    Outputs:
      - ProxyBackend instance; its configuration is fixed after construction

    Example:
      >>> pb = ProxyBackend(["9.9.9.9"], "53", UpstreamExchanger())
      >>> pb.servers
      ('9.9.9.9',)
    """

    __slots__ = ("servers", "port", "exchanger")

    servers: Tuple[str, ...]
    port: str
    exchanger: Exchanger

    def __init__(
        self, servers: Sequence[str], port: str, exchanger: Exchanger
    ) -> None:
        servers = tuple(str(s) for s in servers)
        if not servers:
            raise ValueError("ProxyBackend requires at least one server")
        object.__setattr__(self, "servers", servers)
        object.__setattr__(self, "port", str(port))
        object.__setattr__(self, "exchanger", exchanger)

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError(f"ProxyBackend is immutable; cannot set {name!r}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProxyBackend):
            return NotImplemented
        return (self.servers, self.port, self.exchanger) == (
            other.servers,
            other.port,
            other.exchanger,
        )

    def __hash__(self) -> int:
        return hash((self.servers, self.port, id(self.exchanger)))

    def __repr__(self) -> str:
        return (
            f"ProxyBackend(servers={list(self.servers)!r}, port={self.port!r}, "
            f"exchanger={self.exchanger!r})"
        )

    @property
    def address(self) -> str:
        """Upstream address actually contacted (first server only)."""
        return join_host_port(self.servers[0], self.port)

    def query(self, data: bytes) -> bytes:
        try:
            msg = DNSRecord.parse(data)
        except Exception as exc:
            raise BackendError(f"unable to unpack query: {exc}", status=400) from exc

        try:
            reply, _ = self.exchanger.exchange(msg, self.address)
        except Exception as exc:
            raise BackendError(
                f"exchange with {self.address} failed: {exc}", status=500
            ) from exc

        try:
            return reply.pack()
        except Exception as exc:
            raise BackendError(f"unable to pack reply: {exc}", status=500) from exc


def new_proxy(
    servers: Optional[Sequence[str]] = None,
    port: Optional[str] = None,
    resolv_conf: Optional[str] = None,
    exchanger: Optional[Exchanger] = None,
) -> ProxyBackend:
    """
    Brief: Build a ProxyBackend, filling unspecified settings with defaults.

    Inputs:
      - servers: resolver addresses; when empty the resolv_conf file is read
      - port: resolver port (default "53")
      - resolv_conf: resolver configuration path (default /etc/resolv.conf)
      - exchanger: Exchanger (default UpstreamExchanger())

    Outputs:
      - ProxyBackend

    Raises:
      - ResolverConfigError when servers must come from an unreadable file.

    Example:
      >>> new_proxy(["127.0.0.1"], "5353").address
      '127.0.0.1:5353'
    """
    if not servers:
        path = resolv_conf or DEFAULT_RESOLV_CONF
        servers = read_resolv_conf(path)
        logger.debug("Using nameservers %s from %s", servers, path)

    if not port:
        port = DEFAULT_PORT

    if exchanger is None:
        exchanger = UpstreamExchanger()

    return ProxyBackend(servers, str(port), exchanger)
