"""dohdns package: DNS over HTTPS (RFC 8484) in front of a recursive resolver."""

from .backend import Backend, BackendError, DoHError
from .exchange import Exchanger, UpstreamExchanger
from .proxy import ProxyBackend, ResolverConfigError, new_proxy
from .translator import DNS_MIME, DoHRequest, DoHResponse, handle_request

__all__ = [
    "Backend",
    "BackendError",
    "DNS_MIME",
    "DoHError",
    "DoHRequest",
    "DoHResponse",
    "Exchanger",
    "ProxyBackend",
    "ResolverConfigError",
    "UpstreamExchanger",
    "handle_request",
    "new_proxy",
]
