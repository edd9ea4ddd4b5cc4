"""RFC 8484 request validation and translation.

Brief:
  Turns one inbound DNS-over-HTTPS request into a wire-format DNS query,
  hands it to a Backend and writes the outcome to a DoHResponse. GET and POST
  are validated by independent functions; both share the backend/response
  post-step in handle_request().

Inputs:
  - DoHRequest built by a transport adapter (see dohdns.doh_api)

Outputs:
  - DoHResponse with either wire-format bytes (200) or a reason phrase
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .backend import Backend, BackendError, DoHError

logger = logging.getLogger("dohdns.translator")

DNS_MIME = "application/dns-udpwireformat"

# Roughly twice the common EDNS0 payload size of 4096.
MAX_BODY_SIZE = 8192

_ERROR_CT = "text/plain; charset=utf-8"

_B64URL_RE = re.compile(r"[A-Za-z0-9_-]*")

# Classic reason phrases; newer interpreters renamed 413 and 422.
_STATUS_TEXT = {
    413: "Request Entity Too Large",
    422: "Unprocessable Entity",
}


class RequestError(DoHError):
    """Malformed request detected before any backend call (4xx)."""

    status = 400


class BodyTooLargeError(RequestError):
    """Request body exceeded the read cap."""

    status = 413


def status_text(code: int) -> str:
    """
    Brief: Return the standard reason phrase for an HTTP status code.

    Inputs:
      - code: HTTP status code

    Outputs:
      - str: reason phrase, or "" for unknown codes

    Example:
      >>> status_text(422)
      'Unprocessable Entity'
    """
    if code in _STATUS_TEXT:
        return _STATUS_TEXT[code]
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


@dataclass
class DoHRequest:
    """
    Brief: Transport-neutral view of one inbound HTTP request.

    Inputs (constructor fields):
      - method: HTTP method, e.g. "GET"
      - query: URL query parameters, each name mapped to all of its values
      - headers: request headers; names are matched case-insensitively
      - body: object with read(n) -> bytes, or None when there is no body
      - remote_addr: caller address used in log lines

    Outputs:
      - DoHRequest instance
    """

    method: str
    query: Mapping[str, Sequence[str]] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    remote_addr: str = ""

    def __post_init__(self) -> None:
        self.headers = {str(k).lower(): str(v) for k, v in self.headers.items()}

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")


@dataclass
class DoHResponse:
    """
    Brief: Response sink written exactly once per request.

    Inputs:
      - None

    Outputs:
      - status, headers and body ready for a transport adapter to send.
    """

    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    written: bool = False

    def _claim(self) -> None:
        if self.written:
            raise RuntimeError("response already written")
        self.written = True

    def write(self, data: bytes) -> None:
        body = bytes(data)
        self._claim()
        self.status = 200
        self.body = body

    def error(self, status: int) -> None:
        """Write the reason phrase for status as a plain-text error body."""
        self._claim()
        self.status = status
        self.headers["Content-Type"] = _ERROR_CT
        self.headers["X-Content-Type-Options"] = "nosniff"
        self.body = (status_text(status) + "\n").encode("ascii")


def b64url_decode_nopad(s: str) -> bytes:
    """
    Brief: Strictly decode base64url without padding (RFC 4648 section 5).

    Inputs:
      - s: base64url string without '='

    Outputs:
      - bytes: decoded binary

    Raises:
      - binascii.Error: on padding, characters outside the url-safe alphabet
        or an impossible length

    Example:
        >>> b64url_decode_nopad('AQI')
        b'\\x01\\x02'
    """
    if not isinstance(s, str):
        raise ValueError("input must be str")
    if not _B64URL_RE.fullmatch(s):
        raise binascii.Error("illegal base64url data")
    if len(s) % 4 == 1:
        raise binascii.Error("illegal base64url data length")
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode(s + pad)


def read_body_limited(stream: Any, limit: int) -> bytes:
    """
    Brief: Read a request body, refusing anything larger than limit.

    Inputs:
      - stream: object with read(n) -> bytes, or None
      - limit: maximum accepted body size in bytes

    Outputs:
      - bytes: the whole body

    Raises:
      - BodyTooLargeError once more than limit bytes have been seen; reading
        stops at limit + 1 bytes.
      - Whatever the stream raises for other read failures.
    """
    if stream is None:
        return b""
    chunks: List[bytes] = []
    remaining = limit + 1
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    data = b"".join(chunks)
    if len(data) > limit:
        raise BodyTooLargeError("request body too large")
    return data


def extract_get_query(request: DoHRequest) -> bytes:
    """
    Brief: Validate a GET request and return the decoded DNS query.

    Inputs:
      - request: DoHRequest with method GET

    Outputs:
      - bytes: wire-format DNS query from the single 'dns' parameter

    Raises:
      - RequestError (400) for a missing, empty or undecodable parameter
      - RequestError (422) when 'dns' is given more than once
    """
    # RFC 8484 4.1: the GET payload is base64url without padding, carried in
    # the "dns" variable.
    values = request.query.get("dns")
    if values is None:
        raise RequestError("GET: no 'dns' parameter in request")

    # RFC 8484 4: a single DNS query per HTTP request.
    if len(values) != 1:
        raise RequestError("GET: only 1 'dns' parameter is allowed", status=422)

    if len(values[0]) == 0:
        raise RequestError("GET: 'dns' parameter is empty")

    try:
        return b64url_decode_nopad(values[0])
    except (binascii.Error, ValueError) as exc:
        raise RequestError(f"GET: {exc}") from exc


def extract_post_query(request: DoHRequest) -> bytes:
    """
    Brief: Validate a POST request and return its body as the DNS query.

    Inputs:
      - request: DoHRequest with method POST

    Outputs:
      - bytes: wire-format DNS query from the request body

    Raises:
      - RequestError (400) for a 'dns' URL parameter or an empty body
      - RequestError (415) for a wrong Content-Type
      - BodyTooLargeError (413) for bodies over MAX_BODY_SIZE
      - DoHError (500) for any other body read failure
    """
    # POST carries the query in the body only.
    if "dns" in request.query:
        raise RequestError("POST: 'dns' parameter not allowed")

    if request.header("Content-Type") != DNS_MIME:
        raise RequestError(f"POST: Content-Type must be {DNS_MIME}", status=415)

    try:
        body = read_body_limited(request.body, MAX_BODY_SIZE)
    except BodyTooLargeError:
        raise
    except Exception as exc:
        raise DoHError(f"POST: unable to read body: {exc}", status=500) from exc

    if len(body) == 0:
        raise RequestError("POST: empty body in request")
    return body


_VALIDATORS: Dict[str, Callable[[DoHRequest], bytes]] = {
    "GET": extract_get_query,
    "POST": extract_post_query,
}


def handle_request(
    backend: Backend, log: Optional[logging.Logger] = None
) -> Callable[[DoHRequest], DoHResponse]:
    """
    Brief: Build a request handler bound to a backend.

    Inputs:
      - backend: Backend used to resolve extracted queries
      - log: optional logger receiving one line per handled request

    Outputs:
      - callable DoHRequest -> DoHResponse

    Example:
      >>> handler = handle_request(backend, logging.getLogger("dohdns.requests"))
      >>> resp = handler(DoHRequest("PUT"))
      >>> resp.status
      405
    """

    def _handler(request: DoHRequest) -> DoHResponse:
        response = DoHResponse()
        method = request.method
        err: Optional[DoHError] = None

        validator = _VALIDATORS.get(method)
        try:
            if validator is None:
                raise DoHError(
                    "only GET and POST methods are supported", status=405
                )
            response.headers["Content-Type"] = DNS_MIME
            wire = validator(request)
            response.write(backend.query(wire))
        except DoHError as exc:
            response.error(exc.status)
            err = exc
        except Exception as exc:
            logger.exception("Unhandled error serving %s request", method)
            response.error(500)
            err = DoHError(f"internal error: {exc}", status=500)

        if log is not None:
            if err is not None:
                log.info("%s | %s", request.remote_addr, err)
            else:
                log.info("%s | successful %s request", request.remote_addr, method)
        return response

    return _handler


__all__ = [
    "BackendError",
    "BodyTooLargeError",
    "DNS_MIME",
    "DoHError",
    "DoHRequest",
    "DoHResponse",
    "MAX_BODY_SIZE",
    "RequestError",
    "b64url_decode_nopad",
    "extract_get_query",
    "extract_post_query",
    "handle_request",
    "read_body_limited",
    "status_text",
]
