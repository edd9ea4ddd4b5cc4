import http.server
import io
import logging
import ssl
import threading
import urllib.parse
from typing import Any, Optional

from .backend import Backend
from .translator import MAX_BODY_SIZE, DoHRequest, DoHResponse, handle_request

logger = logging.getLogger("dohdns.doh_api")

DEFAULT_PATH = "/dns-query"

# Other methods reach the translator through the 405 exception handler.
_ROUTED_METHODS = ["GET", "POST"]

# Longest chunk-size or trailer line accepted from a chunked body.
_MAX_CHUNK_LINE = 1024

# Unread chunked body bytes skipped before replying on a kept-alive connection.
_MAX_CHUNK_DISCARD = 64 * 1024


class _FailedBody:
    """Body stand-in that re-raises the error hit while receiving the body."""

    def __init__(self, exc: BaseException) -> None:
        self._exc = exc

    def read(self, n: int = -1) -> bytes:
        raise OSError(f"error reading request body: {self._exc}") from self._exc


def create_doh_app(
    backend: Backend,
    *,
    path: str = DEFAULT_PATH,
    log: Optional[logging.Logger] = None,
) -> Any:
    """
    Brief: Create FastAPI app implementing RFC 8484 DoH endpoints.

    Inputs:
    - backend: Backend resolving wire-format queries
    - path: URL path served (default /dns-query)
    - log: optional per-request logger passed to handle_request

    Outputs:
    - FastAPI application sending every method on path through the translator.

    Notes:
    - GET and POST are routed normally. Any other method on path fails route
      matching with a 405 HTTPException; the exception handler hands that
      request to the translator, which answers 405 itself.

    Example:
      >>> app = create_doh_app(new_proxy(["127.0.0.1"]))
    """

    try:
        from fastapi import FastAPI, Request, Response
        from fastapi.exception_handlers import http_exception_handler
        from starlette.concurrency import run_in_threadpool
        from starlette.exceptions import HTTPException as StarletteHTTPException
    except Exception as exc:  # pragma: no cover
        raise RuntimeError(
            "FastAPI is required for the uvicorn-based DoH server. Install fastapi or run with use_asyncio: false to use the threaded fallback."
        ) from exc

    handler = handle_request(backend, log)

    app = FastAPI(
        title="dohdns",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    async def _read_body(request: Request) -> Any:
        # Stop buffering one byte past the cap; the translator reports 413.
        buf = bytearray()
        try:
            async for chunk in request.stream():
                buf.extend(chunk)
                if len(buf) > MAX_BODY_SIZE:
                    break
        except Exception as exc:
            return _FailedBody(exc)
        return io.BytesIO(bytes(buf))

    async def _translate(request: Request) -> Response:
        query: dict[str, list[str]] = {}
        for key, value in request.query_params.multi_items():
            query.setdefault(key, []).append(value)

        body = await _read_body(request) if request.method == "POST" else None
        doh_req = DoHRequest(
            method=request.method,
            query=query,
            headers=dict(request.headers),
            body=body,
            remote_addr=_format_client(request.client),
        )
        resp: DoHResponse = await run_in_threadpool(handler, doh_req)
        return Response(
            content=resp.body, status_code=resp.status, headers=resp.headers
        )

    @app.api_route(path, methods=_ROUTED_METHODS)
    async def doh_query(request: Request) -> Response:
        """
        Brief: Translate one DoH request and run the backend off the event loop.

        Inputs:
        - request: FastAPI Request

        Outputs:
        - Response mirroring the translator's DoHResponse.
        """
        return await _translate(request)

    @app.exception_handler(StarletteHTTPException)
    async def doh_method_fallback(request: Request, exc: StarletteHTTPException) -> Response:
        """Brief: Answer unrouted methods on path from the translator."""
        if exc.status_code == 405 and request.url.path == path:
            return await _translate(request)
        return await http_exception_handler(request, exc)

    return app


def _format_client(client: Any) -> str:
    if client is None:
        return "0.0.0.0"
    host, port = client[0], client[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class _ChunkedBody:
    """Brief: Incremental reader for a Transfer-Encoding: chunked request body.

    Inputs (constructor):
    - rfile: buffered request stream positioned at the first chunk header

    Outputs:
    - read(n) -> decoded bytes; done is True once the last chunk and trailers
      have been consumed.

    Notes:
    - Framing errors raise OSError so the translator answers 500, as for any
      other body read failure.
    """

    def __init__(self, rfile: Any) -> None:
        self._rfile = rfile
        self._left = 0
        self.done = False

    def _readline(self) -> bytes:
        line = self._rfile.readline(_MAX_CHUNK_LINE + 1)
        if not line.endswith(b"\n"):
            raise OSError("truncated or oversized chunk header")
        return line

    def _next_chunk(self) -> None:
        line = self._readline()
        size_text = line.split(b";", 1)[0].strip()
        if not size_text or size_text.lstrip(b"0123456789abcdefABCDEF"):
            raise OSError(f"invalid chunk size {size_text!r}")
        size = int(size_text, 16)
        if size == 0:
            while self._readline() not in (b"\r\n", b"\n"):
                pass
            self.done = True
        self._left = size

    def read(self, n: int = -1) -> bytes:
        out = bytearray()
        while not self.done and (n < 0 or len(out) < n):
            if self._left == 0:
                self._next_chunk()
                continue
            want = self._left if n < 0 else min(self._left, n - len(out))
            data = self._rfile.read(want)
            if not data:
                raise OSError("connection closed inside chunk")
            out += data
            self._left -= len(data)
            if self._left == 0 and self._readline() not in (b"\r\n", b"\n"):
                raise OSError("missing CRLF after chunk data")
        return bytes(out)

    def discard(self, limit: int) -> bool:
        """Skip up to limit unread body bytes; True once the body is fully consumed."""
        try:
            while not self.done and limit > 0:
                limit -= len(self.read(min(limit, 4096)))
        except OSError:
            return False
        return self.done


class _ThreadedDoHRequestHandler(http.server.BaseHTTPRequestHandler):
    """Brief: Minimal HTTP/1.1 DoH handler using the standard library.

    Inputs:
    - Inherits request/connection attributes from BaseHTTPRequestHandler.

    Outputs:
    - Routes every method on doh_path through the translator.

    Notes:
    - The translator callable and path are attached as class attributes by
      the server factory.
    - Any do_<VERB> lookup resolves to _dispatch, so methods http.server has
      no handler for are answered by the translator instead of with a 501.
    """

    handler: Any = None
    doh_path: str = DEFAULT_PATH

    def __getattr__(self, name: str) -> Any:
        if name.startswith("do_"):
            return self._dispatch
        raise AttributeError(name)

    def _client(self) -> str:
        """Brief: Return best-effort client address as host:port."""
        addr = getattr(self, "client_address", None)
        if isinstance(addr, tuple) and len(addr) >= 2:
            return _format_client(addr)
        return "0.0.0.0"

    def _send(self, resp: DoHResponse) -> None:
        self.send_response(resp.status)
        for name, value in resp.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(resp.body)))
        self.end_headers()
        if resp.body and self.command != "HEAD":
            self.wfile.write(resp.body)

    def _read_body(self) -> Any:
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            return _ChunkedBody(self.rfile)
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        if length <= 0:
            return None
        if length > MAX_BODY_SIZE:
            # The rest of an oversized body is left unread.
            self.close_connection = True
        try:
            return io.BytesIO(self.rfile.read(min(length, MAX_BODY_SIZE + 1)))
        except OSError as exc:
            return _FailedBody(exc)

    def _dispatch(self) -> None:
        parsed = urllib.parse.urlparse(self.path)
        if parsed.path != self.doh_path:
            self.close_connection = True
            self._send_not_found()
            return

        body = self._read_body()
        doh_req = DoHRequest(
            method=self.command,
            query=urllib.parse.parse_qs(parsed.query, keep_blank_values=True),
            headers=dict(self.headers.items()),
            body=body,
            remote_addr=self._client(),
        )
        resp = self.handler(doh_req)
        if isinstance(body, _ChunkedBody) and not body.discard(_MAX_CHUNK_DISCARD):
            self.close_connection = True
        self._send(resp)

    def _send_not_found(self) -> None:
        resp = DoHResponse()
        resp.error(404)
        self._send(resp)

    def do_GET(self) -> None:  # noqa: N802 (HTTP verb name)
        self._dispatch()

    def do_POST(self) -> None:  # noqa: N802
        self._dispatch()

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A003
        """Brief: Route handler logs through the module logger instead of stderr."""
        try:
            msg = format % args
        except Exception:
            msg = format
        logger.debug("DoH HTTP: %s", msg)


def _make_threaded_handler_class(
    backend: Backend, path: str, log: Optional[logging.Logger]
) -> type:
    return type(
        "DoHRequestHandler",
        (_ThreadedDoHRequestHandler,),
        {"handler": staticmethod(handle_request(backend, log)), "doh_path": path},
    )


def _start_doh_server_threaded(
    host: str,
    port: int,
    backend: Backend,
    *,
    path: str = DEFAULT_PATH,
    log: Optional[logging.Logger] = None,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
) -> Optional["DoHServerHandle"]:
    """Brief: Start a threaded HTTP DoH server without using asyncio.

    Inputs:
    - host: listen address
    - port: listen port
    - backend: Backend resolving queries
    - path: URL path served
    - log: optional per-request logger
    - cert_file: optional TLS certificate path
    - key_file: optional TLS key path

    Outputs:
    - DoHServerHandle if server started successfully, else None.
    """
    handler_cls = _make_threaded_handler_class(backend, path, log)

    try:
        httpd = http.server.ThreadingHTTPServer((host, port), handler_cls)
    except OSError as exc:  # pragma: no cover - hard to force in unit tests
        logger.error("Failed to bind threaded DoH server on %s:%d: %s", host, port, exc)
        return None

    if cert_file and key_file:
        try:
            context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            context.minimum_version = ssl.TLSVersion.TLSv1_2
            context.load_cert_chain(certfile=cert_file, keyfile=key_file)
            httpd.socket = context.wrap_socket(httpd.socket, server_side=True)
        except (OSError, ssl.SSLError) as exc:
            logger.error("Failed to configure TLS for threaded DoH server: %s", exc)
            httpd.server_close()
            return None

    def _serve() -> None:
        try:
            httpd.serve_forever()
        except Exception:  # pragma: no cover - unexpected runtime error
            logger.exception("Unhandled exception in threaded DoH server")
        finally:
            httpd.server_close()

    thread = threading.Thread(target=_serve, name="dohdns-threaded", daemon=True)
    thread.start()
    logger.info("Started threaded DoH server on %s:%d", host, port)
    return DoHServerHandle(thread, server=httpd)


class DoHServerHandle:
    """Brief: Handle for a background DoH server thread.

    Inputs (constructor):
    - thread: Thread object running the HTTP/uvicorn server loop.
    - server: Optional server instance; either a ThreadingHTTPServer
      (shutdown/server_close) or a uvicorn.Server (should_exit).

    Outputs:
    - DoHServerHandle with is_running() and stop().
    """

    def __init__(self, thread, server: Any | None = None) -> None:
        self._thread = thread
        self._server = server

    def is_running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float = 5.0) -> None:
        """Brief: Stop the server if possible and wait for its thread.

        Inputs:
        - timeout: seconds to wait
        Outputs: None
        """
        server = self._server
        if server is not None:
            try:
                if hasattr(server, "should_exit"):
                    server.should_exit = True
                else:
                    server.shutdown()
                    server.server_close()
            except Exception:
                logger.exception("Error while shutting down DoH server instance")
        self._thread.join(timeout=timeout)


def _asyncio_available() -> bool:
    # Restricted containers/seccomp profiles can refuse the self-pipe.
    import asyncio

    try:
        loop = asyncio.new_event_loop()
        loop.close()
    except PermissionError as exc:  # pragma: no cover - environment specific
        logger.warning(
            "Asyncio loop creation failed for DoH; falling back to threaded HTTP server: %s",
            exc,
        )
        return False
    return True


def start_doh_server(
    host: str,
    port: int,
    backend: Backend,
    *,
    path: str = DEFAULT_PATH,
    log: Optional[logging.Logger] = None,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
    use_asyncio: bool = True,
) -> Optional[DoHServerHandle]:
    """Brief: Start DoH server, preferring uvicorn but falling back to threaded HTTP.

    Inputs:
    - host: listen address
    - port: listen port
    - backend: Backend resolving queries
    - path: URL path served
    - log: optional per-request logger
    - cert_file: optional TLS certificate path
    - key_file: optional TLS key path
    - use_asyncio: False forces the threaded http.server implementation

    Outputs:
    - DoHServerHandle if server started, else None.

    Example:
      >>> handle = start_doh_server('127.0.0.1', 8053, new_proxy(["1.1.1.1"]))
    """
    threaded_kwargs = dict(path=path, log=log, cert_file=cert_file, key_file=key_file)

    if not (use_asyncio and _asyncio_available()):
        return _start_doh_server_threaded(host, port, backend, **threaded_kwargs)

    try:
        import uvicorn

        app = create_doh_app(backend, path=path, log=log)
    except (ImportError, RuntimeError) as exc:  # pragma: no cover
        logger.error("uvicorn/FastAPI not available for DoH: %s; using threaded fallback", exc)
        return _start_doh_server_threaded(host, port, backend, **threaded_kwargs)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="warning",
        ssl_certfile=cert_file or None,
        ssl_keyfile=key_file or None,
    )
    server = uvicorn.Server(config)

    def _runner() -> None:
        try:
            server.run()
        except Exception:  # pragma: no cover - unexpected runtime error
            logger.exception("Unhandled exception in DoH server thread")

    thread = threading.Thread(target=_runner, name="dohdns-uvicorn", daemon=True)
    thread.start()
    logger.info("Started DoH server on %s:%d", host, port)
    return DoHServerHandle(thread, server=server)
