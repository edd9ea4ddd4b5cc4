from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from .config.config_parser import (
    normalize_listen_config,
    normalize_upstream_config,
    parse_config_file,
)
from .config.logging_config import get_request_logger, init_logging
from .doh_api import start_doh_server
from .exchange import UpstreamExchanger
from .proxy import ResolverConfigError, new_proxy


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="DNS over HTTPS (RFC 8484) proxy to a recursive resolver"
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument("--listen", default=None, help="Listen address")
    parser.add_argument("--port", type=int, default=None, help="Listen port")
    parser.add_argument("--path", default=None, help="DoH URL path (default /dns-query)")
    parser.add_argument(
        "--server",
        action="append",
        default=None,
        help="Upstream resolver address; repeatable, only the first is queried",
    )
    parser.add_argument("--upstream-port", default=None, help="Upstream resolver port")
    parser.add_argument(
        "--resolv-conf",
        default=None,
        help="resolv.conf used when no upstream servers are configured",
    )
    parser.add_argument("--cert-file", default=None, help="TLS certificate")
    parser.add_argument("--key-file", default=None, help="TLS private key")
    parser.add_argument("--log-level", default=None, help="debug, info, warn, error, crit")
    return parser


def _apply_cli_overrides(cfg: Dict[str, Any], args: argparse.Namespace) -> None:
    """
    Brief: Merge command-line options over the parsed config (CLI wins).

    Inputs:
      - cfg: configuration mapping (mutated in place)
      - args: parsed argparse namespace

    Outputs:
      - None
    """
    listen = cfg.setdefault("listen", {}) or {}
    upstream = cfg.setdefault("upstream", {}) or {}
    log_cfg = cfg.setdefault("logging", {}) or {}
    cfg.update(listen=listen, upstream=upstream, logging=log_cfg)

    for key, value in (
        ("host", args.listen),
        ("port", args.port),
        ("path", args.path),
        ("cert_file", args.cert_file),
        ("key_file", args.key_file),
    ):
        if value is not None:
            listen[key] = value

    if args.server:
        upstream["servers"] = list(args.server)
    if args.upstream_port is not None:
        upstream["port"] = args.upstream_port
    if args.resolv_conf is not None:
        upstream["resolv_conf"] = args.resolv_conf
    if args.log_level is not None:
        log_cfg["level"] = args.log_level


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DoH proxy.
    Parses arguments, loads configuration, builds the resolver proxy and
    serves until SIGINT/SIGTERM.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            dohdns --config config.yaml
            dohdns --server 9.9.9.9 --port 8053
    """
    args = _build_parser().parse_args(argv)

    cfg: Dict[str, Any] = {}
    if args.config:
        try:
            cfg = parse_config_file(args.config)
        except (OSError, ValueError) as exc:
            print(str(exc))
            return 1
    _apply_cli_overrides(cfg, args)

    init_logging(cfg.get("logging"))
    logger = logging.getLogger("dohdns.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    listen = normalize_listen_config(cfg)
    upstream = normalize_upstream_config(cfg)

    try:
        backend = new_proxy(
            upstream["servers"],
            upstream["port"],
            upstream["resolv_conf"],
            UpstreamExchanger(upstream["transport"], upstream["timeout_ms"]),
        )
    except (ResolverConfigError, ValueError) as exc:
        logger.error("Unable to configure resolver proxy: %s", exc)
        return 1
    logger.info(
        "Forwarding queries to %s over %s", backend.address, upstream["transport"]
    )

    try:
        handle = start_doh_server(
            listen["host"],
            listen["port"],
            backend,
            path=listen["path"],
            log=get_request_logger(cfg.get("logging")),
            cert_file=listen["cert_file"],
            key_file=listen["key_file"],
            use_asyncio=listen["use_asyncio"],
        )
    except Exception as exc:
        logger.error("Failed to start DoH server: %s", exc)
        return 1
    if handle is None:
        logger.error("Fatal: start_doh_server returned None")
        return 1

    shutdown_event = threading.Event()

    def _request_shutdown(signum, _frame) -> None:
        logger.info("Received signal %s, shutting down", signum)
        shutdown_event.set()

    previous: Dict[int, Optional[Any]] = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _request_shutdown)

    logger.info("Startup Completed")
    try:
        while not shutdown_event.is_set():
            if not handle.is_running():
                logger.error("DoH server thread exited unexpectedly")
                return 1
            shutdown_event.wait(1.0)
    finally:
        logger.info("Stopping DoH server")
        handle.stop()
        for sig, old in previous.items():
            signal.signal(sig, old)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
