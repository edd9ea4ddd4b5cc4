"""Configuration parsing and normalization helpers for dohdns.

Brief:
  Reading YAML config files, JSON Schema validation and normalization of the
  listen/upstream sections into plain dicts with defaults applied.

Inputs:
  - YAML config paths and parsed config dicts

Outputs:
  - Normalized config dicts
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import yaml

from .config_schema import validate_config

DEFAULT_LISTEN_HOST = "127.0.0.1"
DEFAULT_LISTEN_PORT = 8053
DEFAULT_PATH = "/dns-query"
DEFAULT_TIMEOUT_MS = 2000


def parse_config_file(config_path: str, *, unknown_keys: str = "warn") -> Dict[str, Any]:
    """Brief: Read and schema-validate a YAML config file.

    Inputs:
      - config_path: Path to the YAML configuration file.
      - unknown_keys: Unknown-key policy forwarded to validate_config.

    Outputs:
      - dict: Parsed configuration mapping ({} for an empty file).

    Raises:
      - OSError when the file cannot be read.
      - ValueError when the YAML is malformed or fails validation.
    """
    with open(config_path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

    validate_config(cfg, config_path=config_path, unknown_keys=unknown_keys)
    return cfg


def normalize_listen_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Brief: Normalize the listen section.

    Inputs:
      - cfg: Parsed configuration mapping.

    Outputs:
      - dict with host, port, path, cert_file, key_file and use_asyncio.

    Example:
      >>> normalize_listen_config({})["port"]
      8053
    """
    listen = cfg.get("listen") or {}
    return {
        "host": str(listen.get("host", DEFAULT_LISTEN_HOST)),
        "port": int(listen.get("port", DEFAULT_LISTEN_PORT)),
        "path": str(listen.get("path", DEFAULT_PATH)),
        "cert_file": listen.get("cert_file") or None,
        "key_file": listen.get("key_file") or None,
        "use_asyncio": bool(listen.get("use_asyncio", True)),
    }


def normalize_upstream_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Brief: Normalize the upstream section.

    Inputs:
      - cfg: Parsed configuration mapping.

    Outputs:
      - dict with servers (list or None), port (str or None), resolv_conf,
        transport and timeout_ms. None values are left for new_proxy() to
        default.
    """
    upstream = cfg.get("upstream") or {}
    servers = upstream.get("servers")
    port: Optional[Any] = upstream.get("port")
    return {
        "servers": [str(s) for s in servers] if servers else None,
        "port": str(port) if port not in (None, "") else None,
        "resolv_conf": upstream.get("resolv_conf") or None,
        "transport": str(upstream.get("transport", "udp")).lower(),
        "timeout_ms": int(upstream.get("timeout_ms", DEFAULT_TIMEOUT_MS)),
    }
