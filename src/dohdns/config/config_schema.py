"""JSON Schema-based validation for dohdns YAML configuration.

This module validates the parsed ``config.yaml`` mapping against the JSON
Schema document shipped next to it as ``config-schema.json``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft202012Validator, ValidationError

logger = logging.getLogger(__name__)

_UNKNOWN_KEY_POLICIES = {"ignore", "warn", "error"}


def get_default_schema_path() -> Path:
    """Brief: Path of the JSON Schema packaged with dohdns.config."""
    return Path(__file__).resolve().with_name("config-schema.json")


def _load_schema(schema_path: Optional[Path] = None) -> Dict[str, Any]:
    """Brief: Load JSON Schema from disk.

    Inputs:
      - schema_path: Optional explicit path to the schema file.

    Outputs:
      - Dict representing the JSON Schema.
    """

    path = schema_path or get_default_schema_path()
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _format_errors(errors: List[ValidationError], *, config_path: Optional[str]) -> str:
    """Brief: Format jsonschema validation errors into a human-readable string.

    Inputs:
      - errors: List of jsonschema.ValidationError instances.
      - config_path: Optional path to the YAML config being validated.

    Outputs:
      - String suitable for display in logs or CLI output.
    """

    lines: List[str] = [f"Invalid configuration in {config_path or '<config dict>'}:"]
    for err in errors:
        instance_path = "/".join(str(p) for p in err.path) or "<root>"
        schema_path = "/".join(str(p) for p in err.schema_path)
        lines.append(f"- {instance_path}: {err.message} (schema: {schema_path})")
    return "\n".join(lines)


def _is_extra_property_error(err: ValidationError) -> bool:
    return getattr(err, "validator", None) in {
        "additionalProperties",
        "unevaluatedProperties",
    }


def validate_config(
    cfg: Dict[str, Any],
    *,
    schema_path: Optional[Path] = None,
    config_path: Optional[str] = None,
    unknown_keys: str = "warn",
) -> None:
    """Brief: Validate a parsed YAML configuration mapping against JSON Schema.

    Inputs:
      - cfg: Dict loaded from YAML (top-level configuration mapping).
      - schema_path: Optional explicit path to JSON Schema file.
      - config_path: Optional path to the YAML file, used only for messages.
      - unknown_keys: "ignore", "warn" (default) or "error" for keys the
        schema does not describe.

    Outputs:
      - None on success.

    Raises:
      - ValueError: when validation fails, or when ``unknown_keys`` is
        "error" and there are unknown keys.

    Example:
      >>> import yaml
      >>> validate_config(yaml.safe_load("upstream: {servers: [1.1.1.1]}"))
    """
    if unknown_keys not in _UNKNOWN_KEY_POLICIES:
        raise ValueError(
            f"unknown_keys policy must be 'ignore', 'warn', or 'error', got {unknown_keys!r}"
        )
    if not isinstance(cfg, dict):
        raise ValueError(
            f"Invalid configuration in {config_path or '<config dict>'}: "
            "top level must be a mapping"
        )

    validator = Draft202012Validator(_load_schema(schema_path))
    all_errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
    if not all_errors:
        return None

    extra_errors = [e for e in all_errors if _is_extra_property_error(e)]
    other_errors = [e for e in all_errors if not _is_extra_property_error(e)]

    # Non-extra failures are always fatal; report unknown keys alongside them.
    if other_errors:
        raise ValueError(
            _format_errors(other_errors + extra_errors, config_path=config_path)
        )

    message = _format_errors(extra_errors, config_path=config_path)
    if unknown_keys == "error":
        raise ValueError(message)
    if unknown_keys == "warn":
        logger.warning(message)
    return None
