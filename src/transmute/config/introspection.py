"""Configuration introspection utilities for debugging and validation.

Used by ``python -m transmute config`` to show the effective configuration,
where each value came from, and non-fatal warnings.
"""

import sys
from typing import Any

from transmute.core._validation import _thaw

from .api import resolve_config
from .types import SENSITIVE_FIELDS, ResolvedConfig

# ruff: noqa: T201


def print_config_debug(
    *,
    profile: str | None = None,
    show_sources: bool = True,
    programmatic_overrides: dict[str, Any] | None = None,
) -> int:
    """Print the effective configuration with sources and warnings.

    Returns:
        Process exit code: 0 when the configuration resolves, 1 otherwise.
    """
    try:
        resolved = resolve_config(programmatic=programmatic_overrides, profile=profile)
    except Exception as e:  # noqa: BLE001
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    print("=== Effective Configuration ===")
    for field, value in sorted(_display_values(resolved).items()):
        print(f"  {field}: {value}")

    if show_sources:
        print("\n=== Configuration Sources ===")
        print(_indent(resolved.audit()))

    warnings = get_config_warnings(resolved)
    if warnings:
        print("\nWarnings:")
        for warning in warnings:
            print(f"  - {warning}")
    return 0


def get_config_info(
    *,
    profile: str | None = None,
    programmatic_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Structured configuration details for programmatic use (e.g. ``--json``)."""
    try:
        resolved = resolve_config(programmatic=programmatic_overrides, profile=profile)
    except Exception as e:  # noqa: BLE001
        return {
            "status": "invalid",
            "error": str(e),
            "config": None,
            "sources": {},
            "warnings": [],
        }
    return {
        "status": "valid",
        "config": _display_values(resolved),
        "sources": dict(resolved.origin),
        "warnings": get_config_warnings(resolved),
    }


def get_config_warnings(resolved: ResolvedConfig) -> list[str]:
    """Non-fatal configuration issues."""
    warnings = []
    values = resolved.values

    if not values["cache_enabled"]:
        warnings.append("Caching is disabled - every request invokes the provider")
    if values["allow_localhost"]:
        warnings.append("allow_localhost is set - internal addresses can be fetched")
    if values["cache_store"] == "memory" and values["queue_connection"]:
        warnings.append(
            "In-memory cache store is not shared with queue workers in other processes"
        )
    if values["rate_limit_enabled"] and values["rate_limit_max_attempts"] < 5:
        warnings.append("Rate limit is very low - most requests will be denied")
    return warnings


def _display_values(resolved: ResolvedConfig) -> dict[str, Any]:
    shown: dict[str, Any] = {}
    for field, value in resolved.values.items():
        if field in SENSITIVE_FIELDS and value and value != "memory":
            shown[field] = "<redacted>"
        elif hasattr(value, "value"):  # enums
            shown[field] = value.value
        else:
            shown[field] = _thaw(value)
    return shown


def _indent(text: str) -> str:
    return "\n".join(f"  {line}" for line in text.splitlines())
