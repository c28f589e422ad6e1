"""Operational commands.

Usage:
    python -m transmute config [--profile P] [--json] [--no-sources]
    python -m transmute cache clear [--profile P]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from transmute.cache.backends import create_backend
from transmute.cache.tiers import TwoTierCache
from transmute.config import resolve_config
from transmute.config.introspection import get_config_info, print_config_debug

# ruff: noqa: T201


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m transmute",
        description="Inspect transmute configuration and manage its cache",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    config_cmd = commands.add_parser("config", help="Show the effective configuration")
    config_cmd.add_argument("--profile", help="Configuration profile to use")
    config_cmd.add_argument(
        "--json", action="store_true", help="Output as JSON instead of text"
    )
    config_cmd.add_argument(
        "--no-sources", action="store_true", help="Don't show configuration sources"
    )

    cache_cmd = commands.add_parser("cache", help="Cache maintenance")
    cache_actions = cache_cmd.add_subparsers(dest="action", required=True)
    clear_cmd = cache_actions.add_parser(
        "clear", help="Delete every entry under the configured cache prefix"
    )
    clear_cmd.add_argument("--profile", help="Configuration profile to use")
    return parser


def _clear_cache(profile: str | None) -> int:
    try:
        config = resolve_config(profile=profile).to_frozen()
        cache = TwoTierCache.from_config(config, create_backend(config.cache.store))
        removed = cache.clear()
    except Exception as e:  # noqa: BLE001
        print(f"Cache clear failed: {e}", file=sys.stderr)
        return 1
    print(f"Cleared {removed} cache entries under prefix '{config.cache.prefix}'")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "config":
        if args.json:
            info = get_config_info(profile=args.profile)
            print(json.dumps(info, indent=2, default=str))
            return 0 if info["status"] == "valid" else 1
        return print_config_debug(profile=args.profile, show_sources=not args.no_sources)

    return _clear_cache(args.profile)


if __name__ == "__main__":
    sys.exit(main())
