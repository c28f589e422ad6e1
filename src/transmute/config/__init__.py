"""Configuration management for transmute.

Resolve-once, freeze-then-flow:

- ResolvedConfig: Post-resolution configuration with audit metadata
- FrozenConfig: Immutable configuration injected into pipeline components
- SourceMap: Audit tracking of configuration value origins
"""

from .api import (
    check_environment,
    get_effective_profile,
    list_available_profiles,
    load_config,
    resolve_config,
    validate_profile,
)
from .audit import SourceTracker, generate_telemetry_summary
from .file_loader import ConfigFileError, FileConfigLoader
from .resolver import ConfigResolver
from .schema import TransmuteSettings
from .types import (
    CacheConfig,
    CacheTierConfig,
    ConfigOrigin,
    FetchConfig,
    FrozenConfig,
    QueueConfig,
    RateLimitConfig,
    ResolvedConfig,
    SourceMap,
)

__all__ = [  # noqa: RUF022
    # Main API
    "resolve_config",
    "load_config",
    "list_available_profiles",
    "get_effective_profile",
    "validate_profile",
    "check_environment",
    # Core types
    "ResolvedConfig",
    "FrozenConfig",
    "FetchConfig",
    "CacheConfig",
    "CacheTierConfig",
    "RateLimitConfig",
    "QueueConfig",
    "SourceMap",
    "ConfigOrigin",
    # Advanced usage
    "TransmuteSettings",
    "ConfigResolver",
    "FileConfigLoader",
    "ConfigFileError",
    "SourceTracker",
    "generate_telemetry_summary",
]
