"""Public API for the configuration system.

This module provides the main entry points for configuration resolution,
including the resolve_config() function and profile management utilities.
"""

from pathlib import Path
from typing import Any

from .resolver import ConfigResolver
from .types import FrozenConfig, ResolvedConfig

# Global resolver instance for efficient reuse
_resolver = ConfigResolver()


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    use_env_file: str | Path | None = None,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration from all sources with proper precedence.

    Precedence: Programmatic > Environment > Project file > Home file > Defaults

    Args:
        programmatic: Dictionary of programmatic overrides (highest precedence).
                     Only known configuration fields are used.
        profile: Profile name to load from configuration files. If None,
                uses TRANSMUTE_PROFILE environment variable if set.
        use_env_file: Optional path to .env file to load before reading
                     environment variables.
        project_root: Directory to search for pyproject.toml. If None,
                     searches current directory and parents.

    Returns:
        ResolvedConfig with merged values and source tracking for audit.

    Raises:
        ValueError: If configuration validation fails or environment variables
                   contain invalid values.
        ConfigFileError: If the project file exists but is malformed.

    Example:
        config = resolve_config({"rate_limit_enabled": True})
        frozen = config.to_frozen()
    """
    return _resolver.resolve(
        programmatic=programmatic,
        profile=profile,
        use_env_file=use_env_file,
        project_root=project_root,
    )


def load_config(
    programmatic: dict[str, Any] | None = None, *, profile: str | None = None
) -> FrozenConfig:
    """Resolve and freeze in one step."""
    return resolve_config(programmatic, profile=profile).to_frozen()


def list_available_profiles(project_root: Path | None = None) -> dict[str, list[str]]:
    """List profile names found in the project and home files."""
    return _resolver.list_available_profiles(project_root)


def get_effective_profile() -> str | None:
    """Profile selected via TRANSMUTE_PROFILE, or None."""
    return _resolver.get_effective_profile()


def validate_profile(profile: str, project_root: Path | None = None) -> dict[str, bool]:
    """Validate that a profile exists in available configuration files.

    Raises:
        ValueError: If the profile doesn't exist in any configuration file.
    """
    exists_in_project, exists_in_home = _resolver.validate_profile_exists(
        profile, project_root
    )
    if not exists_in_project and not exists_in_home:
        available = list_available_profiles(project_root)
        all_profiles = available["project"] + available["home"]
        raise ValueError(
            f"Profile '{profile}' not found. Available profiles: {all_profiles}"
        )
    return {"project": exists_in_project, "home": exists_in_home}


def check_environment() -> dict[str, str]:
    """Currently set TRANSMUTE_* variables, sensitive values redacted."""
    return _resolver.env_loader.get_env_summary()
