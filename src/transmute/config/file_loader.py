"""File-based configuration loading with profile support.

This module handles loading configuration from TOML files, supporting both
project-level (pyproject.toml) and home-level (~/.config/transmute.toml)
configuration with named profiles.
"""

import os
from pathlib import Path
import tomllib
from typing import Any

_TOOL_SECTION = "transmute"


class ConfigFileError(Exception):
    """Raised when configuration file loading fails."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        """Initialize with file path, message, and optional cause.

        Args:
            file_path: The file that failed to load
            message: Human-readable error message
            cause: The underlying exception that caused the failure
        """
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open(mode="rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e


def _select_profile(
    section: dict[str, Any], profile: str | None, path: Path
) -> dict[str, Any]:
    if profile:
        profiles = section.get("profiles", {})
        if profile not in profiles:
            available = list(profiles.keys()) if profiles else []
            raise ConfigFileError(
                path,
                f"Profile '{profile}' not found. Available profiles: {available}",
            )
        return dict(profiles[profile])
    config = dict(section)
    config.pop("profiles", None)
    return config


class FileConfigLoader:
    """Loads configuration from TOML files with profile support.

    ``TRANSMUTE_PYPROJECT_PATH`` pins the project file and
    ``TRANSMUTE_CONFIG_HOME`` relocates the home file; both exist so tests and
    deployments can point at explicit files.
    """

    def load_project_config(
        self, project_root: Path | None = None, profile: str | None = None
    ) -> dict[str, Any]:
        """Load configuration from ``[tool.transmute]`` in pyproject.toml.

        Args:
            project_root: Directory to search for pyproject.toml. If None,
                         searches current directory and parents.
            profile: Optional profile name to load from
                    ``[tool.transmute.profiles.<name>]``.

        Returns:
            Configuration values from the file; empty if there is no file or
            no transmute section.

        Raises:
            ConfigFileError: If the file cannot be parsed or the profile is missing.
        """
        pyproject_path = self._find_pyproject_toml(project_root)
        if not pyproject_path:
            return {}

        data = _read_toml(pyproject_path)
        section = data.get("tool", {}).get(_TOOL_SECTION, {})
        if not section:
            return {}
        return _select_profile(section, profile, pyproject_path)

    def load_home_config(self, profile: str | None = None) -> dict[str, Any]:
        """Load configuration from ~/.config/transmute.toml.

        Raises:
            ConfigFileError: If the file cannot be parsed or the profile is missing.
        """
        home_config_path = self._get_home_config_path()
        if not home_config_path.exists():
            return {}
        data = _read_toml(home_config_path)
        return _select_profile(data, profile, home_config_path)

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        """List all available profiles from project and home files.

        Unreadable files contribute no profiles.
        """
        profiles: dict[str, list[str]] = {"project": [], "home": []}

        pyproject_path = self._find_pyproject_toml(project_root)
        if pyproject_path:
            try:
                data = _read_toml(pyproject_path)
                section = data.get("tool", {}).get(_TOOL_SECTION, {})
                profiles["project"] = list(section.get("profiles", {}).keys())
            except ConfigFileError:
                pass

        home_config_path = self._get_home_config_path()
        if home_config_path.exists():
            try:
                data = _read_toml(home_config_path)
                profiles["home"] = list(data.get("profiles", {}).keys())
            except ConfigFileError:
                pass

        return profiles

    def _find_pyproject_toml(self, start_dir: Path | None = None) -> Path | None:
        """Find pyproject.toml by searching up the directory tree."""
        override = os.getenv("TRANSMUTE_PYPROJECT_PATH")
        if override:
            path = Path(override)
            return path if path.exists() else None

        current = Path(start_dir if start_dir is not None else Path.cwd()).resolve()
        while current != current.parent:  # Stop at filesystem root
            pyproject_path = current / "pyproject.toml"
            if pyproject_path.exists():
                return pyproject_path
            current = current.parent
        return None

    def _get_home_config_path(self) -> Path:
        home = os.getenv("TRANSMUTE_CONFIG_HOME")
        if home:
            path = Path(home)
            return path if path.suffix == ".toml" else path / "transmute.toml"
        return Path.home() / ".config" / "transmute.toml"
