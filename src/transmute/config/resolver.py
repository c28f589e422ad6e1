"""Configuration resolution with precedence handling.

This module implements the core resolution algorithm that merges configuration
from multiple sources according to the documented precedence order:
Programmatic > Environment > Project file > Home file > Defaults
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .audit import SourceTracker
from .env_loader import EnvironmentConfigLoader
from .file_loader import ConfigFileError, FileConfigLoader
from .schema import TransmuteSettings, default_values
from .types import ConfigOrigin, ResolvedConfig

logger = logging.getLogger(__name__)


class ConfigResolver:
    """Resolves configuration from multiple sources with proper precedence."""

    def __init__(self) -> None:  # noqa: D107
        self.file_loader = FileConfigLoader()
        self.env_loader = EnvironmentConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        use_env_file: str | Path | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources with proper precedence.

        Args:
            programmatic: Programmatic overrides (highest precedence)
            profile: Profile name to load from files
            use_env_file: Optional .env file to load
            project_root: Directory to search for pyproject.toml

        Returns:
            ResolvedConfig with merged values and source tracking.

        Raises:
            ValueError: If validation fails.
            ConfigFileError: If the project file is malformed.
        """
        source_tracker = SourceTracker()
        merged_config: dict[str, Any] = {}

        if profile is None:
            profile = self.get_effective_profile()

        def apply(values: dict[str, Any], origin: ConfigOrigin) -> None:
            for field, value in values.items():
                if field in merged_config:  # Only override known fields
                    merged_config[field] = value
                    source_tracker.set_origin(field, origin)
                else:
                    logger.debug("Ignoring unknown config field %r from %s", field, origin)

        # Step 1: schema defaults
        for field, value in default_values().items():
            merged_config[field] = value
            source_tracker.set_origin(field, "default")

        # Step 2: home file (errors are non-fatal)
        try:
            apply(self.file_loader.load_home_config(profile=profile), "file")
        except ConfigFileError as e:
            logger.warning("Skipping home configuration: %s", e)

        # Step 3: project file
        try:
            apply(
                self.file_loader.load_project_config(
                    project_root=project_root, profile=profile
                ),
                "file",
            )
        except ConfigFileError:
            # A broken base file is fatal; a profile missing from this file
            # may still exist in the home file.
            if profile is None:
                raise

        if profile is not None and not any(
            self.validate_profile_exists(profile, project_root)
        ):
            logger.warning("Profile '%s' not found in any configuration file", profile)

        # Step 4: environment variables
        try:
            apply(self.env_loader.load_env_config(env_file=use_env_file), "env")
        except (ValueError, FileNotFoundError) as e:
            raise ValueError(f"Environment configuration error: {e}") from e

        # Step 5: programmatic overrides
        if programmatic:
            apply(dict(programmatic), "programmatic")

        # Step 6: validate the merged result
        try:
            validated = TransmuteSettings(**merged_config)
        except PydanticValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

        return ResolvedConfig(
            values=validated.to_dict(), origin=source_tracker.get_source_map()
        )

    def validate_profile_exists(
        self, profile: str, project_root: Path | None = None
    ) -> tuple[bool, bool]:
        """Return (exists_in_project, exists_in_home) for a profile name."""
        available_profiles = self.file_loader.list_available_profiles(project_root)
        return (
            profile in available_profiles["project"],
            profile in available_profiles["home"],
        )

    def get_effective_profile(self) -> str | None:
        """Profile name from the TRANSMUTE_PROFILE environment variable."""
        return os.getenv("TRANSMUTE_PROFILE")

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        """List all available profiles from project and home files."""
        return self.file_loader.list_available_profiles(project_root)
