"""Environment variable configuration loading.

This module handles loading configuration from environment variables with
the TRANSMUTE_ prefix, including optional .env file support and type coercion.
"""

import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .schema import TransmuteSettings
from .types import SENSITIVE_FIELDS

ENV_PREFIX = "TRANSMUTE_"


def env_var_for(field_name: str) -> str:
    """Environment variable name that sets ``field_name``."""
    return f"{ENV_PREFIX}{field_name.upper()}"


class EnvironmentConfigLoader:
    """Loads configuration from TRANSMUTE_* environment variables."""

    def load_env_config(self, env_file: str | Path | None = None) -> dict[str, Any]:
        """Load configuration from environment variables.

        Args:
            env_file: Optional path to .env file to load first.
                     Values from this file never override variables that are
                     already set.

        Returns:
            Only the fields that are actually set in the environment, coerced
            to their schema types.

        Raises:
            ValueError: If environment variables contain invalid values.
        """
        if env_file:
            self._load_env_file(env_file)

        env_values = {
            name: os.environ[env_var_for(name)]
            for name in TransmuteSettings.model_fields
            if env_var_for(name) in os.environ
        }
        if not env_values:
            return {}

        try:
            # Init kwargs take precedence over the env source, so only the
            # values gathered above are validated here.
            settings = TransmuteSettings(**env_values)
        except PydanticValidationError as e:
            env_var_list = [
                f"{env_var_for(name)}={os.environ[env_var_for(name)]}"
                for name in env_values
            ]
            raise ValueError(
                f"Invalid environment variable values: {', '.join(env_var_list)}. "
                f"Error: {e}"
            ) from e

        return {name: getattr(settings, name) for name in env_values}

    def _load_env_file(self, env_file: str | Path) -> None:
        """Load KEY=VALUE lines from a .env file into the environment.

        Raises:
            FileNotFoundError: If the .env file doesn't exist.
            ValueError: If the .env file has invalid format.
        """
        env_path = Path(env_file)
        if not env_path.exists():
            raise FileNotFoundError(f"Environment file not found: {env_path}")

        try:
            with env_path.open(encoding="utf-8") as f:
                for line_num, raw_line in enumerate(f, 1):
                    line = raw_line.strip()
                    if not line or line.startswith("#"):
                        continue
                    if "=" not in line:
                        raise ValueError(
                            f"Invalid format at line {line_num}: {line}. "
                            "Expected KEY=VALUE format."
                        )

                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip()
                    if (value.startswith('"') and value.endswith('"')) or (
                        value.startswith("'") and value.endswith("'")
                    ):
                        value = value[1:-1]

                    if key not in os.environ:
                        os.environ[key] = value
        except OSError as e:
            raise ValueError(f"Failed to read environment file {env_path}: {e}") from e

    def get_env_summary(self) -> dict[str, str]:
        """Currently set TRANSMUTE_* settings variables, secrets redacted."""
        summary = {}
        for name in TransmuteSettings.model_fields:
            env_var = env_var_for(name)
            if env_var in os.environ:
                summary[env_var] = (
                    "<redacted>" if name in SENSITIVE_FIELDS else os.environ[env_var]
                )
        return summary
