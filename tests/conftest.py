"""
Global test configuration with support for different test types.
"""

from collections.abc import Generator, Mapping
from contextlib import contextmanager
import logging
import os
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from transmute.cache.backends import InMemoryBackend
from transmute.config import (
    CacheConfig,
    CacheTierConfig,
    FrozenConfig,
    QueueConfig,
    RateLimitConfig,
)
from transmute.core.types import Content, RawResult
from transmute.frontdoor import build_runtime


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_transmute_env(request, monkeypatch):
    """Ensure a clean TRANSMUTE_* environment for each test.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return

    for key in list(os.environ.keys()):
        if key.startswith("TRANSMUTE_"):
            monkeypatch.delenv(key, raising=False)
    # Avoid DEBUG toggles enabling telemetry paths
    monkeypatch.delenv("DEBUG", raising=False)


@pytest.fixture(autouse=True)
def neutral_config_files(request, monkeypatch, tmp_path):
    """Point the home and project config paths at isolated temp files.

    Prevents reading a developer's real ~/.config/transmute.toml or any
    pyproject.toml above the working directory.
    """
    if request.node.get_closest_marker("allow_real_config_files"):
        return

    isolated = tmp_path / "config_isolated"
    isolated.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("TRANSMUTE_CONFIG_HOME", str(isolated / "transmute.toml"))
    monkeypatch.setenv("TRANSMUTE_PYPROJECT_PATH", str(isolated / "pyproject.toml"))


@pytest.fixture
def isolated_config_sources(tmp_path):
    """Completely isolate configuration sources for testing.

    Returns a context manager that writes the given project and home TOML,
    sets the given environment (TRANSMUTE_ prefix added automatically) and
    removes everything else.
    """

    @contextmanager
    def _setup(
        *,
        pyproject_content: str = "",
        home_content: str = "",
        env_vars: dict[str, str] | None = None,
    ) -> Generator[None]:
        clean_env = {
            k: v for k, v in os.environ.items() if not k.startswith("TRANSMUTE_")
        }
        if env_vars:
            for key, value in env_vars.items():
                if not key.startswith("TRANSMUTE_"):
                    key = f"TRANSMUTE_{key.upper()}"
                clean_env[key] = value

        project_dir = tmp_path / "project"
        project_dir.mkdir(exist_ok=True)
        pyproject_path = project_dir / "pyproject.toml"

        home_dir = tmp_path / "home"
        home_dir.mkdir(exist_ok=True)
        home_config_path = home_dir / "transmute.toml"

        if pyproject_content:
            pyproject_path.write_text(pyproject_content)
        if home_content:
            home_config_path.write_text(home_content)

        clean_env["TRANSMUTE_PYPROJECT_PATH"] = str(pyproject_path)
        clean_env["TRANSMUTE_CONFIG_HOME"] = str(home_config_path)

        with patch.dict(os.environ, clean_env, clear=True):
            yield

    return _setup


# --- Logging Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Sets the log level for noisy external libraries to WARNING."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "integration: Component integration tests with fake providers",
        "contract: Invariants every release must keep",
        "allow_env_pollution: Keep TRANSMUTE_* variables from the outer env",
        "allow_real_config_files: Read real home and project config files",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


class FakeClock:
    """Manually advanced clock shared by backends, tiers and the limiter."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProviderClient:
    """Deterministic provider: echoes prompt and content, records every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Content, dict[str, Any]]] = []
        self.fail_times = 0
        self.error: Exception = RuntimeError("provider unavailable")

    async def invoke(
        self, prompt: str, content: Content, config: Mapping[str, Any]
    ) -> RawResult:
        self.calls.append((prompt, content, dict(config)))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise self.error
        if isinstance(content, str):
            return RawResult(text=f"{prompt} :: {content}")
        return RawResult(text=f"{prompt} :: <{content.mime_type} {len(content)} bytes>")


@pytest.fixture
def clock():
    """A fake wall clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def backend(clock):
    """In-memory backend driven by the fake clock."""
    return InMemoryBackend(clock=clock)


@pytest.fixture
def provider_client():
    """Fake provider client that counts invocations."""
    return FakeProviderClient()


@pytest.fixture
def frozen_config():
    """Build a FrozenConfig with small, test-friendly knobs."""

    def _make(
        *,
        cache_enabled: bool = True,
        rate_limit: int | None = None,
        tries: int = 3,
        delay: int = 0,
        timeout: int = 5,
    ) -> FrozenConfig:
        return FrozenConfig(
            cache=CacheConfig(
                content_fetch=CacheTierConfig(enabled=cache_enabled, ttl_seconds=1800),
                results=CacheTierConfig(enabled=cache_enabled, ttl_seconds=3600),
            ),
            rate_limit=RateLimitConfig(
                enabled=rate_limit is not None,
                max_attempts=rate_limit or 60,
                decay_seconds=60,
            ),
            queue=QueueConfig(tries=tries, delay=delay, timeout=timeout),
        )

    return _make


@pytest.fixture
def make_runtime(frozen_config, backend, provider_client):
    """Build a runtime over the fake backend and provider client."""

    def _make(config: FrozenConfig | None = None, **kwargs: Any):
        kwargs.setdefault("backend", backend)
        kwargs.setdefault("client", provider_client)
        return build_runtime(config or frozen_config(), **kwargs)

    return _make


@pytest.fixture
def media_file(tmp_path) -> Path:
    """A small PNG-looking file with every byte value in it."""
    path = tmp_path / "pixel.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + bytes(range(256)))
    return path
