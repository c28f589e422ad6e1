"""Provider identifiers and their default models.

Providers are opaque to the pipeline: they only select which model a
transformer reports in its metadata and which defaults the provider client
receives. The actual adapters live outside this package.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

_DEFAULT_MODELS: dict[str, str] = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-20241022",
    "groq": "llama-3.1-8b",
    "ollama": "llama3.2:1b",
    "gemini": "gemini-2.0",
    "mistral": "mistral-7b-instruct",
    "deepseek": "deepseek-chat",
    "xai": "grok-beta",
    "openrouter": "meta-llama/llama-3.2-1b-instruct:free",
    "voyageai": "voyage-3-lite",
    "elevenlabs": "eleven_turbo_v2_5",
}


class Provider(str, Enum):
    """Supported LLM providers."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GROQ = "groq"
    OLLAMA = "ollama"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    DEEPSEEK = "deepseek"
    XAI = "xai"
    OPENROUTER = "openrouter"
    VOYAGEAI = "voyageai"
    ELEVENLABS = "elevenlabs"

    @property
    def default_model(self) -> str:
        """Return the model used when neither config nor transformer picks one."""
        return _DEFAULT_MODELS[self.value]

    @classmethod
    def parse(cls, value: Any) -> Provider:
        """Parse a provider from an enum member or a case-insensitive string."""
        if isinstance(value, Provider):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            for provider in cls:
                if provider.value == normalized or provider.name.lower() == normalized:
                    return provider
        valid = ", ".join(p.value for p in cls)
        raise ValueError(f"Invalid provider: {value!r}. Must be one of: {valid}")
