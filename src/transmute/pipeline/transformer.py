"""Base class for prompt-driven transformers.

A transformer owns a prompt and a handful of generation knobs, delegates the
actual generation to an injected ``ProviderClient`` and wraps the raw output
in a ``TransformResult``. Its knobs are part of the result cache key, so two
transformers that differ only in temperature never share cached results.
"""

from __future__ import annotations

import abc
from collections.abc import Mapping
import copy
import logging
from types import MappingProxyType
from typing import Any, ClassVar

from transmute.core.providers import Provider
from transmute.core.types import Content, TransformMetadata, TransformResult

from .registry import ProviderClient

logger = logging.getLogger(__name__)


class Transformer(abc.ABC):
    """Subclass and implement ``prompt()``; override knobs as class attributes."""

    identity_name: ClassVar[str | None] = None

    provider_name: ClassVar[Provider | str | None] = None
    model_name: ClassVar[str | None] = None
    system_prompt: ClassVar[str | None] = None
    temperature: ClassVar[float | None] = None
    top_p: ClassVar[float | None] = None
    tools: ClassVar[tuple[Mapping[str, Any], ...]] = ()
    output_format: ClassVar[Mapping[str, Any] | None] = None

    _overrides: Mapping[str, Any] = MappingProxyType({})

    def __init__(self, client: ProviderClient, config: Any = None) -> None:
        """Initialize with the provider client and (optional) frozen config.

        Without a config the transformer falls back to ``Provider.OPENAI``
        and that provider's default model.
        """
        self.client = client
        self.config = config

    # --- Identity and keys ---

    @property
    def identity(self) -> str:
        """Registered identity, else ``module.QualName``."""
        cls = type(self)
        return vars(cls).get("identity_name") or f"{cls.__module__}.{cls.__qualname__}"

    @abc.abstractmethod
    def prompt(self) -> str:
        """The instruction sent to the provider."""

    def provider(self) -> Provider:  # noqa: D102
        if self.provider_name is not None:
            return Provider.parse(self.provider_name)
        if self.config is not None:
            return self.config.provider
        return Provider.OPENAI

    def model(self) -> str:  # noqa: D102
        if self.model_name:
            return self.model_name
        if self.config is not None and self.config.model:
            return self.config.model
        return self.provider().default_model

    def transform_config(self) -> dict[str, Any]:
        """Generation settings passed to the provider client (unset knobs omitted).

        Per-request overrides from ``with_config`` win over the class knobs.
        """
        config: dict[str, Any] = {
            "provider": self.provider().value,
            "model": self.model(),
        }
        if self.system_prompt is not None:
            config["system_prompt"] = self.system_prompt
        if self.temperature is not None:
            config["temperature"] = self.temperature
        if self.top_p is not None:
            config["top_p"] = self.top_p
        if self.tools:
            config["tools"] = list(self.tools)
        if self.output_format is not None:
            config["output_format"] = dict(self.output_format)
        config.update(self._overrides)
        return config

    def fingerprint_parts(self) -> tuple[Any, ...]:  # noqa: D102
        return (self.prompt(), self.transform_config())

    def with_config(self, config: Mapping[str, Any]) -> Transformer:
        """A copy of this transformer with per-request settings merged in."""
        configured = copy.copy(self)
        configured._overrides = MappingProxyType({**self._overrides, **config})
        return configured

    # --- Hooks ---

    def before_transform(self, content: Content, context: Mapping[str, Any]) -> None:
        """Validate input before the provider is called; raise to reject it."""

    def after_transform(
        self, result: TransformResult, context: Mapping[str, Any]
    ) -> TransformResult:
        """Post-process a successful result."""
        return result

    # --- Invocation ---

    async def invoke(
        self, content: Content, context: Mapping[str, Any]
    ) -> TransformResult:
        """Run hooks around a provider call.

        Exceptions from hooks or the client propagate; the pipeline decides
        whether they become a failed result or an ``InvocationError``.
        """
        self.before_transform(content, context)
        config = self.transform_config()
        logger.debug(
            "Invoking %s via %s/%s", self.identity, config["provider"], config["model"]
        )
        raw = await self.client.invoke(self.prompt(), content, config)
        result = TransformResult.successful(
            raw.data,
            TransformMetadata.make(
                model=config["model"],
                provider=config["provider"],
                transformer=self.identity,
            ),
        )
        return self.after_transform(result, context)
