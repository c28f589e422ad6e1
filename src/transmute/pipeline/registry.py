"""Handler resolution: turning what a caller passed into an ``Invocable``.

A request may name its handler in several ways. Each is resolved once, at
dispatch time, into an object with a stable ``identity``, optional
``fingerprint_parts()`` and an async ``invoke``:

- a registered transformer identity (``"acme.summarize"``) or class
- a transformer or other ``Invocable`` instance
- a registered closure, bound with JSON-serializable captured values
- any other callable (in-process only; it cannot cross the queue)

``describe`` and ``from_descriptor`` convert invocables to and from the
``HandlerDescriptor`` carried by job envelopes.

Per-request transform config reaches an invocable through its optional
``with_config(config)``, which returns a configured copy. Transformers merge
it over their class knobs; closures receive it as a ``config`` keyword when
their signature accepts one.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import dataclasses
import inspect
import json
import logging
from typing import Any, Literal, Protocol, runtime_checkable

from transmute.core._validation import _freeze_mapping, _thaw
from transmute.core.exceptions import EnvelopeError, HandlerResolutionError
from transmute.core.types import (
    Content,
    RawResult,
    TransformMetadata,
    TransformResult,
)

logger = logging.getLogger(__name__)

CLOSURE_PREFIX = "closure:"


@runtime_checkable
class Invocable(Protocol):
    """Anything the pipeline can run for a piece of content."""

    @property
    def identity(self) -> str:  # noqa: D102
        ...

    async def invoke(
        self, content: Content, context: Mapping[str, Any]
    ) -> TransformResult:  # noqa: D102
        ...


@runtime_checkable
class ProviderClient(Protocol):
    """The external LLM capability; adapters live outside this package."""

    async def invoke(
        self, prompt: str, content: Content, config: Mapping[str, Any]
    ) -> RawResult:  # noqa: D102
        ...


def fingerprint_parts_of(invocable: Any) -> tuple[Any, ...]:
    """Extra key material an invocable declares (empty when it declares none)."""
    parts = getattr(invocable, "fingerprint_parts", None)
    if parts is None:
        return ()
    return tuple(parts())


def configure_invocable(invocable: Any, config: Mapping[str, Any] | None) -> Any:
    """Apply per-request transform config, when there is any and it is supported."""
    if not config:
        return invocable
    configure = getattr(invocable, "with_config", None)
    if configure is None:
        logger.debug(
            "%s does not accept transform config; ignoring %s",
            getattr(invocable, "identity", invocable),
            sorted(config),
        )
        return invocable
    return configure(config)


@dataclasses.dataclass(frozen=True, slots=True)
class HandlerDescriptor:
    """Serializable reference to a handler, as carried by a job envelope."""

    kind: Literal["closure", "identity"]
    payload: Any

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {"kind": self.kind, "payload": _thaw(self.payload)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HandlerDescriptor:
        """Parse the envelope form.

        Raises:
            EnvelopeError: If the kind is unknown or the payload is malformed.
        """
        kind = data.get("kind")
        payload = data.get("payload")
        if kind == "identity":
            if not isinstance(payload, str) or not payload:
                raise EnvelopeError("identity handler payload must be a non-empty string")
        elif kind == "closure":
            if not isinstance(payload, Mapping) or not isinstance(payload.get("id"), str):
                raise EnvelopeError("closure handler payload must contain an 'id'")
        else:
            raise EnvelopeError(f"Unknown handler kind: {kind!r}")
        return cls(kind=kind, payload=payload)


# --- Closure handlers ---


@dataclasses.dataclass(frozen=True)
class BoundClosure:
    """A registered closure plus the values it captured."""

    closure_id: str
    func: Callable[..., Any]
    captured: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    config: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:  # noqa: D105
        object.__setattr__(self, "captured", _freeze_mapping(self.captured))
        object.__setattr__(self, "config", _freeze_mapping(self.config))

    @property
    def identity(self) -> str:  # noqa: D102
        return f"{CLOSURE_PREFIX}{self.closure_id}"

    def fingerprint_parts(self) -> tuple[Any, ...]:  # noqa: D102
        return (self.captured,)

    def with_config(self, config: Mapping[str, Any]) -> BoundClosure:  # noqa: D102
        return dataclasses.replace(self, config={**self.config, **config})

    async def invoke(
        self, content: Content, context: Mapping[str, Any]
    ) -> TransformResult:
        """Call the function, awaiting it when it is a coroutine function."""
        return await _call_and_wrap(
            self.func,
            self.identity,
            content,
            context,
            dict(self.captured),
            _thaw(self.config),
        )


@dataclasses.dataclass(frozen=True)
class LocalCallable:
    """An unregistered callable; usable inline but never enqueued."""

    func: Callable[..., Any]
    config: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    @property
    def identity(self) -> str:  # noqa: D102
        module = getattr(self.func, "__module__", "") or ""
        name = getattr(self.func, "__qualname__", type(self.func).__qualname__)
        return f"callable:{module}.{name}"

    def with_config(self, config: Mapping[str, Any]) -> LocalCallable:  # noqa: D102
        return dataclasses.replace(self, config={**self.config, **config})

    async def invoke(
        self, content: Content, context: Mapping[str, Any]
    ) -> TransformResult:
        return await _call_and_wrap(
            self.func, self.identity, content, context, {}, dict(self.config)
        )


def _accepts_config(func: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        p.name == "config" or p.kind is inspect.Parameter.VAR_KEYWORD for p in params
    )


async def _call_and_wrap(
    func: Callable[..., Any],
    identity: str,
    content: Content,
    context: Mapping[str, Any],
    captured: dict[str, Any],
    config: dict[str, Any],
) -> TransformResult:
    kwargs = dict(captured)
    if config and _accepts_config(func):
        kwargs["config"] = config
    outcome = func(content, context, **kwargs)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    if isinstance(outcome, TransformResult):
        return outcome
    if isinstance(outcome, RawResult):
        outcome = outcome.data
    if not isinstance(outcome, str):
        raise TypeError(
            f"Handler {identity} returned {type(outcome).__name__}; "
            "expected str, RawResult or TransformResult"
        )
    return TransformResult.successful(
        outcome,
        TransformMetadata.make(model="local", provider="local", transformer=identity),
    )


def _ensure_json_serializable(closure_id: str, captured: Mapping[str, Any]) -> None:
    try:
        json.dumps(_thaw(captured), sort_keys=True)
    except (TypeError, ValueError) as e:
        raise EnvelopeError(
            f"Captured values for closure '{closure_id}' must be JSON-serializable: {e}"
        ) from e


# --- Registry ---

type TransformerFactory = Callable[[], Invocable]


class HandlerRegistry:
    """Maps identities to transformer factories and closure functions.

    Workers rebuild invocables from envelope descriptors through this
    registry, so every handler that must cross the queue has to be
    registered in the worker process too.
    """

    def __init__(self, client: Any = None, config: Any = None) -> None:
        """Initialize an empty registry.

        Args:
            client: Provider client injected into transformers built here.
            config: Frozen configuration injected into transformers built here.
        """
        self.client = client
        self.config = config
        self._transformers: dict[str, TransformerFactory] = {}
        self._closures: dict[str, Callable[..., Any]] = {}

    # --- Registration ---

    def register_transformer(self, identity: str, factory: TransformerFactory) -> None:
        """Register a zero-argument factory under ``identity``."""
        if identity.startswith(CLOSURE_PREFIX):
            raise ValueError(f"Transformer identity cannot start with {CLOSURE_PREFIX!r}")
        self._transformers[identity] = factory
        logger.debug("Registered transformer %s", identity)

    def transformer(self, identity: str | None = None) -> Callable[[type], type]:
        """Class decorator registering a ``Transformer`` subclass.

        The factory builds the class with this registry's client and config.
        """

        def decorator(cls: type) -> type:
            name = identity or vars(cls).get("identity_name") or _qualified(cls)
            cls.identity_name = name  # type: ignore[attr-defined]
            self.register_transformer(name, lambda: cls(self.client, self.config))
            return cls

        return decorator

    def closure(self, closure_id: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Function decorator registering a closure under ``closure_id``.

        The function is called as ``func(content, context, **captured)`` and
        may be sync or async. A request's transform config is passed as
        ``config=`` when the function declares that parameter (or ``**kwargs``).
        """

        def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
            self._closures[closure_id] = func
            logger.debug("Registered closure %s", closure_id)
            return func

        return decorator

    def bind(self, closure_id: str, **captured: Any) -> BoundClosure:
        """Bind captured values to a registered closure.

        Raises:
            HandlerResolutionError: If no closure is registered under the id.
            EnvelopeError: If a captured value is not JSON-serializable.
        """
        func = self._closures.get(closure_id)
        if func is None:
            raise HandlerResolutionError(f"No closure registered as '{closure_id}'")
        _ensure_json_serializable(closure_id, captured)
        return BoundClosure(closure_id=closure_id, func=func, captured=captured)

    def identities(self) -> tuple[str, ...]:
        """All registered transformer identities and closure handler identities."""
        return (
            *sorted(self._transformers),
            *(f"{CLOSURE_PREFIX}{c}" for c in sorted(self._closures)),
        )

    # --- Resolution ---

    def resolve(self, handler: Any) -> Invocable:
        """Resolve any supported handler form into an ``Invocable``.

        Raises:
            HandlerResolutionError: If the handler cannot be resolved.
        """
        if isinstance(handler, str):
            return self._resolve_identity(handler)
        if isinstance(handler, type):
            return self._resolve_class(handler)
        if isinstance(handler, Invocable):
            return handler
        if callable(handler):
            for closure_id, func in self._closures.items():
                if func is handler:
                    return BoundClosure(closure_id=closure_id, func=func)
            return LocalCallable(handler)
        raise HandlerResolutionError(
            f"Cannot resolve handler of type {type(handler).__name__}"
        )

    def _resolve_identity(self, identity: str) -> Invocable:
        if identity.startswith(CLOSURE_PREFIX):
            return self.bind(identity.removeprefix(CLOSURE_PREFIX))
        factory = self._transformers.get(identity)
        if factory is None:
            raise HandlerResolutionError(
                f"No transformer registered as '{identity}'. "
                f"Known: {', '.join(self.identities()) or 'none'}"
            )
        return factory()

    def _resolve_class(self, cls: type) -> Invocable:
        name = vars(cls).get("identity_name")
        if name and name in self._transformers:
            return self._transformers[name]()
        try:
            instance = cls(self.client, self.config)
        except TypeError as e:
            raise HandlerResolutionError(f"Cannot instantiate {cls.__name__}: {e}") from e
        if not isinstance(instance, Invocable):
            raise HandlerResolutionError(f"{cls.__name__} is not an invocable transformer")
        return instance

    # --- Envelope conversion ---

    def describe(self, invocable: Invocable) -> HandlerDescriptor:
        """Serializable descriptor for an invocable.

        Raises:
            EnvelopeError: If the invocable is not registered and so could not
                be rebuilt by a worker.
        """
        if isinstance(invocable, BoundClosure):
            if self._closures.get(invocable.closure_id) is not invocable.func:
                raise EnvelopeError(
                    f"Closure '{invocable.closure_id}' is not registered and cannot be queued"
                )
            captured = _thaw(invocable.captured)
            _ensure_json_serializable(invocable.closure_id, captured)
            return HandlerDescriptor(
                kind="closure",
                payload={"id": invocable.closure_id, "captured": captured},
            )
        if isinstance(invocable, LocalCallable):
            raise EnvelopeError(
                f"Unregistered callable {invocable.identity} cannot be queued; "
                "register it with HandlerRegistry.closure()"
            )
        identity = invocable.identity
        if identity not in self._transformers:
            raise EnvelopeError(
                f"Transformer '{identity}' is not registered and cannot be queued"
            )
        return HandlerDescriptor(kind="identity", payload=identity)

    def from_descriptor(self, descriptor: HandlerDescriptor) -> Invocable:
        """Rebuild the invocable a descriptor refers to.

        Raises:
            HandlerResolutionError: If the identity or closure is unknown here.
        """
        if descriptor.kind == "closure":
            payload = descriptor.payload
            return self.bind(payload["id"], **dict(payload.get("captured") or {}))
        return self._resolve_identity(descriptor.payload)


def _qualified(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"
