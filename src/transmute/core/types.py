"""Core data types that flow through the pipeline.

This module defines the immutable data structures that represent a
transformation request, its result, and the small records exchanged with
cache and rate-limit backends. Invariants are validated at construction so an
invalid state can never be observed downstream.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
from datetime import UTC, datetime
from enum import Enum
import json
import mimetypes
from pathlib import Path
import typing

from ._validation import _freeze_mapping, _is_tuple_of, _require, _thaw
from .providers import Provider

if typing.TYPE_CHECKING:
    from collections.abc import Mapping

# --- Result Monad ---
# Used at stage boundaries where failures are data rather than control flow
# (e.g. a worker reporting the outcome of a single job attempt).

TSuccess = typing.TypeVar("TSuccess")
TFailure = typing.TypeVar("TFailure", bound=Exception)


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful outcome."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failed outcome, containing the error."""

    error: TFailure


Result = Success[TSuccess] | Failure[TFailure]


# --- Transformation results ---


class TransformStatus(str, Enum):
    """Lifecycle status of a transformation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Completed and failed are terminal states."""
        return self in (TransformStatus.COMPLETED, TransformStatus.FAILED)


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclasses.dataclass(frozen=True, slots=True)
class TransformMetadata:
    """Descriptive metadata attached to a result; never affects control flow."""

    model: str
    provider: str
    transformer: str | None = None
    created_at: str = dataclasses.field(default_factory=_utc_now_iso)

    @classmethod
    def make(
        cls,
        model: str,
        provider: Provider | str,
        transformer: str | None = None,
    ) -> TransformMetadata:
        """Create metadata stamped with the current UTC time."""
        provider_value = provider.value if isinstance(provider, Provider) else provider
        return cls(model=model, provider=str(provider_value), transformer=transformer)

    def to_dict(self) -> dict[str, typing.Any]:  # noqa: D102
        return {
            "model": self.model,
            "provider": self.provider,
            "transformer": self.transformer,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, typing.Any]) -> TransformMetadata:  # noqa: D102
        return cls(
            model=str(data.get("model", "")),
            provider=str(data.get("provider", "")),
            transformer=data.get("transformer"),
            created_at=str(data.get("created_at") or _utc_now_iso()),
        )


@dataclasses.dataclass(frozen=True, slots=True)
class TransformResult:
    """Immutable outcome of a transformation.

    Invariants:
    - failed results never carry ``data``
    - completed results never carry errors
    """

    status: TransformStatus
    data: str | None = None
    metadata: TransformMetadata | None = None
    errors: tuple[str, ...] = ()
    context: Mapping[str, typing.Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate status/data/errors invariants and freeze context."""
        _require(
            condition=isinstance(self.status, TransformStatus),
            message="must be a TransformStatus",
            field_name="status",
            exc=TypeError,
        )
        _require(
            condition=self.data is None or isinstance(self.data, str),
            message="must be a str or None",
            field_name="data",
            exc=TypeError,
        )
        _require(
            condition=_is_tuple_of(self.errors, str),
            message="must be a tuple[str, ...]",
            field_name="errors",
            exc=TypeError,
        )
        _require(
            condition=not (self.status is TransformStatus.FAILED and self.data is not None),
            message="failed results cannot carry data",
            field_name="data",
        )
        _require(
            condition=not (self.status is TransformStatus.COMPLETED and self.errors),
            message="completed results cannot carry errors",
            field_name="errors",
        )
        object.__setattr__(self, "context", _freeze_mapping(self.context))

    # --- Constructors ---
    @classmethod
    def successful(
        cls, data: str, metadata: TransformMetadata | None = None
    ) -> TransformResult:
        """Create a completed result."""
        return cls(TransformStatus.COMPLETED, data=data, metadata=metadata)

    @classmethod
    def failed(
        cls,
        errors: typing.Iterable[str],
        metadata: TransformMetadata | None = None,
    ) -> TransformResult:
        """Create a failed result from one or more error messages."""
        return cls(
            TransformStatus.FAILED,
            data=None,
            metadata=metadata,
            errors=tuple(str(e) for e in errors),
        )

    @classmethod
    def pending(cls) -> TransformResult:  # noqa: D102
        return cls(TransformStatus.PENDING)

    # --- Queries ---
    def is_successful(self) -> bool:
        """True when the transformation completed without errors."""
        return self.status is TransformStatus.COMPLETED and not self.errors

    def is_failed(self) -> bool:  # noqa: D102
        return self.status is TransformStatus.FAILED

    def with_context(self, context: Mapping[str, typing.Any]) -> TransformResult:
        """Return a copy carrying the caller context."""
        return dataclasses.replace(self, context=context)

    # --- Serialization ---
    def to_dict(self) -> dict[str, typing.Any]:  # noqa: D102
        return {
            "status": self.status.value,
            "data": self.data,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "errors": list(self.errors),
            "context": _thaw(self.context),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, typing.Any]) -> TransformResult:  # noqa: D102
        metadata = data.get("metadata")
        return cls(
            status=TransformStatus(data.get("status", TransformStatus.PENDING.value)),
            data=data.get("data"),
            metadata=TransformMetadata.from_dict(metadata) if metadata else None,
            errors=tuple(data.get("errors") or ()),
            context=data.get("context") or {},
        )

    def to_json(self) -> str:  # noqa: D102
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, payload: str) -> TransformResult:
        """Create a result from its JSON form.

        Raises:
            ValueError: If the payload is not a JSON object.
        """
        data = json.loads(payload)
        if not isinstance(data, dict):
            raise ValueError("JSON must represent an object")
        return cls.from_dict(data)


@dataclasses.dataclass(frozen=True, slots=True)
class RawResult:
    """Raw output of the external provider capability."""

    text: str | None = None
    structured: Mapping[str, typing.Any] | None = None

    @property
    def data(self) -> str:
        """Structured output rendered as canonical JSON, else the text."""
        if self.structured is not None:
            return json.dumps(_thaw(self.structured), sort_keys=True)
        return self.text or ""


# --- Content ---


@dataclasses.dataclass(frozen=True, slots=True)
class BinaryMedia:
    """An image or document payload held in memory."""

    data: bytes
    mime_type: str
    kind: typing.Literal["image", "document"] = "document"
    title: str | None = None

    def __post_init__(self) -> None:
        """Validate media invariants."""
        _require(
            condition=isinstance(self.data, bytes),
            message="must be bytes",
            field_name="data",
            exc=TypeError,
        )
        _require(
            condition=isinstance(self.mime_type, str) and self.mime_type.strip() != "",
            message="must be a non-empty str",
            field_name="mime_type",
            exc=TypeError,
        )
        _require(
            condition=self.kind in ("image", "document"),
            message=f"must be 'image' or 'document', got {self.kind!r}",
            field_name="kind",
        )

    @classmethod
    def from_path(cls, path: str | Path, *, title: str | None = None) -> BinaryMedia:
        """Load media from a local file, guessing the MIME type."""
        file_path = Path(path)
        _require(
            condition=file_path.is_file(),
            message="path must point to an existing file",
            field_name="path",
        )
        mime_type, _ = mimetypes.guess_type(str(file_path))
        mime_type = mime_type or "application/octet-stream"
        kind: typing.Literal["image", "document"] = (
            "image" if mime_type.startswith("image/") else "document"
        )
        return cls(
            data=file_path.read_bytes(),
            mime_type=mime_type,
            kind=kind,
            title=title if title is not None else file_path.name,
        )

    @classmethod
    def from_base64(
        cls,
        encoded: str,
        mime_type: str,
        *,
        kind: typing.Literal["image", "document"] = "document",
        title: str | None = None,
    ) -> BinaryMedia:
        """Decode strictly validated base64 into media."""
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 media payload: {e}") from e
        return cls(data=raw, mime_type=mime_type, kind=kind, title=title)

    def base64(self) -> str:  # noqa: D102
        return base64.b64encode(self.data).decode("ascii")

    def __len__(self) -> int:
        return len(self.data)


type Content = str | BinaryMedia


def content_length(content: Content) -> int:
    """Length of the payload in characters (text) or bytes (media)."""
    return len(content)


# --- Requests ---


@dataclasses.dataclass(frozen=True, slots=True)
class TransformRequest:
    """A caller's request for work; immutable once built.

    ``handler`` may be a registered transformer identity, a transformer class
    or instance, or a bound closure. It is resolved into an invocable once, at
    dispatch time.
    """

    content: Content
    handler: typing.Any
    transform_config: Mapping[str, typing.Any] = dataclasses.field(
        default_factory=dict
    )
    context: Mapping[str, typing.Any] = dataclasses.field(default_factory=dict)
    run_async: bool = False

    def __post_init__(self) -> None:
        """Validate request invariants and freeze mappings."""
        _require(
            condition=isinstance(self.content, str | BinaryMedia),
            message="must be a str or BinaryMedia",
            field_name="content",
            exc=TypeError,
        )
        _require(
            condition=self.handler is not None,
            message="a transformer handler is required",
            field_name="handler",
        )
        _require(
            condition=isinstance(self.run_async, bool),
            message="must be a bool",
            field_name="run_async",
            exc=TypeError,
        )
        object.__setattr__(
            self, "transform_config", _freeze_mapping(self.transform_config)
        )
        object.__setattr__(self, "context", _freeze_mapping(self.context))


# --- Cache and rate-limit records ---


@dataclasses.dataclass(frozen=True, slots=True)
class CachedEntry[T]:
    """A value read back from a cache tier."""

    value: T
    stored_at: float
    ttl: int | None

    def is_expired(self, now: float) -> bool:  # noqa: D102
        return self.ttl is not None and now >= self.stored_at + self.ttl


class RateDecision(str, Enum):
    """Outcome of a rate-limiter admission."""

    ALLOWED = "allowed"
    DENIED = "denied"


@dataclasses.dataclass(slots=True)
class RateWindow:
    """Fixed-window counter state for a single key."""

    key: str
    count: int
    window_start: float
    limit: int
    window_seconds: int

    def elapsed(self, now: float) -> bool:  # noqa: D102
        return now >= self.window_start + self.window_seconds

    def retry_after(self, now: float) -> int:
        """Whole seconds until the window resets (never negative)."""
        remaining = self.window_start + self.window_seconds - now
        return max(0, int(remaining + 0.999))


# --- Queue handles ---


@dataclasses.dataclass(frozen=True, slots=True)
class JobHandle:
    """Returned by asynchronous dispatch in place of a result."""

    job_id: str
    queue: str
    connection: str | None = None
    status: TransformStatus = TransformStatus.PENDING
    enqueued_at: str = dataclasses.field(default_factory=_utc_now_iso)
