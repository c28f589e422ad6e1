"""Job envelopes: the serializable form of a queued transformation.

Wire format (camelCase keys, stable across releases)::

    {"handler": {"kind": "closure" | "identity", "payload": ...},
     "content": {"kind": "text" | "media", "value": ...},
     "context": {...},
     "retry":   {"maxAttempts": int, "timeoutSeconds": int, "queue": str,
                 "connection": str | null, "delaySeconds": int},
     "config":  {...}}

Binary media travels as ``{"type", "base64", "mimeType", "title"}`` and is
decoded back to the exact original bytes.

``config`` holds the request's transform config, so a queued job is keyed and
configured exactly like the same request run inline. Envelopes without it
parse as having an empty config.
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
import json
from typing import Any, Literal

from transmute.config.types import QueueConfig
from transmute.core._validation import _freeze_mapping, _require, _thaw
from transmute.core.exceptions import EnvelopeError
from transmute.core.types import BinaryMedia, Content
from transmute.pipeline.registry import HandlerDescriptor


@dataclasses.dataclass(frozen=True, slots=True)
class QueueableMedia:
    """Base64 form of ``BinaryMedia`` for transport."""

    type: Literal["image", "document"]
    base64: str
    mime_type: str
    title: str | None = None

    @classmethod
    def from_media(cls, media: BinaryMedia) -> QueueableMedia:  # noqa: D102
        return cls(
            type=media.kind,
            base64=media.base64(),
            mime_type=media.mime_type,
            title=media.title,
        )

    def to_media(self) -> BinaryMedia:
        """Decode back to media.

        Raises:
            EnvelopeError: If the payload is not valid base64.
        """
        try:
            return BinaryMedia.from_base64(
                self.base64, self.mime_type, kind=self.type, title=self.title
            )
        except (ValueError, TypeError) as e:
            raise EnvelopeError(f"Invalid media in envelope: {e}") from e

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {
            "type": self.type,
            "base64": self.base64,
            "mimeType": self.mime_type,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QueueableMedia:  # noqa: D102
        kind = data.get("type", "document")
        if kind not in ("image", "document"):
            raise EnvelopeError(f"Unknown media type: {kind!r}")
        encoded = data.get("base64")
        mime_type = data.get("mimeType")
        if not isinstance(encoded, str) or not isinstance(mime_type, str):
            raise EnvelopeError("Media requires 'base64' and 'mimeType' strings")
        return cls(type=kind, base64=encoded, mime_type=mime_type, title=data.get("title"))


@dataclasses.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often and where a job is attempted."""

    max_attempts: int = 3
    timeout_seconds: int = 60
    queue: str = "default"
    connection: str | None = None
    delay_seconds: int = 0

    def __post_init__(self) -> None:  # noqa: D105
        _require(
            condition=self.max_attempts >= 1,
            message="must be >= 1",
            field_name="max_attempts",
        )
        _require(
            condition=self.timeout_seconds >= 1,
            message="must be >= 1",
            field_name="timeout_seconds",
        )
        _require(
            condition=self.delay_seconds >= 0,
            message="must be >= 0",
            field_name="delay_seconds",
        )

    @classmethod
    def from_config(cls, config: QueueConfig) -> RetryPolicy:  # noqa: D102
        return cls(
            max_attempts=config.tries,
            timeout_seconds=config.timeout,
            queue=config.queue,
            connection=config.connection,
            delay_seconds=config.delay,
        )

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        return {
            "maxAttempts": self.max_attempts,
            "timeoutSeconds": self.timeout_seconds,
            "queue": self.queue,
            "connection": self.connection,
            "delaySeconds": self.delay_seconds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RetryPolicy:  # noqa: D102
        try:
            return cls(
                max_attempts=int(data["maxAttempts"]),
                timeout_seconds=int(data["timeoutSeconds"]),
                queue=str(data["queue"]),
                connection=data.get("connection"),
                delay_seconds=int(data.get("delaySeconds", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise EnvelopeError(f"Invalid retry policy: {e}") from e


@dataclasses.dataclass(frozen=True, slots=True)
class JobEnvelope:
    """Everything a worker needs to run a transformation later."""

    handler: HandlerDescriptor
    content: str | QueueableMedia
    context: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    retry: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    config: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:  # noqa: D105
        object.__setattr__(self, "context", _freeze_mapping(self.context))
        object.__setattr__(self, "config", _freeze_mapping(self.config))

    @classmethod
    def build(
        cls,
        handler: HandlerDescriptor,
        content: Content,
        context: Mapping[str, Any],
        retry: RetryPolicy,
        config: Mapping[str, Any] | None = None,
    ) -> JobEnvelope:
        """Build an envelope, converting media and checking context and config travel.

        Raises:
            EnvelopeError: If the context or config is not JSON-serializable.
        """
        payload: str | QueueableMedia = (
            QueueableMedia.from_media(content)
            if isinstance(content, BinaryMedia)
            else content
        )
        try:
            json.dumps(_thaw(context))
        except (TypeError, ValueError) as e:
            raise EnvelopeError(f"Context must be JSON-serializable: {e}") from e
        try:
            json.dumps(_thaw(config or {}))
        except (TypeError, ValueError) as e:
            raise EnvelopeError(
                f"Transform config must be JSON-serializable: {e}"
            ) from e
        return cls(
            handler=handler,
            content=payload,
            context=context,
            retry=retry,
            config=config or {},
        )

    def decoded_content(self) -> Content:
        """Content as the pipeline expects it (media decoded to bytes)."""
        if isinstance(self.content, QueueableMedia):
            return self.content.to_media()
        return self.content

    def content_length(self) -> int:  # noqa: D102
        return len(self.decoded_content())

    def to_dict(self) -> dict[str, Any]:  # noqa: D102
        if isinstance(self.content, QueueableMedia):
            content = {"kind": "media", "value": self.content.to_dict()}
        else:
            content = {"kind": "text", "value": self.content}
        return {
            "handler": self.handler.to_dict(),
            "content": content,
            "context": _thaw(self.context),
            "retry": self.retry.to_dict(),
            "config": _thaw(self.config),
        }

    def to_json(self) -> str:  # noqa: D102
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobEnvelope:
        """Parse the wire form.

        Raises:
            EnvelopeError: If any section is missing or malformed.
        """
        for section in ("handler", "content", "retry"):
            if not isinstance(data.get(section), Mapping):
                raise EnvelopeError(f"Envelope is missing the '{section}' section")

        content_data = data["content"]
        kind = content_data.get("kind")
        value = content_data.get("value")
        content: str | QueueableMedia
        if kind == "text" and isinstance(value, str):
            content = value
        elif kind == "media" and isinstance(value, Mapping):
            content = QueueableMedia.from_dict(value)
        else:
            raise EnvelopeError(f"Invalid envelope content of kind {kind!r}")

        context = data.get("context") or {}
        if not isinstance(context, Mapping):
            raise EnvelopeError("Envelope context must be an object")

        config = data.get("config") or {}
        if not isinstance(config, Mapping):
            raise EnvelopeError("Envelope config must be an object")

        return cls(
            handler=HandlerDescriptor.from_dict(data["handler"]),
            content=content,
            context=context,
            retry=RetryPolicy.from_dict(data["retry"]),
            config=config,
        )

    @classmethod
    def from_json(cls, payload: str) -> JobEnvelope:
        """Parse an envelope from JSON.

        Raises:
            EnvelopeError: If the payload is not a valid envelope.
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise EnvelopeError(f"Envelope is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise EnvelopeError("Envelope JSON must represent an object")
        return cls.from_dict(data)
