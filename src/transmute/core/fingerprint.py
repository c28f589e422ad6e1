"""Deterministic cache-key derivation.

Every part is rendered into a type-tagged structure and serialized as
canonical JSON (sorted keys, ASCII only). JSON escapes every control
character, so the unit separator used to join parts never occurs inside a
rendered part. The namespace participates both in the hashed payload and in
the key prefix, so "fetch" and "result" keys can never collide.
"""

from __future__ import annotations

from collections.abc import Mapping
import dataclasses
from enum import Enum
import hashlib
import json
from typing import Any, Final

from .types import BinaryMedia

FETCH_NAMESPACE: Final = "fetch"
RESULT_NAMESPACE: Final = "result"
NAMESPACES: Final[frozenset[str]] = frozenset({FETCH_NAMESPACE, RESULT_NAMESPACE})

_SEPARATOR: Final = "\x1f"


def _tag(part: Any) -> Any:
    # bool before int: bool is a subclass of int
    if part is None:
        return ["null"]
    if isinstance(part, bool):
        return ["bool", part]
    if isinstance(part, Enum):
        return ["enum", type(part).__name__, _tag(part.value)]
    if isinstance(part, int):
        return ["int", part]
    if isinstance(part, float):
        return ["float", repr(part)]
    if isinstance(part, str):
        return ["str", part]
    if isinstance(part, bytes | bytearray):
        return ["bytes", hashlib.sha256(part).hexdigest()]
    if isinstance(part, BinaryMedia):
        return [
            "media",
            part.kind,
            part.mime_type,
            hashlib.sha256(part.data).hexdigest(),
            part.title,
        ]
    if isinstance(part, Mapping):
        items = [[canonicalize(k), _tag(v)] for k, v in part.items()]
        items.sort(key=lambda kv: kv[0])
        return ["map", items]
    if isinstance(part, list | tuple):
        return ["seq", [_tag(p) for p in part]]
    if isinstance(part, set | frozenset):
        return ["set", sorted(canonicalize(p) for p in part)]
    if dataclasses.is_dataclass(part) and not isinstance(part, type):
        fields = {f.name: getattr(part, f.name) for f in dataclasses.fields(part)}
        return ["dataclass", type(part).__qualname__, _tag(fields)]
    raise TypeError(f"Cannot fingerprint value of type {type(part).__name__}")


def canonicalize(part: Any) -> str:
    """Render a single part into its stable, type-tagged string form."""
    return json.dumps(
        _tag(part), sort_keys=True, ensure_ascii=True, separators=(",", ":")
    )


def fingerprint(namespace: str, *parts: Any) -> str:
    """Derive a namespaced cache key from the given parts.

    Args:
        namespace: Either ``"fetch"`` or ``"result"``.
        *parts: Values to include; equal logical inputs give equal keys.

    Returns:
        ``"<namespace>:<sha256 hex>"``.

    Raises:
        ValueError: If the namespace is unknown.
        TypeError: If a part cannot be canonicalized.
    """
    if namespace not in NAMESPACES:
        raise ValueError(
            f"Unknown fingerprint namespace {namespace!r}; expected one of {sorted(NAMESPACES)}"
        )
    payload = _SEPARATOR.join((namespace, *(canonicalize(p) for p in parts)))
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{namespace}:{digest}"
