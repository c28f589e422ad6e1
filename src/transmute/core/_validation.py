"""Minimal guard helpers shared by the core data types (clarity > boilerplate)."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
import typing

T = typing.TypeVar("T")


def _freeze_mapping(
    m: dict[str, T] | Mapping[str, T] | None,
) -> Mapping[str, T]:
    """Return an immutable mapping view.

    Accepts dict or Mapping; wraps dicts in MappingProxyType. `None` becomes an
    empty view so callers never have to special-case a missing context.
    """
    if isinstance(m, MappingProxyType):
        return m
    if m is None:
        return MappingProxyType({})
    return MappingProxyType(dict(m))


def _is_tuple_of(value: object, typ: type | tuple[type, ...]) -> bool:
    return isinstance(value, tuple) and all(isinstance(v, typ) for v in value)


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            enhanced_message = f"{field_name}: {message}"
            raise exc(enhanced_message)
        raise exc(message)


def _thaw(value: typing.Any) -> typing.Any:
    """Convert frozen mapping views back into plain dicts, recursively."""
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_thaw(v) for v in value]
    return value
