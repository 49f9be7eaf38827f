"""Payload (de)serialization.

Payloads (workflow input, activity input/result, marker details, control blobs)
are opaque strings on the wire. The default mapper encodes them as JSON through
pydantic so models, dataclasses and plain values all work.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Protocol

import pydantic_core
from pydantic import TypeAdapter, ValidationError

from swf_decider.decider.errors import DecodeError


class DataMapper(Protocol):
    def serialize(self, value: object) -> str | None: ...

    def deserialize(self, raw: str | None, type_: Any = Any) -> Any: ...


@lru_cache(maxsize=256)
def _adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


class JsonDataMapper:
    """JSON payloads, validated with pydantic on the way in."""

    def serialize(self, value: object) -> str | None:
        if value is None:
            return None
        try:
            return pydantic_core.to_json(value).decode("utf-8")
        except pydantic_core.PydanticSerializationError as e:
            raise ValueError(f"Cannot serialize payload of type {type(value).__name__}: {e}") from e

    def deserialize(self, raw: str | None, type_: Any = Any) -> Any:
        """Decode `raw` into `type_`.

        Raises:
            DecodeError: if the payload is not valid JSON or does not match `type_`.
        """

        if raw is None:
            return None
        try:
            adapter = _adapter(type_)
        except TypeError:
            # Unhashable type hints (rare) bypass the cache.
            adapter = TypeAdapter(type_)
        try:
            return adapter.validate_json(raw)
        except ValidationError as e:
            raise DecodeError(f"Cannot decode payload as {_type_name(type_)}: {e}") from e


def _type_name(type_: Any) -> str:
    return getattr(type_, "__name__", None) or repr(type_)
