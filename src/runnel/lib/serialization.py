"""Conversion of process results into JSON-serializable payloads."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, cast


def decode_bytes(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def to_jsonable(value: Any) -> Any:
    """Convert supported values to JSON-serializable payloads.

    Byte buffers are decoded as UTF-8 with replacement so captured child
    output always survives the trip into JSON.
    """

    if is_dataclass(value) and not isinstance(value, type):
        return {item.name: to_jsonable(getattr(value, item.name)) for item in fields(value)}
    if isinstance(value, bytes | bytearray):
        return decode_bytes(bytes(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        typed_map = cast("Mapping[object, object]", value)
        return {str(key): to_jsonable(item) for key, item in typed_map.items()}
    if isinstance(value, list | tuple | set | frozenset):
        typed_seq = cast("list[object] | tuple[object, ...] | set[object]", value)
        return [to_jsonable(item) for item in typed_seq]
    return value
