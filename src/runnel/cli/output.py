"""CLI output formatting utilities."""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import IO, Any, Literal, Protocol, cast, runtime_checkable

from runnel.lib.serialization import to_jsonable

OutputFormat = Literal["text", "json"]
type JSONScalar = str | int | float | bool | None
type JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


@runtime_checkable
class TextFormattable(Protocol):
    def format_text(self) -> str: ...


@runtime_checkable
class StreamPassthrough(Protocol):
    """Payload that replays captured child streams in text mode."""

    def write_through(self, stdout: IO[bytes], stderr: IO[bytes]) -> None: ...


@dataclass(frozen=True, slots=True)
class OutputConfig:
    format: OutputFormat


def _to_json_value(value: Any) -> JSONValue:
    return cast("JSONValue", to_jsonable(value))


def normalize_output_format(*, requested: str | None, json_mode: bool) -> OutputFormat:
    """Resolve final output format from flags; default is always "text"."""

    if json_mode:
        return "json"
    if requested is None or requested == "":
        return "text"

    normalized = requested.strip().lower()
    if normalized in {"text", "json"}:
        return cast("OutputFormat", normalized)
    raise SystemExit("--format must be one of: text, json")


def emit(value: Any, config: OutputConfig) -> None:
    """Emit one payload according to the configured output mode."""

    if config.format == "json":
        print(json.dumps(_to_json_value(value), sort_keys=True))
        return
    if isinstance(value, StreamPassthrough):
        sys.stdout.flush()
        sys.stderr.flush()
        value.write_through(sys.stdout.buffer, sys.stderr.buffer)
        return
    if isinstance(value, TextFormattable):
        print(value.format_text())
    else:
        print(json.dumps(_to_json_value(value), sort_keys=True, indent=2))
