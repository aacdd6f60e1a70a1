"""CLI command handlers for config.* operations."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, fields
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from runnel.lib.config import RunnelConfig, load_config
from runnel.lib.config.settings import resolve_config_path

if TYPE_CHECKING:
    from cyclopts import App

Emitter = Callable[[Any], None]


@dataclass(frozen=True, slots=True)
class ConfigShowOutput:
    path: str
    exists: bool
    values: dict[str, object]

    def format_text(self) -> str:
        source = self.path if self.exists else f"{self.path} (not found, using defaults)"
        lines = [f"config: {source}"]
        lines.extend(f"{key} = {value!r}" for key, value in self.values.items())
        return "\n".join(lines)


def _config_values(config: RunnelConfig) -> dict[str, object]:
    return {field.name: getattr(config, field.name) for field in fields(config)}


def _config_show(emit: Emitter) -> None:
    path = resolve_config_path(Path.cwd())
    emit(
        ConfigShowOutput(
            path=path.as_posix(),
            exists=path.is_file(),
            values=_config_values(load_config()),
        )
    )


def register_config_commands(app: App, emit: Emitter) -> tuple[set[str], dict[str, str]]:
    description = "Show the resolved runnel configuration."
    handler = partial(_config_show, emit)
    handler.__name__ = "cmd_config_show"  # type: ignore[attr-defined]
    app.command(handler, name="show", help=description)
    return {"config.show"}, {"config.show": description}
