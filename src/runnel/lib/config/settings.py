"""Operational config loader for process execution defaults."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "runnel.toml"


@dataclass(frozen=True, slots=True)
class RunnelConfig:
    """Resolved operational configuration for runnel."""

    command_timeout_seconds: float = 30.0
    kill_grace_seconds: float = 2.0
    wait_poll_interval_seconds: float = 0.01
    select_tick_seconds: float = 0.05
    read_buffer_size: int = 8192
    write_buffer_size: int = 8192
    max_drain_bytes: int = 1024 * 1024
    line_ending: str = "\n"


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "timeouts": {
        "command_seconds": "command_timeout_seconds",
        "command_timeout_seconds": "command_timeout_seconds",
        "kill_grace_seconds": "kill_grace_seconds",
        "wait_poll_interval_seconds": "wait_poll_interval_seconds",
        "select_tick_seconds": "select_tick_seconds",
    },
    "io": {
        "read_buffer_size": "read_buffer_size",
        "write_buffer_size": "write_buffer_size",
        "max_drain_bytes": "max_drain_bytes",
        "line_ending": "line_ending",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {field.name: field.name for field in fields(RunnelConfig)}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "RUNNEL_COMMAND_TIMEOUT_SECONDS": "command_timeout_seconds",
    "RUNNEL_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "RUNNEL_WAIT_POLL_INTERVAL_SECONDS": "wait_poll_interval_seconds",
    "RUNNEL_SELECT_TICK_SECONDS": "select_tick_seconds",
    "RUNNEL_READ_BUFFER_SIZE": "read_buffer_size",
    "RUNNEL_WRITE_BUFFER_SIZE": "write_buffer_size",
    "RUNNEL_MAX_DRAIN_BYTES": "max_drain_bytes",
}

_INT_FIELDS = frozenset({"read_buffer_size", "write_buffer_size", "max_drain_bytes"})
_FLOAT_FIELDS = frozenset(
    {
        "command_timeout_seconds",
        "kill_grace_seconds",
        "wait_poll_interval_seconds",
        "select_tick_seconds",
    }
)


def _expected_type_name(field_name: str) -> str:
    if field_name in _INT_FIELDS:
        return "int"
    if field_name in _FLOAT_FIELDS:
        return "float"
    return "str"


def _require_positive(value: int | float, *, source: str) -> None:
    if value <= 0:
        raise ValueError(f"Invalid value for '{source}': expected > 0, got {value!r}.")


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        _require_positive(raw_value, source=source)
        return raw_value

    if expected == "float":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        _require_positive(raw_value, source=source)
        return float(raw_value)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    # Line endings are whitespace by nature, so only emptiness is rejected.
    if not raw_value:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    return raw_value


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        try:
            value = int(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected int, got {raw_value!r}."
            ) from error
        _require_positive(value, source=env_name)
        return value

    try:
        parsed = float(raw_value.strip())
    except ValueError as error:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
        ) from error
    _require_positive(parsed, source=env_name)
    return parsed


def _default_values() -> dict[str, object]:
    defaults = RunnelConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(RunnelConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown runnel config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown runnel config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _build_config(values: dict[str, object]) -> RunnelConfig:
    return RunnelConfig(
        command_timeout_seconds=cast("float", values["command_timeout_seconds"]),
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        wait_poll_interval_seconds=cast("float", values["wait_poll_interval_seconds"]),
        select_tick_seconds=cast("float", values["select_tick_seconds"]),
        read_buffer_size=cast("int", values["read_buffer_size"]),
        write_buffer_size=cast("int", values["write_buffer_size"]),
        max_drain_bytes=cast("int", values["max_drain_bytes"]),
        line_ending=cast("str", values["line_ending"]),
    )


def resolve_config_path(root: Path) -> Path:
    """Return the config file path, honoring `RUNNEL_CONFIG` when set."""

    explicit = os.getenv("RUNNEL_CONFIG", "").strip()
    if explicit:
        return Path(explicit).expanduser()
    return root / CONFIG_FILENAME


def load_config(root: Path | None = None) -> RunnelConfig:
    """Load `runnel.toml` and apply environment overrides."""

    values = _default_values()
    path = resolve_config_path(root if root is not None else Path.cwd())
    if path.is_file():
        payload_obj = tomllib.loads(path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=path)

    _apply_env_overrides(values)
    return _build_config(values)
