"""Repository-level operational config loader."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

from procfilter.lib.config._paths import config_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProcFilterConfig:
    """Resolved operational configuration for filter execution."""

    timeout_seconds: float = 300.0
    stream_threshold_bytes: int = 64 * 1024


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "timeouts": {
        "filter_seconds": "timeout_seconds",
        "timeout_seconds": "timeout_seconds",
    },
    "streaming": {
        "threshold_bytes": "stream_threshold_bytes",
        "stream_threshold_bytes": "stream_threshold_bytes",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "timeout_seconds": "timeout_seconds",
    "stream_threshold_bytes": "stream_threshold_bytes",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "PROCFILTER_TIMEOUT_SECONDS": "timeout_seconds",
    "PROCFILTER_STREAM_THRESHOLD_BYTES": "stream_threshold_bytes",
}

_INT_FIELDS = frozenset({"stream_threshold_bytes"})


def _validate_range(*, field_name: str, value: int | float, source: str) -> None:
    if field_name == "timeout_seconds" and value <= 0:
        raise ValueError(f"Invalid value for '{source}': expected > 0, got {value!r}.")
    if field_name == "stream_threshold_bytes" and value < 0:
        raise ValueError(f"Invalid value for '{source}': expected >= 0, got {value!r}.")


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> int | float:
    if field_name in _INT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        value: int | float = raw_value
    else:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        value = float(raw_value)

    _validate_range(field_name=field_name, value=value, source=source)
    return value


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> int | float:
    expected = "int" if field_name in _INT_FIELDS else "float"
    try:
        value: int | float = (
            int(raw_value.strip()) if expected == "int" else float(raw_value.strip())
        )
    except ValueError as error:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected {expected}, got {raw_value!r}."
        ) from error

    _validate_range(field_name=field_name, value=value, source=env_name)
    return value


def _default_values() -> dict[str, object]:
    defaults = ProcFilterConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(ProcFilterConfig)}


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
                        "Ignoring unknown procfilter config key '%s.%s'.",
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
            logger.warning("Ignoring unknown procfilter config key '%s'.", key)
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


def load_config(repo_root: Path) -> ProcFilterConfig:
    """Load `.procfilter/config.toml` and apply environment overrides."""

    values = _default_values()
    path = config_path(repo_root)
    if path.is_file():
        payload_obj = tomllib.loads(path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=path)

    _apply_env_overrides(values)
    return ProcFilterConfig(
        timeout_seconds=cast("float", values["timeout_seconds"]),
        stream_threshold_bytes=cast("int", values["stream_threshold_bytes"]),
    )
