"""Built-in environment defaults and the overlay applied on top of them."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from envkit.config.models import EnvironmentConfig

DEFAULTS_FILE = Path(__file__).parent / "defaults" / "environment.yaml"


def load_defaults(path: Path = DEFAULTS_FILE) -> dict[str, Any]:
    """Read the packaged ``environment.yaml``."""
    if not path.is_file():
        msg = f"Environment defaults not found at {path}"
        raise FileNotFoundError(msg)
    return yaml.safe_load(path.read_text()) or {}


def overlay(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Return *base* with *overrides* laid over it.

    Sections merge key by key. Lists and scalars replace the default, so a
    ``workloads`` list swaps out the built-in pair. A null override leaves
    the default in place. Neither input is modified.
    """
    result = dict(base)
    for key, value in overrides.items():
        if value is None and key in base:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            value = overlay(current, value)
        result[key] = value
    return result


def build_environment_config(
    overrides: dict[str, Any], *, source: str = "built-in defaults"
) -> EnvironmentConfig:
    """Validate the defaults overlaid with *overrides*.

    Raises ValueError naming *source* when the result does not validate.
    """
    try:
        return EnvironmentConfig.model_validate(overlay(load_defaults(), overrides))
    except ValidationError as exc:
        msg = f"Invalid environment config ({source}):\n{exc}"
        raise ValueError(msg) from exc
