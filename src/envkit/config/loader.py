"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, cast

import boto3
import yaml

from envkit.config.defaults import build_environment_config
from envkit.config.models import REGION_PATTERN, EnvironmentConfig
from envkit.errors import InvalidConfiguration

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")


def _resolve_env_str(value: str) -> str:
    """Replace all ${VAR} / ${VAR:-default} references in a string."""

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{var_name}' is not set and no default provided"
        raise ValueError(msg)

    return _ENV_PATTERN.sub(_replace, value)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _resolve_env_str(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise FileNotFoundError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}"
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        msg += f": {exc}"
        raise ValueError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise TypeError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def load_environment_config(path: str | Path | None = None) -> EnvironmentConfig:
    """Load environment config from built-in defaults, merged with overrides."""
    if path is None:
        return build_environment_config({})
    return build_environment_config(load_yaml(path), source=str(path))


def resolve_region(config: EnvironmentConfig, override: str | None = None) -> str:
    """Resolve the target region.

    Precedence: explicit override, config file, ``AWS_REGION`` /
    ``AWS_DEFAULT_REGION``, then the active AWS profile.
    """
    candidates = [
        override,
        config.region,
        os.environ.get("AWS_REGION"),
        os.environ.get("AWS_DEFAULT_REGION"),
    ]
    region = next((c for c in candidates if c), None)
    if region is None:
        region = boto3.session.Session().region_name
    if not region:
        msg = "AWS region is not configured; pass --region or set AWS_REGION"
        raise InvalidConfiguration(msg)
    if not REGION_PATTERN.fullmatch(region):
        msg = f"Invalid AWS region: {region}"
        raise InvalidConfiguration(msg)
    return region
