"""Settings and environment document loading.

Tool settings come from ~/.holodeck/defaults.toml (global) and
holodeck.toml (project), merged with the project file winning. The
environment document itself is YAML and describes one environment.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from holodeck.api.environment import Environment
from holodeck.cache import read_environment
from holodeck.constants import (
    API_TIMEOUT,
    DELETE_ATTEMPTS,
    DELETE_INITIAL_DELAY,
    DELETE_MAX_DELAY,
    DELETE_VERIFY_DELAY,
)
from holodeck.exceptions import CacheError, ConfigurationError
from holodeck.logging import LogConfig
from holodeck.retry import RetryConfig

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".holodeck" / "defaults.toml"
PROJECT_CONFIG_NAME = "holodeck.toml"
DEFAULT_CACHE_DIR = Path.home() / ".cache" / "holodeck"


@dataclass(frozen=True, slots=True)
class DeletionPolicy:
    """Retry policy applied to every deletion phase.

    Attributes:
        attempts: Attempts per phase.
        initial_delay: First backoff in seconds, doubled after each attempt.
        max_delay: Cap of a single backoff.
        verify_delay: Pause before re-describing a deleted resource.
    """

    attempts: int = DELETE_ATTEMPTS
    initial_delay: float = DELETE_INITIAL_DELAY
    max_delay: float = DELETE_MAX_DELAY
    verify_delay: float = DELETE_VERIFY_DELAY


@dataclass(frozen=True, slots=True)
class Settings:
    """Tool settings. ``log`` is None when no [log] table is configured, leaving logging silent."""

    cache_dir: Path = DEFAULT_CACHE_DIR
    log: LogConfig | None = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    deletion: DeletionPolicy = field(default_factory=DeletionPolicy)
    api_timeout: int = API_TIMEOUT


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    with path.open("rb") as f:
        return tomllib.load(f)


def _pick[T](cls: type[T], raw: RawConfig) -> T:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    return cls(**{k: v for k, v in raw.items() if k in known})


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    return _deep_merge(global_cfg, project_cfg)


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> Settings:
    """Resolve the merged TOML configuration into ``Settings``. Unknown keys are ignored."""
    raw = load_config(project_dir=project_dir, global_path=global_path)
    cache_dir = raw.get("cache_dir")
    return Settings(
        cache_dir=Path(cache_dir).expanduser() if cache_dir else DEFAULT_CACHE_DIR,
        log=_pick(LogConfig, raw["log"]) if "log" in raw else None,
        retry=_pick(RetryConfig, raw.get("retry", {})),
        deletion=_pick(DeletionPolicy, raw.get("deletion", {})),
        api_timeout=int(raw.get("api_timeout", API_TIMEOUT)),
    )


def load_environment(path: Path) -> Environment:
    """Read a user environment document.

    Raises:
        ConfigurationError: If the file is missing, empty or invalid.
    """
    try:
        return read_environment(path)
    except CacheError as e:
        raise ConfigurationError(str(e)) from e


def default_cache_path(name: str, cache_dir: Path | None = None) -> Path:
    if not name:
        raise ConfigurationError("environment metadata.name is required to derive a cache path")
    return (cache_dir or DEFAULT_CACHE_DIR) / f"{name}.yaml"


def resolve_region(env: Environment) -> str:
    """Region for the environment: ``AWS_REGION`` overrides the cluster or instance region."""
    region = os.environ.get("AWS_REGION", "")
    if not region:
        if env.spec.cluster is not None:
            region = env.spec.cluster.region
        else:
            region = env.spec.instance.region
    if not region:
        raise ConfigurationError("region is required (set spec.instance.region, spec.cluster.region or AWS_REGION)")
    return region
