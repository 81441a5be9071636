"""Holodeck - ephemeral cloud test environments for CI.

Example:

    from pathlib import Path

    from holodeck import get_provider, load_environment

    env = load_environment(Path("examples/aws.yaml"))
    provider = get_provider(env)
    provider.create()
    print(provider.status())
    provider.delete()
"""

from loguru import logger

from holodeck.api import Condition, Environment, Provider
from holodeck.config import Settings, load_environment, load_settings
from holodeck.exceptions import (
    ArchitectureMismatchError,
    CacheError,
    ConfigurationError,
    DeletionError,
    HolodeckError,
    ImageResolutionError,
    InstancePoolError,
    ProvisioningError,
    ValidationError,
)
from holodeck.logging import LogConfig, configure_logging, setup_logging, teardown_logging
from holodeck.providers import get_provider

logger.disable("holodeck")

__version__ = "0.3.0"

__all__ = [
    "ArchitectureMismatchError",
    "CacheError",
    "Condition",
    "ConfigurationError",
    "DeletionError",
    "Environment",
    "HolodeckError",
    "ImageResolutionError",
    "InstancePoolError",
    "LogConfig",
    "Provider",
    "ProvisioningError",
    "Settings",
    "ValidationError",
    "configure_logging",
    "get_provider",
    "load_environment",
    "load_settings",
    "setup_logging",
    "teardown_logging",
]
