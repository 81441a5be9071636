"""Provider registry."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from holodeck.api.environment import Environment
from holodeck.api.provider import Provider
from holodeck.exceptions import ConfigurationError


def get_provider(environment: Environment, cache_file: Path | None = None, **kwargs: Any) -> Provider:
    """Provider for ``environment.spec.provider``.

    Raises:
        ConfigurationError: For a provider kind this package does not implement.
    """
    match environment.spec.provider:
        case "aws":
            from holodeck.providers.aws import AWSProvider

            return AWSProvider(environment, cache_file, **kwargs)
        case other:
            raise ConfigurationError(f"unsupported provider: {other}")


__all__ = ["get_provider"]
