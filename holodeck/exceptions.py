"""Custom exception hierarchy for Holodeck.

All holodeck-specific exceptions inherit from HolodeckError, enabling
callers to catch every lifecycle failure with a single except clause.
"""

from __future__ import annotations

from collections.abc import Sequence


class HolodeckError(Exception):
    """Base exception for all Holodeck errors."""


class ConfigurationError(HolodeckError):
    """Raised for invalid configuration or missing required settings."""


class ValidationError(ConfigurationError):
    """Raised when a cluster specification breaks a structural rule."""


class CacheError(HolodeckError):
    """Raised when the cache file cannot be read or written."""


class ProvisioningError(HolodeckError):
    """Raised when a creation phase fails."""

    def __init__(self, phase: str, message: str | None = None) -> None:
        self.phase = phase
        super().__init__(message or f"error {phase}")


class InstancePoolError(ProvisioningError):
    """Raised when one or more instances of a pool could not be created."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = tuple(errors)
        joined = ", ".join(str(e) for e in self.errors)
        super().__init__("creating instances", f"errors creating instances: [{joined}]")


class ImageResolutionError(HolodeckError):
    """Raised when no machine image can be resolved for a node."""


class ArchitectureMismatchError(ImageResolutionError):
    """Raised when the image architecture is not supported by the instance type."""

    def __init__(self, architecture: str, instance_type: str, supported: Sequence[str]) -> None:
        self.architecture = architecture
        self.instance_type = instance_type
        self.supported = tuple(supported)
        super().__init__(
            f"architecture mismatch: image architecture {architecture} is not supported "
            f"by instance type {instance_type} (supported: {', '.join(self.supported)})"
        )


class DeletionError(HolodeckError):
    """Raised when teardown of cloud resources fails."""


class RetryCancelledError(HolodeckError):
    """Raised when a retry loop is cancelled while waiting."""


class PublicIPError(HolodeckError):
    """Raised when the public IP of this host cannot be detected."""
