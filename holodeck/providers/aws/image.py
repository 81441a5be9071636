"""Per-node image resolution and pre-flight image checks.

``resolve_image_for_node`` is a pure query: it never writes back into the
environment spec, so every node pool of a cluster can resolve its own
image independently.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from botocore.exceptions import ClientError
from loguru import logger

from holodeck.api.environment import Image
from holodeck.constants import DEFAULT_ARCHITECTURE, DEFAULT_SSH_USERNAME
from holodeck.exceptions import ArchitectureMismatchError, ConfigurationError, ImageResolutionError
from holodeck.providers.aws.ami import AMIResolver, newest_image, normalize_arch, publisher_arch
from holodeck.providers.aws.errors import transient_retry

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

LEGACY_OWNERS: Final = ("099720109477", "679593333241")
LEGACY_NAME_PATTERN: Final = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-%s-server-20*"


@dataclass(frozen=True, slots=True)
class ResolvedImage:
    """Image chosen for a node. Never persisted."""

    image_id: str
    ssh_username: str
    architecture: str


class ImageService:
    """Image lookups for one region.

    Args:
        ec2: EC2 client.
        resolver: OS registry resolver.
        default_os: Instance-level OS used when a node pool names none.
        owner_id: Owner override for the default Ubuntu 22.04 lookup.
    """

    def __init__(
        self,
        ec2: EC2Client,
        resolver: AMIResolver,
        *,
        default_os: str = "",
        owner_id: str | None = None,
    ) -> None:
        self._ec2 = ec2
        self._resolver = resolver
        self._default_os = default_os
        self._owner_id = owner_id

    def resolve_image_for_node(self, os: str, image: Image | None, arch: str = "") -> ResolvedImage:
        """Resolve the image for a node pool.

        Order: explicit image id (its own architecture is looked up), then
        the pool OS, then the instance OS, then the Ubuntu 22.04 default.

        Raises:
            ImageResolutionError: If nothing can be resolved.
        """
        if image is not None and image.image_id:
            image_arch = self.describe_image_arch(image.image_id)
            return ResolvedImage(image_id=image.image_id, ssh_username="", architecture=image_arch)

        if not arch:
            arch = image.architecture if image is not None and image.architecture else DEFAULT_ARCHITECTURE
        arch = normalize_arch(arch)

        os_id = os or self._default_os
        if os_id:
            try:
                resolved = self._resolver.resolve(os_id, arch)
            except ImageResolutionError as e:
                raise ImageResolutionError(f"failed to resolve AMI for OS {os_id}: {e}") from e
            return ResolvedImage(
                image_id=resolved.image_id,
                ssh_username=resolved.ssh_username,
                architecture=arch,
            )

        return ResolvedImage(
            image_id=self.find_legacy_ami(arch),
            ssh_username=DEFAULT_SSH_USERNAME,
            architecture=arch,
        )

    def find_legacy_ami(self, arch: str) -> str:
        """Newest Ubuntu 22.04 image for ``arch`` from the official owners."""
        match (arch or DEFAULT_ARCHITECTURE).lower():
            case "x86_64" | "amd64":
                arch = "x86_64"
            case "arm64" | "aarch64":
                arch = "arm64"
            case _:
                raise ImageResolutionError(f"invalid architecture {arch}")

        owners = [self._owner_id] if self._owner_id else list(LEGACY_OWNERS)
        filters = [
            {"Name": "name", "Values": [LEGACY_NAME_PATTERN % publisher_arch(arch)]},
            {"Name": "architecture", "Values": [arch]},
            {"Name": "owner-id", "Values": owners},
        ]
        try:
            images = self._describe_images(filters)
        except ClientError as e:
            raise ImageResolutionError(f"failed to describe images: {e}") from e

        newest = newest_image(images)
        if newest is None:
            raise ImageResolutionError(f"no images found for Ubuntu 22.04 ({arch})")
        logger.info(f"Using Ubuntu 22.04 image {newest['ImageId']} ({arch})")
        return newest["ImageId"]

    @transient_retry
    def _describe_images(self, filters: list[Any]) -> list[dict[str, Any]]:
        images: list[dict[str, Any]] = []
        for page in self._ec2.get_paginator("describe_images").paginate(Filters=filters):
            images.extend(page.get("Images", []))
        return images

    def describe_image_arch(self, image_id: str) -> str:
        try:
            images = self._ec2.describe_images(ImageIds=[image_id]).get("Images", [])
        except ClientError as e:
            raise ImageResolutionError(f"failed to describe image {image_id}: {e}") from e
        if not images:
            raise ImageResolutionError(f"image {image_id} not found")
        return images[0].get("Architecture", "")

    def instance_type_architectures(self, instance_type: str) -> list[str]:
        try:
            types = self._ec2.describe_instance_types(InstanceTypes=[instance_type]).get("InstanceTypes", [])
        except ClientError as e:
            raise ConfigurationError(f"failed to describe instance type {instance_type}: {e}") from e
        if not types:
            raise ConfigurationError(f"instance type {instance_type} not found")
        processor = types[0].get("ProcessorInfo")
        if not processor:
            raise ConfigurationError(f"no processor info for instance type {instance_type}")
        return list(processor.get("SupportedArchitectures", []))

    def infer_architecture(self, instance_type: str) -> str:
        """The only architecture an instance type supports, else ``x86_64``."""
        archs = [normalize_arch(a) for a in self.instance_type_architectures(instance_type)]
        supported = [a for a in dict.fromkeys(archs) if a in ("x86_64", "arm64")]
        return supported[0] if len(supported) == 1 else DEFAULT_ARCHITECTURE

    def check_instance_type(self, instance_type: str, region: str) -> None:
        """Raise ``ConfigurationError`` unless ``instance_type`` is offered in ``region``."""
        for page in self._ec2.get_paginator("describe_instance_types").paginate():
            if any(it.get("InstanceType") == instance_type for it in page.get("InstanceTypes", [])):
                return
        raise ConfigurationError(f"instance type {instance_type} is not supported in the current region {region}")

    def check_architecture(self, arch: str, instance_type: str) -> None:
        """Raise ``ArchitectureMismatchError`` if ``instance_type`` cannot boot ``arch`` images."""
        supported = self.instance_type_architectures(instance_type)
        normalized = normalize_arch(arch)
        if normalized not in {normalize_arch(a) for a in supported}:
            raise ArchitectureMismatchError(normalized, instance_type, supported)
