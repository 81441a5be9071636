"""AMI resolution for operating system identifiers.

Known operating systems are registered with the owner account, the image
name pattern and, where the publisher maintains one, the SSM parameter
that pins the latest image. Resolution tries the SSM parameter first and
falls back to searching images by name, owner and architecture.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from botocore.exceptions import ClientError
from loguru import logger

from holodeck.constants import DEFAULT_ARCHITECTURE, MIN_ROOT_VOLUME_GB
from holodeck.exceptions import ImageResolutionError
from holodeck.providers.aws.errors import transient_retry

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_ssm import SSMClient


class OSFamily(StrEnum):
    DEBIAN = "debian"
    RHEL = "rhel"
    AMAZON = "amazon"


class PackageManager(StrEnum):
    APT = "apt"
    DNF = "dnf"
    YUM = "yum"


SUPPORTED_ARCHITECTURES: Final = ("x86_64", "arm64")

_ARCH_ALIASES: Final = {
    "x86_64": "x86_64",
    "amd64": "x86_64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


@dataclass(frozen=True, slots=True)
class OSImage:
    """A registered operating system.

    ``name_pattern`` and ``ssm_path`` contain one ``%s`` placeholder for the
    architecture as the publisher spells it; ``x86_name`` is that spelling
    for ``x86_64`` (Canonical uses ``amd64``).
    """

    id: str
    name: str
    family: OSFamily
    ssh_username: str
    package_manager: PackageManager
    owner_id: str
    name_pattern: str
    ssm_path: str = ""
    min_root_volume_gb: int = MIN_ROOT_VOLUME_GB
    architectures: tuple[str, ...] = SUPPORTED_ARCHITECTURES
    x86_name: str = "x86_64"


@dataclass(frozen=True, slots=True)
class ResolvedAMI:
    image_id: str
    ssh_username: str
    os_family: OSFamily
    package_manager: PackageManager


_REGISTRY: Final[Mapping[str, OSImage]] = {
    image.id: image
    for image in (
        OSImage(
            id="ubuntu-24.04",
            name="Ubuntu 24.04 LTS (Noble Numbat)",
            family=OSFamily.DEBIAN,
            ssh_username="ubuntu",
            package_manager=PackageManager.APT,
            owner_id="099720109477",
            name_pattern="ubuntu/images/hvm-ssd-gp3/ubuntu-noble-24.04-%s-server-*",
            ssm_path="/aws/service/canonical/ubuntu/server/24.04/stable/current/%s/hvm/ebs-gp3/ami-id",
            x86_name="amd64",
        ),
        OSImage(
            id="ubuntu-22.04",
            name="Ubuntu 22.04 LTS (Jammy Jellyfish)",
            family=OSFamily.DEBIAN,
            ssh_username="ubuntu",
            package_manager=PackageManager.APT,
            owner_id="099720109477",
            name_pattern="ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-%s-server-*",
            ssm_path="/aws/service/canonical/ubuntu/server/22.04/stable/current/%s/hvm/ebs-gp3/ami-id",
            x86_name="amd64",
        ),
        OSImage(
            id="amazon-linux-2023",
            name="Amazon Linux 2023",
            family=OSFamily.AMAZON,
            ssh_username="ec2-user",
            package_manager=PackageManager.DNF,
            owner_id="amazon",
            name_pattern="al2023-ami-*-kernel-*-%s",
            ssm_path="/aws/service/ami-amazon-linux-latest/al2023-ami-kernel-default-%s",
        ),
        OSImage(
            id="rocky-9",
            name="Rocky Linux 9",
            family=OSFamily.RHEL,
            ssh_username="rocky",
            package_manager=PackageManager.DNF,
            owner_id="792107900819",
            name_pattern="Rocky-9-EC2-Base-*.%s-*",
        ),
    )
}


def get_os_image(os_id: str) -> OSImage | None:
    return _REGISTRY.get(os_id)


def list_os_images() -> list[OSImage]:
    return sorted(_REGISTRY.values(), key=lambda image: image.id)


def normalize_arch(arch: str) -> str:
    """Normalize an architecture to EC2 naming (``x86_64`` or ``arm64``).

    Empty input defaults to ``x86_64``. Unknown values are lowercased and
    returned unchanged, so callers can report them.
    """
    if not arch:
        return DEFAULT_ARCHITECTURE
    lowered = arch.lower()
    return _ARCH_ALIASES.get(lowered, lowered)


def publisher_arch(arch: str, x86_name: str = "amd64") -> str:
    """Architecture as spelled in image names and SSM paths."""
    return x86_name if arch == "x86_64" else arch


def newest_image(images: Iterable[Mapping[str, Any]]) -> Mapping[str, Any] | None:
    """Image with the greatest ``CreationDate``; ties go to the lowest ``ImageId``."""
    by_id = sorted(images, key=lambda image: image.get("ImageId", ""))
    ordered = sorted(by_id, key=lambda image: image.get("CreationDate", ""), reverse=True)
    return ordered[0] if ordered else None


class AMIResolver:
    """Resolve OS identifiers to AMI ids in one region."""

    def __init__(self, ec2: EC2Client, ssm: SSMClient | None, region: str) -> None:
        self._ec2 = ec2
        self._ssm = ssm
        self._region = region

    def resolve(self, os_id: str, arch: str) -> ResolvedAMI:
        """Resolve ``os_id`` for ``arch``.

        Raises:
            ImageResolutionError: Unknown OS, unsupported architecture or no image found.
        """
        arch = normalize_arch(arch)
        os_image = get_os_image(os_id)
        if os_image is None:
            raise ImageResolutionError(f"unknown OS: {os_id}")

        if arch not in os_image.architectures:
            raise ImageResolutionError(
                f"OS {os_id} does not support architecture {arch} "
                f"(supported: {', '.join(os_image.architectures)})"
            )

        if os_image.ssm_path and self._ssm is not None:
            try:
                image_id = self._resolve_via_ssm(os_image, arch)
            except (ClientError, ImageResolutionError) as e:
                logger.debug(f"SSM lookup for {os_id} ({arch}) failed, searching images: {e}")
            else:
                logger.info(f"Resolved {os_image.name} ({arch}) via SSM: {image_id}")
                return self._resolved(os_image, image_id)

        try:
            image_id = self._resolve_via_describe_images(os_image, arch)
        except ClientError as e:
            raise ImageResolutionError(f"failed to resolve AMI for {os_id}: {e}") from e
        logger.info(f"Resolved {os_image.name} ({arch}): {image_id}")
        return self._resolved(os_image, image_id)

    @staticmethod
    def _resolved(os_image: OSImage, image_id: str) -> ResolvedAMI:
        return ResolvedAMI(
            image_id=image_id,
            ssh_username=os_image.ssh_username,
            os_family=os_image.family,
            package_manager=os_image.package_manager,
        )

    @transient_retry
    def _resolve_via_ssm(self, os_image: OSImage, arch: str) -> str:
        assert self._ssm is not None
        param_name = os_image.ssm_path % publisher_arch(arch, os_image.x86_name)
        response = self._ssm.get_parameter(Name=param_name)
        value = response.get("Parameter", {}).get("Value")
        if not value:
            raise ImageResolutionError(f"SSM parameter {param_name} has no value")
        return value

    @transient_retry
    def _resolve_via_describe_images(self, os_image: OSImage, arch: str) -> str:
        filters: list[Any] = [
            {"Name": "name", "Values": [os_image.name_pattern % publisher_arch(arch, os_image.x86_name)]},
            {"Name": "architecture", "Values": [arch]},
            {"Name": "state", "Values": ["available"]},
        ]
        kwargs: dict[str, Any] = {"Filters": filters}
        if os_image.owner_id == "amazon":
            kwargs["Owners"] = ["amazon"]
        else:
            filters.append({"Name": "owner-id", "Values": [os_image.owner_id]})

        images = self._ec2.describe_images(**kwargs).get("Images", [])
        newest = newest_image(images)
        if newest is None:
            raise ImageResolutionError(f"no images found for {os_image.id} in region {self._region}")
        return newest["ImageId"]
