"""EC2 instance launch, node pools and network interface fix-ups."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError
from loguru import logger

from holodeck.constants import (
    DEFAULT_ROOT_VOLUME_GB,
    INSTANCE_RUNNING_MAX_ATTEMPTS,
    INSTANCE_RUNNING_WAIT_DELAY,
    ROOT_DEVICE_NAME,
    ROOT_VOLUME_TYPE,
    NodeRole,
)
from holodeck.exceptions import InstancePoolError, ProvisioningError
from holodeck.providers.aws.image import ResolvedImage
from holodeck.providers.aws.resources import InstanceInfo
from holodeck.providers.aws.tags import Tag, node_tags, tag_specification
from holodeck.utils.conc import map_settled

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from holodeck.providers.aws.context import AWSContext


@dataclass(frozen=True, slots=True)
class LaunchRequest:
    """Everything needed to launch one instance."""

    name: str
    role: NodeRole
    instance_type: str
    image: ResolvedImage
    subnet_id: str
    security_group_id: str
    key_name: str
    tags: list[Tag]
    ssh_username: str = ""
    root_volume_gb: int = 0


def root_volume_size(size_gb: int | None) -> int:
    return size_gb if size_gb else DEFAULT_ROOT_VOLUME_GB


def run_instance_params(request: LaunchRequest) -> dict[str, Any]:
    """Arguments of ``RunInstances`` for one request.

    Built fresh per call so concurrent launches never share mutable request state.
    """
    return {
        "ImageId": request.image.image_id,
        "InstanceType": request.instance_type,
        "MinCount": 1,
        "MaxCount": 1,
        "InstanceInitiatedShutdownBehavior": "terminate",
        "KeyName": request.key_name,
        "BlockDeviceMappings": [
            {
                "DeviceName": ROOT_DEVICE_NAME,
                "Ebs": {
                    "VolumeSize": root_volume_size(request.root_volume_gb),
                    "VolumeType": ROOT_VOLUME_TYPE,
                },
            }
        ],
        "NetworkInterfaces": [
            {
                "AssociatePublicIpAddress": True,
                "DeleteOnTermination": True,
                "DeviceIndex": 0,
                "Groups": [request.security_group_id],
                "SubnetId": request.subnet_id,
            }
        ],
        "TagSpecifications": tag_specification("instance", request.tags),
    }


def wait_running(ec2: EC2Client, instance_id: str) -> None:
    ec2.get_waiter("instance_running").wait(
        InstanceIds=[instance_id],
        WaiterConfig={
            "Delay": INSTANCE_RUNNING_WAIT_DELAY,
            "MaxAttempts": INSTANCE_RUNNING_MAX_ATTEMPTS,
        },
    )


def describe_instance(ec2: EC2Client, instance_id: str) -> dict[str, Any]:
    response = ec2.describe_instances(InstanceIds=[instance_id])
    for reservation in response.get("Reservations", []):
        for instance in reservation.get("Instances", []):
            return instance
    raise ProvisioningError("describing instance", f"instance {instance_id} not found after launch")


def tag_network_interface(ec2: EC2Client, eni_id: str, tags: list[Tag]) -> None:
    """Tag the primary network interface. Failures only warn."""
    if not eni_id:
        return
    try:
        ec2.create_tags(Resources=[eni_id], Tags=[dict(t) for t in tags])
    except ClientError as e:
        logger.warning(f"Failed to tag network interface {eni_id}: {e}")


def disable_source_dest_check(ec2: EC2Client, eni_id: str) -> None:
    ec2.modify_network_interface_attribute(
        NetworkInterfaceId=eni_id,
        SourceDestCheck={"Value": False},
    )


def launch_instance(ctx: AWSContext, request: LaunchRequest) -> InstanceInfo:
    """Create one instance, wait for it to run and tag its network interface.

    The instance is returned as soon as it is described; callers that need
    the source/destination check disabled do so afterwards.
    """
    response = ctx.call(lambda: ctx.ec2.run_instances(**run_instance_params(request)))
    instance_id = response["Instances"][0]["InstanceId"]
    logger.info(f"Launched instance {instance_id} ({request.name}, {request.instance_type})")

    try:
        wait_running(ctx.ec2, instance_id)
        described = describe_instance(ctx.ec2, instance_id)
    except Exception as e:
        raise InstanceLaunchError(instance_id, request.name, e) from e

    interfaces = described.get("NetworkInterfaces", [])
    eni_id = interfaces[0].get("NetworkInterfaceId", "") if interfaces else ""
    tag_network_interface(ctx.ec2, eni_id, request.tags)

    return InstanceInfo(
        instance_id=instance_id,
        name=request.name,
        role=request.role,
        public_ip=described.get("PublicIpAddress", ""),
        private_ip=described.get("PrivateIpAddress", ""),
        public_dns=described.get("PublicDnsName", ""),
        network_interface=eni_id,
        ssh_username=request.ssh_username,
    )


class InstanceLaunchError(ProvisioningError):
    """An instance was created but never became usable."""

    def __init__(self, instance_id: str, name: str, cause: Exception) -> None:
        self.instance_id = instance_id
        self.name = name
        super().__init__("waiting for instance", f"instance {instance_id} ({name}): {cause}")


# =============================================================================
# Node pools
# =============================================================================


@dataclass(frozen=True, slots=True)
class PoolRequest:
    role: NodeRole
    count: int
    instance_type: str
    image: ResolvedImage
    subnet_id: str
    security_group_id: str
    key_name: str
    base_tags: list[Tag]
    ssh_username: str
    root_volume_gb: int = 0


def node_name(env_name: str, role: NodeRole, index: int) -> str:
    return f"{env_name}-{role.value}-{index}"


@dataclass(frozen=True, slots=True)
class PoolResult:
    """Outcome of one pool.

    Attributes:
        instances: Nodes that came up, in index order.
        stranded: Instances that were created but failed afterwards.
        errors: One error per failed unit.
    """

    instances: list[InstanceInfo]
    stranded: list[InstanceInfo]
    errors: list[Exception]

    def raise_for_errors(self) -> None:
        if self.errors:
            raise InstancePoolError(self.errors)


def launch_pool(ctx: AWSContext, pool: PoolRequest) -> PoolResult:
    """Launch ``pool.count`` instances concurrently and wait for all of them.

    A failing unit never stops its siblings; the successful ones are
    returned alongside the errors, in index order.
    """

    def launch(index: int) -> InstanceInfo:
        name = node_name(ctx.name, pool.role, index)
        return launch_instance(
            ctx,
            LaunchRequest(
                name=name,
                role=pool.role,
                instance_type=pool.instance_type,
                image=pool.image,
                subnet_id=pool.subnet_id,
                security_group_id=pool.security_group_id,
                key_name=pool.key_name,
                tags=node_tags(pool.base_tags, name, pool.role, index),
                ssh_username=pool.ssh_username,
                root_volume_gb=pool.root_volume_gb,
            ),
        )

    outcomes = map_settled(launch, range(pool.count))
    instances = [o.value for o in outcomes if o.ok and o.value is not None]
    errors = [o.error for o in outcomes if o.error is not None]
    stranded = [
        InstanceInfo(instance_id=e.instance_id, name=e.name, role=pool.role, ssh_username=pool.ssh_username)
        for e in errors
        if isinstance(e, InstanceLaunchError)
    ]
    for error in errors:
        logger.error(f"Failed to create {pool.role} instance: {error}")
    return PoolResult(instances=instances, stranded=stranded, errors=errors)
