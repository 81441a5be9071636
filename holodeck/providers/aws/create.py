"""Single-node environment creation.

Phases run strictly in order. Every completed phase pushes an ``Undo``
record; the first failure marks the environment Degraded, unwinds the
records in reverse and raises ``ProvisioningError`` chained to the cause.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from holodeck.constants import SECURITY_GROUP_DESCRIPTION, NodeRole
from holodeck.exceptions import ProvisioningError
from holodeck.loading import Loading
from holodeck.providers.aws.image import ResolvedImage
from holodeck.providers.aws.instances import (
    InstanceLaunchError,
    LaunchRequest,
    disable_source_dest_check,
    launch_instance,
)
from holodeck.providers.aws.network import (
    ResourceKind,
    Undo,
    create_internet_gateway,
    create_route_table,
    create_security_group,
    create_subnet,
    create_vpc,
    ingress_ranges,
    rollback,
    single_node_permissions,
)
from holodeck.providers.aws.resources import AWSCache

if TYPE_CHECKING:
    from holodeck.providers.aws.context import AWSContext

type PhaseFn = Callable[[AWSContext, AWSCache, list[Undo]], None]


@dataclass(frozen=True, slots=True)
class Phase:
    """One creation step.

    Attributes:
        action: Lower-case description used in errors, e.g. ``creating VPC``.
        run: The step itself.
        done: Progress message persisted once the step succeeded.
    """

    action: str
    run: PhaseFn
    done: str


def create_single_node(ctx: AWSContext, image: ResolvedImage) -> AWSCache:
    """Create the network, the security group and one instance.

    Args:
        ctx: Operation context.
        image: Image resolved and checked during pre-flight.

    Returns:
        The resource ledger, also persisted in the cache file.

    Raises:
        ProvisioningError: If a phase failed; created resources were rolled back.
        CacheError: If the final Available condition could not be written.
    """
    cache = AWSCache()
    undo: list[Undo] = []

    def security_group(ctx: AWSContext, cache: AWSCache, undo: list[Undo]) -> None:
        instance = ctx.environment.spec.instance
        cidrs = ingress_ranges(ctx.detect_ip(), instance.ingress_ip_ranges)
        create_security_group(
            ctx,
            cache,
            undo,
            name=ctx.name,
            description=SECURITY_GROUP_DESCRIPTION,
            permissions=single_node_permissions(cidrs),
        )

    def instance(ctx: AWSContext, cache: AWSCache, undo: list[Undo]) -> None:
        _create_instance(ctx, cache, undo, image)

    phases = (
        Phase("creating VPC", create_vpc, "VPC created"),
        Phase("creating subnet", create_subnet, "Subnet created"),
        Phase("creating Internet Gateway", create_internet_gateway, "Internet Gateway created"),
        Phase("creating route table", create_route_table, "Route Table created"),
        Phase("creating security group", security_group, "Security Group created"),
        Phase("creating EC2 instance", instance, "EC2 instance created"),
    )

    ctx.progressing(cache, "Creating AWS resources")
    for phase in phases:
        try:
            phase.run(ctx, cache, undo)
        except Exception as e:
            logger.error(f"Error {phase.action}: {e}")
            ctx.degraded(cache, f"Error {phase.action}")
            rollback(ctx.ec2, undo)
            raise ProvisioningError(phase.action, f"error {phase.action}: {e}") from e
        ctx.progressing(cache, phase.done)

    ctx.tracker.available(cache.properties())
    logger.info(f"Environment {ctx.name} is available at {cache.public_dns_name}")
    return cache


def _create_instance(ctx: AWSContext, cache: AWSCache, undo: list[Undo], image: ResolvedImage) -> None:
    spec = ctx.environment.spec
    request = LaunchRequest(
        name=ctx.name,
        role=NodeRole.CONTROL_PLANE,
        instance_type=spec.instance.type,
        image=image,
        subnet_id=cache.subnet_id,
        security_group_id=cache.security_group_id,
        key_name=spec.auth.key_name,
        tags=ctx.tags,
        ssh_username=image.ssh_username or spec.auth.username,
        root_volume_gb=spec.instance.root_volume_size_gb or 0,
    )

    with Loading("Creating EC2 instance"):
        try:
            info = launch_instance(ctx, request)
        except InstanceLaunchError as e:
            cache.instance_id = e.instance_id
            undo.append(Undo(ResourceKind.INSTANCE, e.instance_id))
            raise
        cache.instance_id = info.instance_id
        cache.public_dns_name = info.public_dns
        undo.append(Undo(ResourceKind.INSTANCE, info.instance_id))

        if info.network_interface:
            ctx.call(lambda: disable_source_dest_check(ctx.ec2, info.network_interface))
