"""Multinode cluster creation.

Reuses the single-node network phases, then adds a cluster security
group, an optional load balancer and the concurrently created node
pools. A failed phase marks the environment Degraded and raises; earlier
phases are left in place and remain recorded in the cache file so that
``delete()`` can tear them down.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from holodeck.api.environment import ClusterSpec, ClusterStatus
from holodeck.constants import CLUSTER_SECURITY_GROUP_DESCRIPTION, NodePhase, NodeRole
from holodeck.exceptions import ProvisioningError
from holodeck.loading import Loading
from holodeck.providers.aws.image import ResolvedImage
from holodeck.providers.aws.instances import PoolRequest, disable_source_dest_check, launch_pool
from holodeck.providers.aws.network import (
    Undo,
    cluster_permissions,
    create_internet_gateway,
    create_route_table,
    create_security_group,
    create_subnet,
    create_vpc,
    ingress_ranges,
)
from holodeck.providers.aws.nlb import create_load_balancer, register_targets
from holodeck.providers.aws.resources import ClusterCache

if TYPE_CHECKING:
    from holodeck.providers.aws.context import AWSContext


@dataclass(frozen=True, slots=True)
class ClusterImages:
    """Images resolved per node pool during pre-flight."""

    control_plane: ResolvedImage
    workers: ResolvedImage | None = None


def security_group_name(env_name: str) -> str:
    return f"{env_name}-cluster"


class ClusterBuilder:
    """Drives the cluster phases for one environment.

    Args:
        ctx: Operation context. ``ctx.environment.spec.cluster`` must be set.
        images: Pre-resolved pool images.
    """

    def __init__(self, ctx: AWSContext, images: ClusterImages) -> None:
        if ctx.environment.spec.cluster is None:
            raise ProvisioningError("creating cluster", "environment has no cluster spec")
        self._ctx = ctx
        self._spec: ClusterSpec = ctx.environment.spec.cluster
        self._images = images
        self.cache = ClusterCache()
        # Network phases record undo entries, the cluster path never replays them
        self._undo: list[Undo] = []

    def create(self) -> ClusterCache:
        """Run every phase and mark the environment Available.

        Raises:
            ProvisioningError: If a phase failed.
            CacheError: If the final Available condition could not be written.
        """
        ctx, cache, undo = self._ctx, self.cache, self._undo
        phases: list[tuple[str, Callable[[], None], str]] = [
            ("creating VPC", lambda: create_vpc(ctx, cache, undo), "VPC created"),
            ("creating subnet", lambda: create_subnet(ctx, cache, undo), "Subnet created"),
            (
                "creating Internet Gateway",
                lambda: create_internet_gateway(ctx, cache, undo),
                "Internet Gateway created",
            ),
            ("creating route table", lambda: create_route_table(ctx, cache, undo), "Route Table created"),
            ("creating cluster security group", self._security_group, "Cluster Security Group created"),
        ]
        if self._spec.ha_enabled:
            phases.append(("creating load balancer", self._load_balancer, "Load Balancer created"))
        phases.append(
            ("creating control-plane instances", self._control_plane, "Control-plane instances created")
        )
        if self._spec.ha_enabled:
            phases.append(("registering targets", lambda: register_targets(ctx, cache), "Targets registered"))
        if self._spec.workers is not None and self._spec.workers.count > 0:
            phases.append(("creating worker instances", self._workers, "Worker instances created"))
        phases.append(
            ("disabling source/dest check", self._disable_source_dest_check, "Source/Destination Check disabled")
        )

        ctx.progressing(cache, "Creating multinode cluster resources")
        for action, run, done in phases:
            try:
                run()
            except Exception as e:
                logger.error(f"Error {action}: {e}")
                ctx.degraded(cache, f"Error {action}", cluster=self._cluster_status(NodePhase.RUNNING))
                raise ProvisioningError(action, f"error {action}: {e}") from e
            ctx.progressing(cache, done, cluster=self._cluster_status(NodePhase.RUNNING))

        ctx.tracker.available(cache.properties(), cache.cluster_status(NodePhase.READY))
        endpoint = cache.load_balancer_dns or cache.public_dns_name
        logger.info(f"Cluster {ctx.name} is available, control plane endpoint {endpoint}")
        return cache

    def _cluster_status(self, phase: NodePhase) -> ClusterStatus | None:
        return self.cache.cluster_status(phase) if self.cache.instances else None

    def _security_group(self) -> None:
        ctx = self._ctx
        cidrs = ingress_ranges(ctx.detect_ip(), ctx.environment.spec.instance.ingress_ip_ranges)
        create_security_group(
            ctx,
            self.cache,
            self._undo,
            name=security_group_name(ctx.name),
            description=CLUSTER_SECURITY_GROUP_DESCRIPTION,
            permissions=cluster_permissions(cidrs),
        )

    def _load_balancer(self) -> None:
        with Loading("Creating load balancer"):
            create_load_balancer(self._ctx, self.cache)

    def _control_plane(self) -> None:
        cp = self._spec.control_plane
        with Loading(f"Creating {cp.count} control-plane instances"):
            pool = self._pool(
                NodeRole.CONTROL_PLANE,
                cp.count,
                cp.instance_type,
                cp.root_volume_size_gb,
                self._images.control_plane,
            )
            result = launch_pool(self._ctx, pool)
            self.cache.control_plane_instances.extend([*result.instances, *result.stranded])
            if result.instances:
                first = result.instances[0]
                self.cache.instance_id = first.instance_id
                self.cache.public_dns_name = first.public_dns
            result.raise_for_errors()

    def _workers(self) -> None:
        workers = self._spec.workers
        assert workers is not None
        image = self._images.workers or self._images.control_plane
        with Loading(f"Creating {workers.count} worker instances"):
            pool = self._pool(NodeRole.WORKER, workers.count, workers.instance_type, workers.root_volume_size_gb, image)
            result = launch_pool(self._ctx, pool)
            self.cache.worker_instances.extend([*result.instances, *result.stranded])
            result.raise_for_errors()

    def _pool(
        self,
        role: NodeRole,
        count: int,
        instance_type: str,
        root_volume_gb: int | None,
        image: ResolvedImage,
    ) -> PoolRequest:
        spec = self._ctx.environment.spec
        return PoolRequest(
            role=role,
            count=count,
            instance_type=instance_type or spec.instance.type,
            image=image,
            subnet_id=self.cache.subnet_id,
            security_group_id=self.cache.security_group_id,
            key_name=spec.auth.key_name,
            base_tags=self._ctx.tags,
            ssh_username=image.ssh_username or spec.auth.username,
            root_volume_gb=root_volume_gb or 0,
        )

    def _disable_source_dest_check(self) -> None:
        ctx = self._ctx
        with Loading("Disabling source/destination check"):
            for inst in self.cache.instances:
                if not inst.network_interface:
                    continue
                ctx.call(lambda eni=inst.network_interface: disable_source_dest_check(ctx.ec2, eni))
                logger.debug(f"Disabled source/destination check on {inst.network_interface} ({inst.name})")


def create_cluster(ctx: AWSContext, images: ClusterImages) -> ClusterCache:
    return ClusterBuilder(ctx, images).create()
