"""In-memory mirror of the resource ledger.

``AWSCache`` holds the ids a single-node environment needs for teardown,
``ClusterCache`` adds the node pools and the load balancer. Both are
rebuilt from ``status.properties`` (and ``status.cluster``) of the cache
file; live memory is never trusted across processes.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, fields

from holodeck.api.environment import ClusterStatus, EnvironmentStatus, NodeStatus, Property
from holodeck.constants import NodePhase, NodeRole, PropertyName

# Ledger order as written to the cache file
_SINGLE_NODE_PROPERTIES: tuple[tuple[PropertyName, str], ...] = (
    (PropertyName.VPC_ID, "vpc_id"),
    (PropertyName.SUBNET_ID, "subnet_id"),
    (PropertyName.INTERNET_GATEWAY_ID, "internet_gateway_id"),
    (PropertyName.INTERNET_GATEWAY_ATTACHMENT, "internet_gateway_attachment"),
    (PropertyName.ROUTE_TABLE_ID, "route_table_id"),
    (PropertyName.SECURITY_GROUP_ID, "security_group_id"),
    (PropertyName.INSTANCE_ID, "instance_id"),
    (PropertyName.PUBLIC_DNS_NAME, "public_dns_name"),
)

_CLUSTER_PROPERTIES: tuple[tuple[PropertyName, str], ...] = (
    (PropertyName.LOAD_BALANCER_ARN, "load_balancer_arn"),
    (PropertyName.LOAD_BALANCER_DNS, "load_balancer_dns"),
    (PropertyName.TARGET_GROUP_ARN, "target_group_arn"),
)


@dataclass(slots=True)
class InstanceInfo:
    instance_id: str
    name: str
    role: NodeRole
    public_ip: str = ""
    private_ip: str = ""
    public_dns: str = ""
    network_interface: str = ""
    ssh_username: str = ""

    def node_status(self, phase: NodePhase) -> NodeStatus:
        return NodeStatus(
            name=self.name,
            role=self.role.value,
            instance_id=self.instance_id,
            public_ip=self.public_ip,
            private_ip=self.private_ip,
            ssh_username=self.ssh_username,
            phase=phase.value,
        )


@dataclass(slots=True)
class AWSCache:
    vpc_id: str = ""
    subnet_id: str = ""
    internet_gateway_id: str = ""
    internet_gateway_attachment: str = ""
    route_table_id: str = ""
    security_group_id: str = ""
    instance_id: str = ""
    public_dns_name: str = ""

    def properties(self) -> list[Property]:
        return [Property(name=name.value, value=getattr(self, attr)) for name, attr in _SINGLE_NODE_PROPERTIES]

    @classmethod
    def from_properties(cls, properties: Iterable[Property]) -> AWSCache:
        cache = cls()
        cache._load(properties, _SINGLE_NODE_PROPERTIES)
        return cache

    def _load(self, properties: Iterable[Property], mapping: tuple[tuple[PropertyName, str], ...]) -> None:
        attrs = {name.value: attr for name, attr in mapping}
        for prop in properties:
            # Ignore properties that are not AWS infrastructure ids
            if attr := attrs.get(prop.name):
                setattr(self, attr, prop.value)


@dataclass(slots=True)
class ClusterCache(AWSCache):
    control_plane_instances: list[InstanceInfo] = field(default_factory=list)
    worker_instances: list[InstanceInfo] = field(default_factory=list)
    load_balancer_arn: str = ""
    load_balancer_dns: str = ""
    target_group_arn: str = ""

    @property
    def instances(self) -> list[InstanceInfo]:
        return [*self.control_plane_instances, *self.worker_instances]

    def properties(self) -> list[Property]:
        return [
            *AWSCache.properties(self),
            *(Property(name=name.value, value=getattr(self, attr)) for name, attr in _CLUSTER_PROPERTIES),
        ]

    def cluster_status(self, phase: NodePhase) -> ClusterStatus:
        """Node summary. The endpoint is the load balancer when present, else the first control plane."""
        nodes = [inst.node_status(phase) for inst in self.instances]
        return ClusterStatus(
            nodes=nodes,
            total_nodes=len(nodes),
            ready_nodes=len(nodes) if phase == NodePhase.READY else 0,
            phase=phase.value,
            control_plane_endpoint=self.load_balancer_dns or self.public_dns_name,
            load_balancer_dns=self.load_balancer_dns,
        )

    @classmethod
    def from_status(cls, status: EnvironmentStatus) -> ClusterCache:
        cache = cls()
        cache._load(status.properties, _SINGLE_NODE_PROPERTIES + _CLUSTER_PROPERTIES)
        if status.cluster is not None:
            for node in status.cluster.nodes:
                role = NodeRole(node.role) if node.role in NodeRole else NodeRole.WORKER
                info = InstanceInfo(
                    instance_id=node.instance_id,
                    name=node.name,
                    role=role,
                    public_ip=node.public_ip,
                    private_ip=node.private_ip,
                    ssh_username=node.ssh_username,
                )
                if role == NodeRole.CONTROL_PLANE:
                    cache.control_plane_instances.append(info)
                else:
                    cache.worker_instances.append(info)
        return cache


def instance_ids(cache: AWSCache) -> list[str]:
    """Every known instance id, de-duplicated, cluster nodes first."""
    ids: list[str] = []
    if isinstance(cache, ClusterCache):
        ids.extend(inst.instance_id for inst in cache.instances)
    ids.append(cache.instance_id)
    return list(dict.fromkeys(i for i in ids if i))


def is_empty(cache: AWSCache) -> bool:
    return not any(getattr(cache, f.name) for f in fields(cache))
