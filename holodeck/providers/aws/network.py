"""Network phases shared by single-node and cluster environments.

Each phase records the ids it created in the cache and pushes an ``Undo``
record, so a failed single-node creation can unwind exactly the phases
that completed.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError
from loguru import logger

from holodeck.constants import (
    DEFAULT_ROUTE_CIDR,
    INSTANCE_TERMINATED_MAX_ATTEMPTS,
    INSTANCE_TERMINATED_WAIT_DELAY,
    PORT_CALICO_BGP,
    PORT_CALICO_TYPHA,
    PORT_CALICO_VXLAN,
    PORT_ETCD_CLIENT,
    PORT_ETCD_PEER,
    PORT_HTTPS,
    PORT_K8S_API,
    PORT_KUBE_CONTROLLER,
    PORT_KUBE_SCHEDULER,
    PORT_KUBELET,
    PORT_SSH,
    SUBNET_CIDR,
    VPC_CIDR,
)
from holodeck.loading import FAILED, Loading
from holodeck.providers.aws.errors import is_not_found
from holodeck.providers.aws.resources import AWSCache
from holodeck.providers.aws.tags import tag_specification

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from holodeck.providers.aws.context import AWSContext

type Permission = dict[str, Any]


class ResourceKind(StrEnum):
    INSTANCE = "instance"
    SECURITY_GROUP = "security-group"
    ROUTE_TABLE = "route-table"
    INTERNET_GATEWAY = "internet-gateway"
    SUBNET = "subnet"
    VPC = "vpc"


@dataclass(frozen=True, slots=True)
class Undo:
    """A created resource to delete if a later phase fails."""

    kind: ResourceKind
    resource_id: str
    vpc_id: str = ""
    association_id: str = ""


# =============================================================================
# Phases
# =============================================================================


def create_vpc(ctx: AWSContext, cache: AWSCache, undo: list[Undo]) -> None:
    with Loading("Creating VPC"):
        response = ctx.call(
            lambda: ctx.ec2.create_vpc(
                CidrBlock=VPC_CIDR,
                TagSpecifications=tag_specification("vpc", ctx.tags),
            )
        )
        cache.vpc_id = response["Vpc"]["VpcId"]
        undo.append(Undo(ResourceKind.VPC, cache.vpc_id))

        ctx.call(
            lambda: ctx.ec2.modify_vpc_attribute(VpcId=cache.vpc_id, EnableDnsHostnames={"Value": True})
        )
    logger.info(f"Created VPC {cache.vpc_id}")


def create_subnet(ctx: AWSContext, cache: AWSCache, undo: list[Undo]) -> None:
    with Loading("Creating subnet"):
        response = ctx.call(
            lambda: ctx.ec2.create_subnet(
                VpcId=cache.vpc_id,
                CidrBlock=SUBNET_CIDR,
                TagSpecifications=tag_specification("subnet", ctx.tags),
            )
        )
        cache.subnet_id = response["Subnet"]["SubnetId"]
        undo.append(Undo(ResourceKind.SUBNET, cache.subnet_id))
    logger.info(f"Created subnet {cache.subnet_id}")


def create_internet_gateway(ctx: AWSContext, cache: AWSCache, undo: list[Undo]) -> None:
    with Loading("Creating Internet Gateway"):
        response = ctx.call(
            lambda: ctx.ec2.create_internet_gateway(
                TagSpecifications=tag_specification("internet-gateway", ctx.tags),
            )
        )
        cache.internet_gateway_id = response["InternetGateway"]["InternetGatewayId"]
        undo.append(Undo(ResourceKind.INTERNET_GATEWAY, cache.internet_gateway_id))

        ctx.call(
            lambda: ctx.ec2.attach_internet_gateway(
                InternetGatewayId=cache.internet_gateway_id,
                VpcId=cache.vpc_id,
            )
        )
        cache.internet_gateway_attachment = cache.vpc_id
        # Re-register so the rollback detaches before deleting
        undo[-1] = Undo(ResourceKind.INTERNET_GATEWAY, cache.internet_gateway_id, vpc_id=cache.vpc_id)
    logger.info(f"Created Internet Gateway {cache.internet_gateway_id}")


def create_route_table(ctx: AWSContext, cache: AWSCache, undo: list[Undo]) -> None:
    with Loading("Creating route table"):
        response = ctx.call(
            lambda: ctx.ec2.create_route_table(
                VpcId=cache.vpc_id,
                TagSpecifications=tag_specification("route-table", ctx.tags),
            )
        )
        cache.route_table_id = response["RouteTable"]["RouteTableId"]
        undo.append(Undo(ResourceKind.ROUTE_TABLE, cache.route_table_id))

        association = ctx.call(
            lambda: ctx.ec2.associate_route_table(RouteTableId=cache.route_table_id, SubnetId=cache.subnet_id)
        )
        undo[-1] = Undo(
            ResourceKind.ROUTE_TABLE,
            cache.route_table_id,
            association_id=association.get("AssociationId", ""),
        )

        ctx.call(
            lambda: ctx.ec2.create_route(
                RouteTableId=cache.route_table_id,
                DestinationCidrBlock=DEFAULT_ROUTE_CIDR,
                GatewayId=cache.internet_gateway_id,
            )
        )
    logger.info(f"Created route table {cache.route_table_id}")


def create_security_group(
    ctx: AWSContext,
    cache: AWSCache,
    undo: list[Undo],
    *,
    name: str,
    description: str,
    permissions: list[Permission],
) -> None:
    with Loading(f"Creating security group {name}"):
        response = ctx.call(
            lambda: ctx.ec2.create_security_group(
                GroupName=name,
                Description=description,
                VpcId=cache.vpc_id,
                TagSpecifications=tag_specification("security-group", ctx.tags),
            )
        )
        cache.security_group_id = response["GroupId"]
        undo.append(Undo(ResourceKind.SECURITY_GROUP, cache.security_group_id))

        ctx.call(
            lambda: ctx.ec2.authorize_security_group_ingress(
                GroupId=cache.security_group_id,
                IpPermissions=permissions,
            )
        )
    logger.info(f"Created security group {cache.security_group_id} ({name})")


# =============================================================================
# Ingress rules
# =============================================================================


def _tcp(port: int, cidrs: Iterable[str], protocol: str = "tcp") -> Permission:
    return {
        "IpProtocol": protocol,
        "FromPort": port,
        "ToPort": port,
        "IpRanges": [{"CidrIp": cidr} for cidr in cidrs],
    }


def ingress_ranges(detected_ip: str, extra: Iterable[str]) -> list[str]:
    """The detected operator address followed by the configured ranges, de-duplicated."""
    return list(dict.fromkeys([detected_ip, *extra]))


def single_node_permissions(cidrs: list[str]) -> list[Permission]:
    return [_tcp(port, cidrs) for port in (PORT_SSH, PORT_HTTPS, PORT_K8S_API)]


def cluster_permissions(cidrs: list[str], vpc_cidr: str = VPC_CIDR) -> list[Permission]:
    """External access for the operator plus intra-VPC control plane and CNI traffic."""
    internal = [vpc_cidr]
    return [
        *single_node_permissions(cidrs),
        _tcp(PORT_KUBELET, internal),
        _tcp(PORT_KUBE_SCHEDULER, internal),
        _tcp(PORT_KUBE_CONTROLLER, internal),
        _tcp(PORT_ETCD_CLIENT, internal),
        _tcp(PORT_ETCD_PEER, internal),
        _tcp(PORT_CALICO_VXLAN, internal, protocol="udp"),
        _tcp(PORT_CALICO_BGP, internal),
        _tcp(PORT_CALICO_TYPHA, internal),
        _tcp(PORT_K8S_API, internal),
    ]


# =============================================================================
# Rollback
# =============================================================================


def _undo_one(ec2: EC2Client, record: Undo) -> None:
    match record.kind:
        case ResourceKind.INSTANCE:
            ec2.terminate_instances(InstanceIds=[record.resource_id])
            ec2.get_waiter("instance_terminated").wait(
                InstanceIds=[record.resource_id],
                WaiterConfig={
                    "Delay": INSTANCE_TERMINATED_WAIT_DELAY,
                    "MaxAttempts": INSTANCE_TERMINATED_MAX_ATTEMPTS,
                },
            )
        case ResourceKind.SECURITY_GROUP:
            ec2.delete_security_group(GroupId=record.resource_id)
        case ResourceKind.ROUTE_TABLE:
            if record.association_id:
                ec2.disassociate_route_table(AssociationId=record.association_id)
            ec2.delete_route_table(RouteTableId=record.resource_id)
        case ResourceKind.INTERNET_GATEWAY:
            if record.vpc_id:
                ec2.detach_internet_gateway(InternetGatewayId=record.resource_id, VpcId=record.vpc_id)
            ec2.delete_internet_gateway(InternetGatewayId=record.resource_id)
        case ResourceKind.SUBNET:
            ec2.delete_subnet(SubnetId=record.resource_id)
        case ResourceKind.VPC:
            ec2.delete_vpc(VpcId=record.resource_id)


def rollback(ec2: EC2Client, stack: list[Undo]) -> None:
    """Delete recorded resources in reverse creation order.

    Failures are logged and the unwind continues; they never replace the
    error that triggered the rollback.
    """
    if not stack:
        return
    spinner = Loading("Rolling back created resources")
    failed = False
    for record in reversed(stack):
        try:
            _undo_one(ec2, record)
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"Rollback: {record.kind} {record.resource_id} already deleted")
                continue
            failed = True
            logger.warning(f"Rollback: failed to delete {record.kind} {record.resource_id}: {e}")
        except Exception as e:
            failed = True
            logger.warning(f"Rollback: failed to delete {record.kind} {record.resource_id}: {e}")
        else:
            logger.info(f"Rollback: deleted {record.kind} {record.resource_id}")
    spinner.cancel(FAILED if failed else None)
