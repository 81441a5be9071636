"""Network load balancer fronting a highly available control plane."""

from __future__ import annotations

from typing import TYPE_CHECKING

from botocore.exceptions import ClientError
from loguru import logger

from holodeck.constants import (
    HEALTH_CHECK_INTERVAL,
    HEALTH_CHECK_TIMEOUT,
    HEALTHY_THRESHOLD,
    PORT_K8S_API,
    UNHEALTHY_THRESHOLD,
)
from holodeck.exceptions import DeletionError, ProvisioningError
from holodeck.providers.aws.errors import is_not_found
from holodeck.providers.aws.resources import ClusterCache

if TYPE_CHECKING:
    from mypy_boto3_elbv2 import ElasticLoadBalancingv2Client

    from holodeck.providers.aws.context import AWSContext


def load_balancer_name(env_name: str) -> str:
    return f"{env_name}-nlb"


def target_group_name(env_name: str) -> str:
    return f"{env_name}-k8s-api-tg"


def create_load_balancer(ctx: AWSContext, cache: ClusterCache) -> None:
    """Create the load balancer, its API target group and the forwarding listener."""
    name = load_balancer_name(ctx.name)
    response = ctx.call(
        lambda: ctx.elbv2.create_load_balancer(
            Name=name,
            Type="network",
            Scheme="internet-facing",
            IpAddressType="ipv4",
            Subnets=[cache.subnet_id],
            Tags=[dict(t) for t in ctx.tags],
        )
    )
    balancers = response.get("LoadBalancers", [])
    if not balancers:
        raise ProvisioningError("creating load balancer", f"no load balancer returned for {name}")
    cache.load_balancer_arn = balancers[0]["LoadBalancerArn"]
    cache.load_balancer_dns = balancers[0].get("DNSName", "")
    logger.info(f"Created load balancer {name} ({cache.load_balancer_dns})")

    create_target_group(ctx, cache)
    create_listener(ctx, cache)


def create_target_group(ctx: AWSContext, cache: ClusterCache) -> None:
    name = target_group_name(ctx.name)
    response = ctx.call(
        lambda: ctx.elbv2.create_target_group(
            Name=name,
            Protocol="TCP",
            Port=PORT_K8S_API,
            VpcId=cache.vpc_id,
            TargetType="instance",
            HealthCheckProtocol="TCP",
            HealthCheckPort=str(PORT_K8S_API),
            HealthCheckIntervalSeconds=HEALTH_CHECK_INTERVAL,
            HealthCheckTimeoutSeconds=HEALTH_CHECK_TIMEOUT,
            HealthyThresholdCount=HEALTHY_THRESHOLD,
            UnhealthyThresholdCount=UNHEALTHY_THRESHOLD,
            Tags=[dict(t) for t in ctx.tags],
        )
    )
    groups = response.get("TargetGroups", [])
    if not groups:
        raise ProvisioningError("creating target group", f"no target group returned for {name}")
    cache.target_group_arn = groups[0]["TargetGroupArn"]
    logger.info(f"Created target group {name}")


def create_listener(ctx: AWSContext, cache: ClusterCache) -> None:
    ctx.call(
        lambda: ctx.elbv2.create_listener(
            LoadBalancerArn=cache.load_balancer_arn,
            Protocol="TCP",
            Port=PORT_K8S_API,
            DefaultActions=[{"Type": "forward", "TargetGroupArn": cache.target_group_arn}],
        )
    )
    logger.info(f"Created listener on port {PORT_K8S_API}")


def register_targets(ctx: AWSContext, cache: ClusterCache) -> None:
    """Register every control plane instance with the API target group."""
    if not cache.target_group_arn:
        raise ProvisioningError("registering targets", "target group ARN not set")
    if not cache.control_plane_instances:
        raise ProvisioningError("registering targets", "no control-plane instances to register")

    targets = [{"Id": inst.instance_id, "Port": PORT_K8S_API} for inst in cache.control_plane_instances]
    ctx.call(lambda: ctx.elbv2.register_targets(TargetGroupArn=cache.target_group_arn, Targets=targets))
    logger.info(f"Registered {len(targets)} control-plane targets")


def delete_load_balancer(elbv2: ElasticLoadBalancingv2Client, cache: ClusterCache) -> None:
    """Best-effort teardown: targets, listeners, target group, then the load balancer.

    Only the final load balancer deletion is fatal.

    Raises:
        DeletionError: If the load balancer itself could not be deleted.
    """
    if cache.target_group_arn:
        _deregister_targets(elbv2, cache.target_group_arn)

    if cache.load_balancer_arn:
        _delete_listeners(elbv2, cache.load_balancer_arn)

    if cache.target_group_arn:
        try:
            elbv2.delete_target_group(TargetGroupArn=cache.target_group_arn)
            logger.info(f"Deleted target group {cache.target_group_arn}")
        except ClientError as e:
            logger.warning(f"Failed to delete target group {cache.target_group_arn}: {e}")

    if not cache.load_balancer_arn:
        return
    try:
        elbv2.delete_load_balancer(LoadBalancerArn=cache.load_balancer_arn)
    except ClientError as e:
        if is_not_found(e):
            logger.info(f"Load balancer {cache.load_balancer_arn} already deleted")
            return
        raise DeletionError(f"failed to delete load balancer {cache.load_balancer_arn}: {e}") from e
    logger.info(f"Deleted load balancer {cache.load_balancer_arn}")


def _deregister_targets(elbv2: ElasticLoadBalancingv2Client, target_group_arn: str) -> None:
    try:
        health = elbv2.describe_target_health(TargetGroupArn=target_group_arn)
        targets = [
            {"Id": d["Target"]["Id"], "Port": d["Target"].get("Port", PORT_K8S_API)}
            for d in health.get("TargetHealthDescriptions", [])
        ]
        if targets:
            elbv2.deregister_targets(TargetGroupArn=target_group_arn, Targets=targets)
    except ClientError as e:
        logger.warning(f"Failed to deregister targets from {target_group_arn}: {e}")


def _delete_listeners(elbv2: ElasticLoadBalancingv2Client, load_balancer_arn: str) -> None:
    try:
        listeners = elbv2.describe_listeners(LoadBalancerArn=load_balancer_arn).get("Listeners", [])
    except ClientError as e:
        logger.warning(f"Failed to describe listeners of {load_balancer_arn}: {e}")
        return
    for listener in listeners:
        try:
            elbv2.delete_listener(ListenerArn=listener["ListenerArn"])
        except ClientError as e:
            logger.warning(f"Failed to delete listener {listener['ListenerArn']}: {e}")
