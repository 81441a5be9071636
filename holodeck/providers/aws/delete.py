"""Idempotent teardown of an environment recorded in the cache file.

Phases run in dependency order. Each phase is retried with exponential
backoff and treats "already gone" provider errors as success, so running
the pipeline twice is harmless.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError, WaiterError
from loguru import logger
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from holodeck.config import DeletionPolicy
from holodeck.constants import (
    INSTANCE_TERMINATED_MAX_ATTEMPTS,
    INSTANCE_TERMINATED_WAIT_DELAY,
    InstanceState,
    Reason,
)
from holodeck.exceptions import DeletionError
from holodeck.loading import Loading
from holodeck.providers.aws.errors import is_dependency_violation, is_not_found
from holodeck.providers.aws.nlb import delete_load_balancer
from holodeck.providers.aws.resources import AWSCache, ClusterCache, instance_ids
from holodeck.utils.conc import map_settled

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

    from holodeck.providers.aws.context import AWSContext


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    name = getattr(state.fn, "__name__", "operation")
    logger.warning(f"Retrying {name} (attempt {state.attempt_number}): {error}")


def _should_retry(e: BaseException) -> bool:
    return not is_not_found(e)


def phase_retry(policy: DeletionPolicy) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator retrying one deletion phase according to ``policy``."""
    return retry(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(multiplier=policy.initial_delay, max=policy.max_delay),
        retry=retry_if_exception(_should_retry),
        before_sleep=_log_retry,
        reraise=True,
    )


class Deleter:
    """Tears down the resources of one cache file.

    Args:
        ctx: Operation context.
        cache: Ledger rebuilt from the cache file.
        sleep: Used for the pause before verifying a deletion.
    """

    def __init__(
        self,
        ctx: AWSContext,
        cache: AWSCache,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._ctx = ctx
        self._ec2: EC2Client = ctx.ec2
        self._cache = cache
        self._policy = ctx.settings.deletion
        self._sleep = sleep

    def run(self) -> None:
        """Delete everything and mark the environment Terminated.

        Raises:
            DeletionError: If a phase still failed after its retries.
            CacheError: If the Terminated condition could not be written.
        """
        ctx, cache = self._ctx, self._cache

        ctx.progressing(cache, "Deleting EC2 instance", Reason.DESTROYING)
        self._guarded("deleting EC2 instances", self.delete_instances)

        ctx.progressing(cache, "Deleting VPC resources", Reason.DESTROYING)
        if isinstance(cache, ClusterCache) and cache.load_balancer_arn:
            self._guarded("deleting load balancer", self.delete_load_balancer)
        self._guarded("deleting VPC resources", self.delete_network)

        ctx.tracker.terminated(cache.properties())
        logger.info(f"Environment {ctx.name} terminated")

    def _guarded(self, action: str, run: Callable[[], None]) -> None:
        try:
            run()
        except Exception as e:
            logger.error(f"Error {action}: {e}")
            self._ctx.degraded(self._cache, f"Error {action}", Reason.DESTROYING)
            if isinstance(e, DeletionError):
                raise
            raise DeletionError(f"error {action}: {e}") from e

    # -------------------------------------------------------------------------
    # Instances
    # -------------------------------------------------------------------------

    def delete_instances(self) -> None:
        ids = instance_ids(self._cache)
        if not ids:
            logger.info("No instances to terminate")
            return

        with Loading(f"Terminating {len(ids)} instance(s)"):
            live = [i for i in ids if self.terminate_instance(i)]
            outcomes = map_settled(self.wait_terminated, live)
            errors = [o.error for o in outcomes if o.error is not None]
            if errors:
                raise DeletionError(f"instances did not terminate: {', '.join(str(e) for e in errors)}")

    def terminate_instance(self, instance_id: str) -> bool:
        """Request termination. Returns False when the instance is already gone."""

        @phase_retry(self._policy)
        def terminate() -> None:
            self._ec2.terminate_instances(InstanceIds=[instance_id])

        try:
            terminate()
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"Instance {instance_id} already terminated")
                return False
            raise
        logger.info(f"Terminating instance {instance_id}")
        return True

    def wait_terminated(self, instance_id: str) -> None:
        try:
            self._ec2.get_waiter("instance_terminated").wait(
                InstanceIds=[instance_id],
                WaiterConfig={
                    "Delay": INSTANCE_TERMINATED_WAIT_DELAY,
                    "MaxAttempts": INSTANCE_TERMINATED_MAX_ATTEMPTS,
                },
            )
        except (WaiterError, ClientError) as e:
            logger.warning(f"Waiting for {instance_id} failed ({e}), checking its state directly")
            state = self.instance_state(instance_id)
            if state not in (None, InstanceState.TERMINATED):
                raise DeletionError(f"instance {instance_id} is still {state}") from e
        logger.info(f"Instance {instance_id} terminated")

    def instance_state(self, instance_id: str) -> str | None:
        """Current state name, or None if the instance no longer exists."""
        try:
            response = self._ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance.get("State", {}).get("Name")
        return None

    # -------------------------------------------------------------------------
    # Load balancer
    # -------------------------------------------------------------------------

    def delete_load_balancer(self) -> None:
        assert isinstance(self._cache, ClusterCache)
        cache = self._cache

        @phase_retry(self._policy)
        def delete() -> None:
            delete_load_balancer(self._ctx.elbv2, cache)

        with Loading("Deleting load balancer"):
            delete()

    # -------------------------------------------------------------------------
    # Network
    # -------------------------------------------------------------------------

    def delete_network(self) -> None:
        cache = self._cache
        with Loading("Deleting VPC resources"):
            if cache.security_group_id:
                self.delete_security_group(cache.security_group_id)
            if cache.subnet_id:
                self.delete_subnet(cache.subnet_id)
            if cache.route_table_id:
                self.delete_route_table(cache.route_table_id)
            if cache.internet_gateway_id:
                self.delete_internet_gateway(cache.internet_gateway_id, cache.vpc_id)
            if cache.vpc_id:
                self.delete_vpc(cache.vpc_id)

    def _delete(self, kind: str, resource_id: str, delete: Callable[[], object], exists: Callable[[], bool]) -> None:
        """Delete with retries, then confirm the resource is gone."""

        @phase_retry(self._policy)
        def attempt() -> None:
            try:
                delete()
            except ClientError as e:
                if not is_not_found(e):
                    raise
                logger.info(f"{kind} {resource_id} already deleted")
            self._sleep(self._policy.verify_delay)
            if exists():
                raise DeletionError(f"{kind} {resource_id} still exists after deletion")

        attempt()
        logger.info(f"Deleted {kind} {resource_id}")

    def _exists(self, describe: Callable[[], list[Any]]) -> bool:
        try:
            return bool(describe())
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

    def delete_security_group(self, group_id: str) -> None:
        self._delete(
            "security group",
            group_id,
            lambda: self._ec2.delete_security_group(GroupId=group_id),
            lambda: self._exists(
                lambda: self._ec2.describe_security_groups(GroupIds=[group_id]).get("SecurityGroups", [])
            ),
        )

    def delete_subnet(self, subnet_id: str) -> None:
        self._delete(
            "subnet",
            subnet_id,
            lambda: self._ec2.delete_subnet(SubnetId=subnet_id),
            lambda: self._exists(lambda: self._ec2.describe_subnets(SubnetIds=[subnet_id]).get("Subnets", [])),
        )

    def delete_route_table(self, route_table_id: str) -> None:
        try:
            tables = self._ec2.describe_route_tables(RouteTableIds=[route_table_id]).get("RouteTables", [])
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"route table {route_table_id} already deleted")
                return
            raise
        if not tables:
            logger.info(f"route table {route_table_id} already deleted")
            return

        associations = tables[0].get("Associations", [])
        if any(a.get("Main") for a in associations):
            logger.info(f"Skipping main route table {route_table_id}")
            return

        def delete() -> None:
            for association in associations:
                if association_id := association.get("RouteTableAssociationId"):
                    try:
                        self._ec2.disassociate_route_table(AssociationId=association_id)
                    except ClientError as e:
                        if not is_not_found(e):
                            raise
            self._ec2.delete_route_table(RouteTableId=route_table_id)

        self._delete(
            "route table",
            route_table_id,
            delete,
            lambda: self._exists(
                lambda: self._ec2.describe_route_tables(RouteTableIds=[route_table_id]).get("RouteTables", [])
            ),
        )

    def delete_internet_gateway(self, gateway_id: str, vpc_id: str) -> None:
        def delete() -> None:
            if vpc_id:
                try:
                    self._ec2.detach_internet_gateway(InternetGatewayId=gateway_id, VpcId=vpc_id)
                except ClientError as e:
                    if not is_not_found(e):
                        raise
                    logger.info(f"internet gateway {gateway_id} already detached")
            self._ec2.delete_internet_gateway(InternetGatewayId=gateway_id)

        self._delete(
            "internet gateway",
            gateway_id,
            delete,
            lambda: self._exists(
                lambda: self._ec2.describe_internet_gateways(InternetGatewayIds=[gateway_id]).get(
                    "InternetGateways", []
                )
            ),
        )

    def delete_vpc(self, vpc_id: str) -> None:
        try:
            self._delete(
                "VPC",
                vpc_id,
                lambda: self._ec2.delete_vpc(VpcId=vpc_id),
                lambda: self._exists(lambda: self._ec2.describe_vpcs(VpcIds=[vpc_id]).get("Vpcs", [])),
            )
        except ClientError as e:
            if is_dependency_violation(e):
                self.log_vpc_dependencies(vpc_id)
            raise DeletionError(f"failed to delete VPC {vpc_id}: {e}") from e

    def log_vpc_dependencies(self, vpc_id: str) -> None:
        """Log what still lives in ``vpc_id`` so an operator can clean it up."""
        vpc_filter = [{"Name": "vpc-id", "Values": [vpc_id]}]
        try:
            enis = self._ec2.describe_network_interfaces(Filters=vpc_filter).get("NetworkInterfaces", [])
            groups = self._ec2.describe_security_groups(Filters=vpc_filter).get("SecurityGroups", [])
            subnets = self._ec2.describe_subnets(Filters=vpc_filter).get("Subnets", [])
        except ClientError as e:
            logger.warning(f"Failed to list dependencies of VPC {vpc_id}: {e}")
            return

        for eni in enis:
            logger.error(
                f"VPC {vpc_id} dependency: network interface {eni.get('NetworkInterfaceId')} "
                f"({eni.get('Status', 'unknown')}, {eni.get('Description', '')})"
            )
        for group in groups:
            if group.get("GroupName") == "default":
                continue
            logger.error(f"VPC {vpc_id} dependency: security group {group.get('GroupId')} ({group.get('GroupName')})")
        for subnet in subnets:
            logger.error(f"VPC {vpc_id} dependency: subnet {subnet.get('SubnetId')}")
