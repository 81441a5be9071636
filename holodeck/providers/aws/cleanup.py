"""Out-of-band cleanup of VPCs left behind by CI runs.

Unlike ``delete()``, which only trusts the cache file, the cleaner works
from a VPC id alone: it discovers every resource inside the VPC by
filtering on ``vpc-id`` and deletes them in dependency order. When the
VPC carries GitHub run tags, the cleaner first asks the GitHub API
whether the run's jobs have finished.
"""

from __future__ import annotations

import os
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Final

import httpx
from botocore.exceptions import ClientError, WaiterError
from loguru import logger
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_fixed

from holodeck.constants import (
    INSTANCE_TERMINATED_MAX_ATTEMPTS,
    INSTANCE_TERMINATED_WAIT_DELAY,
    VPC_DELETE_RETRY_DELAY,
    HolodeckTag,
)
from holodeck.exceptions import DeletionError, HolodeckError
from holodeck.providers.aws.clients import AWSClients
from holodeck.providers.aws.errors import is_not_found

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client

GITHUB_API_URL: Final = "https://api.github.com"
GITHUB_API_VERSION: Final = "2022-11-28"
GITHUB_TIMEOUT: Final = 10.0
VPC_DELETE_ATTEMPTS: Final = 3

_REPO_PATTERN: Final = re.compile(r"^[a-zA-Z0-9_.-]+/[a-zA-Z0-9_.-]+$")
_RUN_ID_PATTERN: Final = re.compile(r"^\d+$")
_LIVE_STATES: Final = ["pending", "running", "shutting-down", "stopping", "stopped"]


class JobsStillRunningError(HolodeckError):
    """Raised when the GitHub run that owns a VPC has unfinished jobs."""


def _log_vpc_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        f"Failed to delete VPC (attempt {state.attempt_number}/{VPC_DELETE_ATTEMPTS}): {error}. "
        f"Retrying in {VPC_DELETE_RETRY_DELAY:.0f}s..."
    )


def _vpc_filter(vpc_id: str, name: str = "vpc-id") -> list[dict[str, Any]]:
    return [{"Name": name, "Values": [vpc_id]}]


class VPCCleaner:
    """Deletes a VPC and everything inside it.

    Args:
        region: AWS region, used to build an EC2 client when none is given.
        ec2: EC2 client override.
        http: HTTP client for the GitHub API.
        sleep: Used between VPC deletion attempts.
    """

    def __init__(
        self,
        region: str = "",
        *,
        ec2: EC2Client | None = None,
        http: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if ec2 is None:
            if not region:
                raise ValueError("region is required when no EC2 client is given")
            ec2 = AWSClients(region).ec2
        self._ec2 = ec2
        self._http = http
        self._sleep = sleep

    def get_tag_value(self, vpc_id: str, key: str) -> str:
        """Value of tag ``key`` on ``vpc_id``, or an empty string."""
        response = self._ec2.describe_tags(
            Filters=[
                {"Name": "resource-id", "Values": [vpc_id]},
                {"Name": "key", "Values": [key]},
            ]
        )
        tags = response.get("Tags", [])
        return tags[0].get("Value", "") if tags else ""

    def check_github_jobs_completed(self, repository: str, run_id: str, token: str) -> bool:
        """True when every job of the run is completed or the run no longer exists.

        Raises:
            ValueError: If ``repository`` or ``run_id`` is malformed.
            httpx.HTTPError: On transport errors or unexpected status codes.
        """
        if not _REPO_PATTERN.match(repository):
            raise ValueError(f"invalid repository format: {repository}")
        if not _RUN_ID_PATTERN.match(run_id):
            raise ValueError(f"invalid runID format: {run_id}")

        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "User-Agent": "holodeck-cleanup/1.0",
        }
        url = f"{GITHUB_API_URL}/repos/{repository}/actions/runs/{run_id}/jobs"
        client = self._http or httpx.Client(timeout=GITHUB_TIMEOUT)
        try:
            response = client.get(url, headers=headers)
        finally:
            if self._http is None:
                client.close()

        if response.status_code == httpx.codes.NOT_FOUND:
            return True
        response.raise_for_status()
        jobs = response.json().get("jobs", [])
        return all(job.get("status") == "completed" for job in jobs)

    def cleanup_vpc(self, vpc_id: str) -> None:
        """Delete ``vpc_id`` unless the GitHub run that created it is still going.

        Raises:
            JobsStillRunningError: If the owning run still has jobs in progress.
            DeletionError: If the VPC could not be deleted.
        """
        repository = self.get_tag_value(vpc_id, HolodeckTag.REPOSITORY)
        run_id = self.get_tag_value(vpc_id, HolodeckTag.RUN_ID)

        token = os.environ.get("GITHUB_TOKEN", "")
        if not token:
            logger.warning("GITHUB_TOKEN not set, skipping job status check")
        elif repository and run_id:
            try:
                completed = self.check_github_jobs_completed(repository, run_id, token)
            except (ValueError, httpx.HTTPError) as e:
                logger.warning(f"Failed to check GitHub job status: {e}")
            else:
                if not completed:
                    raise JobsStillRunningError(f"github jobs are still running for vpc {vpc_id}")

        logger.info(f"All jobs completed or no job information found, proceeding with cleanup of VPC {vpc_id}")
        self.delete_vpc_resources(vpc_id)

    def delete_vpc_resources(self, vpc_id: str) -> None:
        logger.info(f"Starting cleanup of resources in VPC: {vpc_id}")
        steps = (
            ("instances", self._delete_instances),
            ("security groups", self._delete_security_groups),
            ("subnets", self._delete_subnets),
            ("route tables", self._delete_route_tables),
            ("internet gateways", self._delete_internet_gateways),
        )
        for what, step in steps:
            try:
                step(vpc_id)
            except ClientError as e:
                raise DeletionError(f"failed to delete {what}: {e}") from e
        self._delete_vpc(vpc_id)
        logger.info(f"Successfully deleted VPC {vpc_id} and all associated resources")

    def _delete_instances(self, vpc_id: str) -> None:
        response = self._ec2.describe_instances(
            Filters=[*_vpc_filter(vpc_id), {"Name": "instance-state-name", "Values": _LIVE_STATES}]
        )
        ids = [
            instance["InstanceId"]
            for reservation in response.get("Reservations", [])
            for instance in reservation.get("Instances", [])
        ]
        if not ids:
            return

        self._ec2.terminate_instances(InstanceIds=ids)
        try:
            self._ec2.get_waiter("instance_terminated").wait(
                InstanceIds=ids,
                WaiterConfig={
                    "Delay": INSTANCE_TERMINATED_WAIT_DELAY,
                    "MaxAttempts": INSTANCE_TERMINATED_MAX_ATTEMPTS,
                },
            )
        except WaiterError as e:
            raise DeletionError(f"instances in VPC {vpc_id} did not terminate: {e}") from e
        logger.info(f"Terminated {len(ids)} instances")

    def _delete_security_groups(self, vpc_id: str) -> None:
        groups = self._ec2.describe_security_groups(Filters=_vpc_filter(vpc_id)).get("SecurityGroups", [])
        default_id = next((g["GroupId"] for g in groups if g.get("GroupName") == "default"), "")
        others = [g for g in groups if g.get("GroupName") != "default"]

        # Move interfaces still using a group onto the default group so it can be deleted
        for group in others:
            try:
                enis = self._ec2.describe_network_interfaces(
                    Filters=[{"Name": "group-id", "Values": [group["GroupId"]]}]
                ).get("NetworkInterfaces", [])
            except ClientError as e:
                logger.warning(f"Failed to describe ENIs for security group {group['GroupId']}: {e}")
                continue
            for eni in enis:
                if not default_id:
                    continue
                try:
                    self._ec2.modify_network_interface_attribute(
                        NetworkInterfaceId=eni["NetworkInterfaceId"], Groups=[default_id]
                    )
                except ClientError as e:
                    logger.warning(f"Failed to modify ENI {eni['NetworkInterfaceId']}: {e}")

        for group in others:
            try:
                self._ec2.delete_security_group(GroupId=group["GroupId"])
            except ClientError as e:
                logger.warning(f"Failed to delete security group {group['GroupId']}: {e}")
        logger.info(f"Deleted {len(others)} security groups")

    def _delete_subnets(self, vpc_id: str) -> None:
        subnets = self._ec2.describe_subnets(Filters=_vpc_filter(vpc_id)).get("Subnets", [])
        for subnet in subnets:
            try:
                self._ec2.delete_subnet(SubnetId=subnet["SubnetId"])
            except ClientError as e:
                logger.warning(f"Failed to delete subnet {subnet['SubnetId']}: {e}")
        logger.info(f"Deleted {len(subnets)} subnets")

    def _delete_route_tables(self, vpc_id: str) -> None:
        tables = self._ec2.describe_route_tables(Filters=_vpc_filter(vpc_id)).get("RouteTables", [])
        deleted = 0
        for table in tables:
            associations = table.get("Associations", [])
            if any(a.get("Main") for a in associations):
                continue
            for association in associations:
                if association_id := association.get("RouteTableAssociationId"):
                    try:
                        self._ec2.disassociate_route_table(AssociationId=association_id)
                    except ClientError as e:
                        logger.warning(f"Failed to disassociate route table {table['RouteTableId']}: {e}")
            try:
                self._ec2.delete_route_table(RouteTableId=table["RouteTableId"])
                deleted += 1
            except ClientError as e:
                logger.warning(f"Failed to delete route table {table['RouteTableId']}: {e}")
        logger.info(f"Deleted {deleted} route tables")

    def _delete_internet_gateways(self, vpc_id: str) -> None:
        gateways = self._ec2.describe_internet_gateways(
            Filters=_vpc_filter(vpc_id, "attachment.vpc-id")
        ).get("InternetGateways", [])
        for gateway in gateways:
            gateway_id = gateway["InternetGatewayId"]
            try:
                self._ec2.detach_internet_gateway(InternetGatewayId=gateway_id, VpcId=vpc_id)
            except ClientError as e:
                if not is_not_found(e):
                    logger.warning(f"Failed to detach internet gateway {gateway_id}: {e}")
            try:
                self._ec2.delete_internet_gateway(InternetGatewayId=gateway_id)
            except ClientError as e:
                logger.warning(f"Failed to delete internet gateway {gateway_id}: {e}")
        logger.info(f"Deleted {len(gateways)} internet gateways")

    def _delete_vpc(self, vpc_id: str) -> None:
        @retry(
            stop=stop_after_attempt(VPC_DELETE_ATTEMPTS),
            wait=wait_fixed(VPC_DELETE_RETRY_DELAY),
            retry=retry_if_exception(lambda e: not is_not_found(e)),
            before_sleep=_log_vpc_retry,
            sleep=self._sleep,
            reraise=True,
        )
        def delete() -> None:
            self._ec2.delete_vpc(VpcId=vpc_id)

        try:
            delete()
        except ClientError as e:
            if is_not_found(e):
                logger.info(f"VPC {vpc_id} already deleted")
                return
            raise DeletionError(f"failed to delete VPC {vpc_id} after {VPC_DELETE_ATTEMPTS} attempts: {e}") from e
        logger.info(f"Successfully deleted VPC: {vpc_id}")

