"""Lazily constructed boto3 clients for one region."""

from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING

from botocore.config import Config

from holodeck.constants import API_TIMEOUT

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_elbv2 import ElasticLoadBalancingv2Client
    from mypy_boto3_ssm import SSMClient


class AWSClients:
    """EC2, ELBv2 and SSM clients sharing one timeout policy.

    Every call is bounded by ``timeout`` seconds; retries are handled by
    the callers, so botocore keeps its standard retry mode.
    """

    def __init__(self, region: str, timeout: int = API_TIMEOUT) -> None:
        self.region = region
        self._config = Config(
            region_name=region,
            connect_timeout=min(timeout, 30),
            read_timeout=timeout,
            retries={"mode": "standard"},
        )

    @cached_property
    def ec2(self) -> EC2Client:
        import boto3

        return boto3.client("ec2", config=self._config)

    @cached_property
    def elbv2(self) -> ElasticLoadBalancingv2Client:
        import boto3

        return boto3.client("elbv2", config=self._config)

    @cached_property
    def ssm(self) -> SSMClient:
        import boto3

        return boto3.client("ssm", config=self._config)
