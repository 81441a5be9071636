"""State shared by the AWS lifecycle operations of one environment."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from holodeck.api.environment import ClusterStatus, Environment
from holodeck.config import Settings
from holodeck.constants import Reason
from holodeck.exceptions import CacheError
from holodeck.providers.aws.image import ImageService
from holodeck.providers.aws.resources import AWSCache
from holodeck.providers.aws.tags import Tag
from holodeck.retry import with_retry
from holodeck.status import StatusTracker

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_elbv2 import ElasticLoadBalancingv2Client


@dataclass(frozen=True, slots=True)
class AWSContext:
    """Everything a phase needs. The environment is the caller's input and is read-only."""

    environment: Environment
    region: str
    ec2: EC2Client
    elbv2: ElasticLoadBalancingv2Client
    tracker: StatusTracker
    images: ImageService
    tags: list[Tag]
    settings: Settings
    detect_ip: Callable[[], str]

    @property
    def name(self) -> str:
        return self.environment.metadata.name

    def call[T](self, operation: Callable[[], T]) -> T:
        """Run a mutating API call under the typed retry policy."""
        return with_retry(operation, self.settings.retry)

    def progressing(
        self,
        cache: AWSCache,
        message: str,
        reason: str = Reason.CREATING,
        cluster: ClusterStatus | None = None,
    ) -> None:
        try:
            self.tracker.progressing(cache.properties(), reason, message, cluster)
        except CacheError as e:
            logger.warning(f"Failed to update progressing condition: {e}")

    def degraded(
        self,
        cache: AWSCache,
        message: str,
        reason: str = Reason.CREATING,
        cluster: ClusterStatus | None = None,
    ) -> None:
        # Called while another error propagates, so a failed write is only logged
        try:
            self.tracker.degraded(cache.properties(), reason, message, cluster)
        except CacheError as e:
            logger.warning(f"Failed to update degraded condition: {e}")
