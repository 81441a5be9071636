"""Centralized constants and enums for Holodeck.

All magic strings, property names, and timing constants are defined here
to ensure consistency across the provider, the status tracker and deletion.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final

# =============================================================================
# Environment Conditions
# =============================================================================


class ConditionType(StrEnum):
    """Condition types, in the order they are persisted."""

    AVAILABLE = "Available"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    TERMINATED = "Terminated"


class Reason(StrEnum):
    """Condition reasons written by the lifecycle operations."""

    CREATING = "v1alpha1.Creating"
    DESTROYING = "v1alpha1.Destroying"
    TERMINATED = "v1alpha1.Terminated"


TERMINATED_MESSAGE: Final = "AWS resources have been terminated"


# =============================================================================
# Resource Ledger (status.properties)
# =============================================================================


class PropertyName(StrEnum):
    """Names of the resource ids recorded in the cache file."""

    VPC_ID = "vpc-id"
    SUBNET_ID = "subnet-id"
    INTERNET_GATEWAY_ID = "internet-gateway-id"
    INTERNET_GATEWAY_ATTACHMENT = "internet-gateway-attachment-vpc-id"
    ROUTE_TABLE_ID = "route-table-id"
    SECURITY_GROUP_ID = "security-group-id"
    INSTANCE_ID = "instance-id"
    PUBLIC_DNS_NAME = "public-dns-name"
    LOAD_BALANCER_ARN = "load-balancer-arn"
    LOAD_BALANCER_DNS = "load-balancer-dns"
    TARGET_GROUP_ARN = "target-group-arn"


# =============================================================================
# AWS Resource Tags
# =============================================================================


class HolodeckTag(StrEnum):
    """AWS resource tag keys used by Holodeck."""

    PRODUCT = "Product"
    NAME = "Name"
    PROJECT = "Project"
    ENVIRONMENT = "Environment"
    COMMIT_SHA = "CommitSHA"
    ACTOR = "Actor"
    BRANCH = "Branch"
    REPOSITORY = "GitHubRepository"
    RUN_ID = "GitHubRunId"
    RUN_NUMBER = "GitHubRunNumber"
    JOB = "GitHubJob"
    RUN_ATTEMPT = "GitHubRunAttempt"
    ROLE = "Role"
    NODE_INDEX = "NodeIndex"


PRODUCT_TAG_VALUE: Final = "Cloud Native"
PROJECT_TAG_VALUE: Final = "holodeck"
ENVIRONMENT_TAG_VALUE: Final = "cicd"


# =============================================================================
# Cluster
# =============================================================================


class NodeRole(StrEnum):
    """Role of a node in a multinode cluster."""

    CONTROL_PLANE = "control-plane"
    WORKER = "worker"


class NodePhase(StrEnum):
    RUNNING = "Running"
    READY = "Ready"


class InstanceState(StrEnum):
    """EC2 instance state names."""

    PENDING = "pending"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
    STOPPING = "stopping"
    STOPPED = "stopped"


PORT_SSH: Final = 22
PORT_HTTPS: Final = 443
PORT_K8S_API: Final = 6443
PORT_KUBELET: Final = 10250
PORT_KUBE_SCHEDULER: Final = 10259
PORT_KUBE_CONTROLLER: Final = 10257
PORT_ETCD_CLIENT: Final = 2379
PORT_ETCD_PEER: Final = 2380
PORT_CALICO_VXLAN: Final = 4789
PORT_CALICO_BGP: Final = 179
PORT_CALICO_TYPHA: Final = 5473


# =============================================================================
# Networking
# =============================================================================

VPC_CIDR: Final = "10.0.0.0/16"
SUBNET_CIDR: Final = "10.0.0.0/24"
DEFAULT_ROUTE_CIDR: Final = "0.0.0.0/0"
SECURITY_GROUP_DESCRIPTION: Final = "Holodeck managed AWS Cloud Provider"
CLUSTER_SECURITY_GROUP_DESCRIPTION: Final = "Holodeck managed multinode cluster security group"


# =============================================================================
# Instances
# =============================================================================

DEFAULT_ARCHITECTURE: Final = "x86_64"
DEFAULT_ROOT_VOLUME_GB: Final = 64
MIN_ROOT_VOLUME_GB: Final = 20
ROOT_DEVICE_NAME: Final = "/dev/sda1"
ROOT_VOLUME_TYPE: Final = "gp2"
DEFAULT_SSH_USERNAME: Final = "ubuntu"

# Timeouts (in seconds)
API_TIMEOUT: Final = 120
INSTANCE_RUNNING_WAIT_DELAY: Final = 5
INSTANCE_RUNNING_MAX_ATTEMPTS: Final = 60
INSTANCE_TERMINATED_WAIT_DELAY: Final = 5
INSTANCE_TERMINATED_MAX_ATTEMPTS: Final = 180


# =============================================================================
# Load Balancer
# =============================================================================

HEALTH_CHECK_INTERVAL: Final = 10
HEALTH_CHECK_TIMEOUT: Final = 5
HEALTHY_THRESHOLD: Final = 2
UNHEALTHY_THRESHOLD: Final = 2


# =============================================================================
# Deletion
# =============================================================================

DELETE_ATTEMPTS: Final = 5
DELETE_INITIAL_DELAY: Final = 1.0
DELETE_MAX_DELAY: Final = 30.0
DELETE_VERIFY_DELAY: Final = 2.0
VPC_DELETE_RETRY_DELAY: Final = 30.0
