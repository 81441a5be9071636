"""Environment document: desired state (spec) and observed state (status).

The same document is read from the user's environment file and written
to the cache file, so field aliases follow the camelCase YAML layout:

    apiVersion: holodeck.nvidia.com/v1alpha1
    kind: Environment
    metadata:
      name: ci-gpu-test
    spec:
      provider: aws
      auth:
        keyName: ci-key
        privateKey: ~/.ssh/ci-key.pem
      instance:
        type: g4dn.xlarge
        region: us-east-1
        os: ubuntu-22.04
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from holodeck.constants import MIN_ROOT_VOLUME_GB
from holodeck.exceptions import ValidationError

API_VERSION = "holodeck.nvidia.com/v1alpha1"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")


# =============================================================================
# Spec
# =============================================================================


class Image(_Model):
    """Machine image selection. An explicit ``image_id`` always wins."""

    architecture: str = Field(default="", description="x86_64, arm64 or an alias")
    image_id: str | None = None
    owner_id: str | None = None
    name: str | None = None
    creation_date: str | None = None
    description: str | None = None


class Instance(_Model):
    type: str = ""
    image: Image = Field(default_factory=Image)
    region: str = ""
    os: str = Field(default="", description="OS identifier, e.g. ubuntu-22.04")
    root_volume_size_gb: int | None = Field(default=None, alias="rootVolumeSizeGB")
    ingress_ip_ranges: list[str] = Field(default_factory=list)
    host_url: str = ""


class Auth(_Model):
    key_name: str = ""
    username: str = ""
    public_key: str = ""
    private_key: str = ""


class ControlPlaneSpec(_Model):
    count: int = 1
    instance_type: str = ""
    os: str = ""
    image: Image | None = None
    root_volume_size_gb: int | None = Field(default=None, alias="rootVolumeSizeGB")

    def validate_spec(self) -> None:
        if self.count < 1:
            raise ValidationError(f"control plane count must be at least 1, got {self.count}")
        if self.count > 7:
            raise ValidationError(f"control plane count must be at most 7, got {self.count}")
        if self.count > 1 and self.count % 2 == 0:
            raise ValidationError(
                "control plane count should be an odd number (1, 3, 5, 7) "
                f"for etcd quorum, got {self.count}"
            )
        if self.root_volume_size_gb is not None and self.root_volume_size_gb < MIN_ROOT_VOLUME_GB:
            raise ValidationError(
                f"control plane root volume size must be at least {MIN_ROOT_VOLUME_GB}GB, "
                f"got {self.root_volume_size_gb}"
            )


class WorkerPoolSpec(_Model):
    count: int = 0
    instance_type: str = ""
    os: str = ""
    image: Image | None = None
    root_volume_size_gb: int | None = Field(default=None, alias="rootVolumeSizeGB")

    def validate_spec(self) -> None:
        if self.count < 0:
            raise ValidationError(f"worker count cannot be negative, got {self.count}")
        if self.root_volume_size_gb is not None and self.root_volume_size_gb < MIN_ROOT_VOLUME_GB:
            raise ValidationError(
                f"worker root volume size must be at least {MIN_ROOT_VOLUME_GB}GB, "
                f"got {self.root_volume_size_gb}"
            )


class HAConfig(_Model):
    enabled: bool = False
    etcd_topology: str = "stacked"
    load_balancer_type: str = "nlb"

    def validate_spec(self) -> None:
        if not self.enabled:
            return
        if self.etcd_topology not in ("", "stacked", "external"):
            raise ValidationError(
                f"invalid etcd topology: {self.etcd_topology} (must be 'stacked' or 'external')"
            )
        if self.etcd_topology == "external":
            raise ValidationError("external etcd topology is not yet supported; use 'stacked' topology")
        if self.load_balancer_type not in ("", "nlb", "alb"):
            raise ValidationError(
                f"invalid load balancer type: {self.load_balancer_type} (must be 'nlb' or 'alb')"
            )


class ClusterSpec(_Model):
    region: str = ""
    control_plane: ControlPlaneSpec = Field(default_factory=ControlPlaneSpec)
    workers: WorkerPoolSpec | None = None
    high_availability: HAConfig | None = None

    @property
    def ha_enabled(self) -> bool:
        return self.high_availability is not None and self.high_availability.enabled

    def validate_spec(self) -> None:
        """Check structural rules. Raises ``ValidationError`` on the first violation."""
        if not self.region:
            raise ValidationError("cluster region is required")

        try:
            self.control_plane.validate_spec()
        except ValidationError as e:
            raise ValidationError(f"control plane validation failed: {e}") from e

        if self.workers is not None:
            try:
                self.workers.validate_spec()
            except ValidationError as e:
                raise ValidationError(f"workers validation failed: {e}") from e

        if self.high_availability is not None:
            try:
                self.high_availability.validate_spec()
            except ValidationError as e:
                raise ValidationError(f"high availability validation failed: {e}") from e

        if self.ha_enabled and self.control_plane.count < 3:
            raise ValidationError(
                "high availability requires at least 3 control-plane nodes, "
                f"got {self.control_plane.count}"
            )


class ContainerRuntime(_Model):
    install: bool = False
    name: str = "containerd"
    version: str = ""


class Kubernetes(_Model):
    install: bool = False
    installer: str = "kubeadm"
    version: str = ""
    kube_config: str = ""


class NVDriver(_Model):
    install: bool = False
    version: str = ""


class NVContainerToolkit(_Model):
    install: bool = False
    version: str = ""


class EnvironmentSpec(_Model):
    provider: str = "aws"
    auth: Auth = Field(default_factory=Auth)
    instance: Instance = Field(default_factory=Instance)
    cluster: ClusterSpec | None = None
    container_runtime: ContainerRuntime = Field(default_factory=ContainerRuntime)
    kubernetes: Kubernetes = Field(default_factory=Kubernetes)
    nvidia_driver: NVDriver = Field(default_factory=NVDriver)
    nvidia_container_toolkit: NVContainerToolkit = Field(default_factory=NVContainerToolkit)


# =============================================================================
# Status
# =============================================================================


class Condition(_Model):
    type: str
    status: bool = False
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


class Property(_Model):
    name: str
    value: str = ""


class NodeStatus(_Model):
    name: str
    role: str
    instance_id: str = Field(default="", alias="instanceID")
    public_ip: str = Field(default="", alias="publicIP")
    private_ip: str = Field(default="", alias="privateIP")
    ssh_username: str = ""
    phase: str = ""


class ClusterStatus(_Model):
    nodes: list[NodeStatus] = Field(default_factory=list)
    total_nodes: int = 0
    ready_nodes: int = 0
    phase: str = ""
    control_plane_endpoint: str = ""
    load_balancer_dns: str = Field(default="", alias="loadBalancerDNS")


class EnvironmentStatus(_Model):
    properties: list[Property] = Field(default_factory=list)
    conditions: list[Condition] = Field(default_factory=list)
    cluster: ClusterStatus | None = None


# =============================================================================
# Document
# =============================================================================


class Metadata(_Model):
    name: str = ""
    labels: dict[str, str] = Field(default_factory=dict)


class Environment(_Model):
    """A holodeck environment: desired spec plus observed status."""

    api_version: str = API_VERSION
    kind: str = "Environment"
    metadata: Metadata = Field(default_factory=Metadata)
    spec: EnvironmentSpec = Field(default_factory=EnvironmentSpec)
    status: EnvironmentStatus = Field(default_factory=EnvironmentStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def is_multinode(self) -> bool:
        return self.spec.cluster is not None

    def to_document(self) -> dict[str, object]:
        """Plain, alias-keyed mapping suitable for YAML serialization."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
