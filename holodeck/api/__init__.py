"""Environment document models and the provider contract."""

from .environment import Auth as Auth
from .environment import ClusterSpec as ClusterSpec
from .environment import ClusterStatus as ClusterStatus
from .environment import Condition as Condition
from .environment import ControlPlaneSpec as ControlPlaneSpec
from .environment import Environment as Environment
from .environment import EnvironmentSpec as EnvironmentSpec
from .environment import EnvironmentStatus as EnvironmentStatus
from .environment import HAConfig as HAConfig
from .environment import Image as Image
from .environment import Instance as Instance
from .environment import Metadata as Metadata
from .environment import NodeStatus as NodeStatus
from .environment import Property as Property
from .environment import WorkerPoolSpec as WorkerPoolSpec
from .provider import Provider as Provider
