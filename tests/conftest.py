from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest
from loguru import logger

from holodeck.api.environment import Environment
from holodeck.config import DeletionPolicy, Settings
from holodeck.providers.aws.ami import AMIResolver
from holodeck.providers.aws.context import AWSContext
from holodeck.providers.aws.image import ImageService
from holodeck.providers.aws.provider import AWSProvider
from holodeck.providers.aws.tags import build_tags
from holodeck.retry import RetryConfig
from holodeck.status import StatusTracker
from tests.fakes import OPERATOR_IP, FakeClients, environment_document, image

UBUNTU_JAMMY_X86 = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-amd64-server-%s"
UBUNTU_JAMMY_ARM = "ubuntu/images/hvm-ssd/ubuntu-jammy-22.04-arm64-server-%s"


@pytest.fixture(autouse=True)
def _non_interactive(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CI", "true")
    monkeypatch.delenv("AWS_REGION", raising=False)


@pytest.fixture
def ubuntu_images() -> list[dict[str, Any]]:
    return [
        image("ami-old", UBUNTU_JAMMY_X86 % "20240101", "2024-01-01T00:00:00.000Z"),
        image("ami-newest", UBUNTU_JAMMY_X86 % "20240601", "2024-06-01T00:00:00.000Z"),
        image("ami-mid", UBUNTU_JAMMY_X86 % "20240301", "2024-03-01T00:00:00.000Z"),
        image("ami-arm", UBUNTU_JAMMY_ARM % "20240601", "2024-06-01T00:00:00.000Z", architecture="arm64"),
    ]


@pytest.fixture
def clients(ubuntu_images: list[dict[str, Any]]) -> FakeClients:
    return FakeClients.create(
        images=ubuntu_images,
        instance_types={
            "t3.medium": ["x86_64"],
            "m5.xlarge": ["x86_64"],
            "m6g.large": ["arm64"],
            "a1.metal": ["arm64", "x86_64"],
        },
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        cache_dir=tmp_path,
        retry=RetryConfig(max_retries=2, initial_backoff=0.0, max_backoff=0.0),
        deletion=DeletionPolicy(attempts=3, initial_delay=0.0, max_delay=0.0, verify_delay=0.0),
    )


@pytest.fixture
def single_node_env() -> Environment:
    return Environment.model_validate(environment_document())


@pytest.fixture
def cluster_env() -> Environment:
    return Environment.model_validate(
        environment_document(
            cluster={
                "region": "us-east-1",
                "controlPlane": {"count": 3, "instanceType": "m5.xlarge"},
                "workers": {"count": 2, "instanceType": "t3.medium"},
                "highAvailability": {"enabled": True},
            }
        )
    )


@pytest.fixture
def make_provider(
    clients: FakeClients,
    settings: Settings,
    tmp_path: Path,
) -> Callable[[Environment], AWSProvider]:
    def make(env: Environment) -> AWSProvider:
        return AWSProvider(
            env,
            tmp_path / f"{env.name}.yaml",
            settings=settings,
            clients=clients,  # type: ignore[arg-type]
            detect_ip=lambda: OPERATOR_IP,
            environ={},
        )

    return make


@pytest.fixture
def logs() -> Iterator[list[str]]:
    """Messages logged by holodeck during the test."""
    messages: list[str] = []
    logger.enable("holodeck")
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
    logger.disable("holodeck")


@pytest.fixture
def aws_context(clients: FakeClients, settings: Settings, single_node_env: Environment, tmp_path: Path) -> AWSContext:
    """Context for driving phases directly, without the provider."""
    return AWSContext(
        environment=single_node_env,
        region="us-east-1",
        ec2=clients.ec2,  # type: ignore[arg-type]
        elbv2=clients.elbv2,  # type: ignore[arg-type]
        tracker=StatusTracker(single_node_env, tmp_path / "context.yaml"),
        images=ImageService(clients.ec2, AMIResolver(clients.ec2, clients.ssm, "us-east-1")),  # type: ignore[arg-type]
        tags=build_tags(single_node_env.name, {}),
        settings=settings,
        detect_ip=lambda: OPERATOR_IP,
    )
