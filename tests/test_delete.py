"""Tests for the deletion pipeline."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from botocore.exceptions import WaiterError

from holodeck.api.environment import Environment
from holodeck.cache import read_environment
from holodeck.exceptions import CacheError, DeletionError, ProvisioningError
from holodeck.providers.aws.provider import AWSProvider
from tests.fakes import FakeClients, client_error

pytestmark = [pytest.mark.unit]

type MakeProvider = Callable[[Environment], AWSProvider]

NETWORK_DELETES = {
    "terminate_instances",
    "delete_listener",
    "delete_target_group",
    "delete_load_balancer",
    "delete_security_group",
    "delete_subnet",
    "disassociate_route_table",
    "delete_route_table",
    "detach_internet_gateway",
    "delete_internet_gateway",
    "delete_vpc",
}


def deletes(clients: FakeClients, since: int = 0) -> list[str]:
    return [name for name, _ in clients.calls[since:] if name in NETWORK_DELETES]


def active_condition(provider: AWSProvider) -> tuple[str, str]:
    condition = next(c for c in read_environment(provider.cache_file).status.conditions if c.status)
    return condition.type, condition.message


@pytest.fixture
def created(make_provider: MakeProvider, single_node_env: Environment) -> AWSProvider:
    provider = make_provider(single_node_env)
    provider.create()
    return provider


class TestDeleteSingleNode:
    def test_teardown_order(self, created: AWSProvider, clients: FakeClients) -> None:
        start = len(clients.calls)
        created.delete()

        assert deletes(clients, start) == [
            "terminate_instances",
            "delete_security_group",
            "delete_subnet",
            "disassociate_route_table",
            "delete_route_table",
            "detach_internet_gateway",
            "delete_internet_gateway",
            "delete_vpc",
        ]
        names = [name for name, _ in clients.calls[start:]]
        assert names.index("waiter.instance_terminated") < names.index("delete_security_group")
        assert not clients.ec2.vpcs
        assert not clients.ec2.gateways

    def test_marks_environment_terminated(self, created: AWSProvider) -> None:
        created.delete()
        assert active_condition(created) == ("Terminated", "AWS resources have been terminated")

    def test_instance_already_gone(self, created: AWSProvider, clients: FakeClients, logs: list[str]) -> None:
        clients.ec2.instances.clear()

        created.delete()

        assert any("already terminated" in m for m in logs)
        assert "waiter.instance_terminated" not in clients.names()
        assert active_condition(created)[0] == "Terminated"

    def test_second_delete_is_harmless(self, created: AWSProvider, clients: FakeClients) -> None:
        created.delete()
        created.delete()
        assert active_condition(created)[0] == "Terminated"

    def test_main_route_table_is_skipped(self, created: AWSProvider, clients: FakeClients, logs: list[str]) -> None:
        (table,) = clients.ec2.route_tables.values()
        table["Associations"].append({"RouteTableAssociationId": "rtbassoc-main", "Main": True})

        created.delete()

        assert "delete_route_table" not in clients.names()
        assert any(m.startswith("Skipping main route table") for m in logs)

    def test_transient_failure_is_retried(self, created: AWSProvider, clients: FakeClients) -> None:
        clients.ec2.fail("delete_subnet", client_error("DependencyViolation", "subnet has dependencies"))
        created.delete()
        assert clients.ec2.count("delete_subnet") == 2
        assert not clients.ec2.subnets


class TestDeleteFailures:
    def test_vpc_dependencies_are_reported(
        self, created: AWSProvider, clients: FakeClients, logs: list[str]
    ) -> None:
        (vpc_id,) = clients.ec2.vpcs
        clients.ec2.security_groups["sg-stray"] = {
            "GroupId": "sg-stray",
            "GroupName": "stray",
            "VpcId": vpc_id,
            "IpPermissions": [],
        }
        violation = client_error("DependencyViolation", "The vpc has dependencies and cannot be deleted.")
        clients.ec2.fail("delete_vpc", violation, violation, violation)

        with pytest.raises(DeletionError, match=f"failed to delete VPC {vpc_id}"):
            created.delete()

        assert clients.ec2.count("delete_vpc") == 3
        assert f"VPC {vpc_id} dependency: security group sg-stray (stray)" in logs
        assert active_condition(created) == ("Degraded", "Error deleting VPC resources")

    def test_instance_stuck_shutting_down(self, created: AWSProvider, clients: FakeClients) -> None:
        clients.ec2.fail("waiter.instance_terminated", WaiterError("InstanceTerminated", "Max attempts exceeded", {}))

        with pytest.raises(DeletionError, match="still shutting-down"):
            created.delete()

        assert "delete_vpc" not in clients.names()
        assert active_condition(created) == ("Degraded", "Error deleting EC2 instances")

    def test_waiter_failure_with_terminated_instance(self, created: AWSProvider, clients: FakeClients) -> None:
        clients.ec2.fail("waiter.instance_terminated", WaiterError("InstanceTerminated", "Max attempts exceeded", {}))
        for instance in clients.ec2.instances.values():
            instance["State"]["Name"] = "terminated"

        created.delete()

        assert active_condition(created)[0] == "Terminated"

    def test_missing_cache_file(self, make_provider: MakeProvider, single_node_env: Environment) -> None:
        with pytest.raises(CacheError):
            make_provider(single_node_env).delete()

    def test_empty_ledger_only_marks_terminated(
        self, make_provider: MakeProvider, single_node_env: Environment, clients: FakeClients
    ) -> None:
        clients.ec2.fail("create_vpc", client_error("VpcLimitExceeded"))
        provider = make_provider(single_node_env)
        with pytest.raises(ProvisioningError):
            provider.create()

        start = len(clients.calls)
        provider.delete()

        assert deletes(clients, start) == []
        assert active_condition(provider)[0] == "Terminated"


class TestDeleteCluster:
    @pytest.fixture
    def cluster(self, make_provider: MakeProvider, cluster_env: Environment) -> AWSProvider:
        provider = make_provider(cluster_env)
        provider.create()
        return provider

    def test_every_node_then_load_balancer_then_network(self, cluster: AWSProvider, clients: FakeClients) -> None:
        start = len(clients.calls)
        cluster.delete()

        order = deletes(clients, start)
        assert order.count("terminate_instances") == 5
        assert order[5:9] == ["delete_listener", "delete_target_group", "delete_load_balancer", "delete_security_group"]
        assert order[-1] == "delete_vpc"
        assert "deregister_targets" in clients.names()
        assert not clients.elbv2.load_balancers
        assert not clients.elbv2.target_groups
        assert active_condition(cluster)[0] == "Terminated"

    def test_load_balancer_already_gone(self, cluster: AWSProvider, clients: FakeClients, logs: list[str]) -> None:
        clients.elbv2.load_balancers.clear()
        cluster.delete()
        assert any(m.endswith("already deleted") and "Load balancer" in m for m in logs)
        assert active_condition(cluster)[0] == "Terminated"

    def test_load_balancer_failure_stops_before_network(self, cluster: AWSProvider, clients: FakeClients) -> None:
        error = client_error("ResourceInUse", "Load balancer is in use")
        clients.elbv2.fail("delete_load_balancer", error, error, error)

        with pytest.raises(DeletionError, match="failed to delete load balancer"):
            cluster.delete()

        assert clients.elbv2.count("delete_load_balancer") == 3
        assert "delete_vpc" not in clients.names()
        assert active_condition(cluster) == ("Degraded", "Error deleting load balancer")
