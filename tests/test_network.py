"""Tests for ingress rules and rollback of network phases."""

from __future__ import annotations

import pytest

from holodeck.providers.aws.context import AWSContext
from holodeck.providers.aws.network import (
    ResourceKind,
    Undo,
    cluster_permissions,
    create_internet_gateway,
    create_route_table,
    create_subnet,
    create_vpc,
    ingress_ranges,
    rollback,
    single_node_permissions,
)
from holodeck.providers.aws.resources import AWSCache
from tests.fakes import FakeClients, client_error

pytestmark = [pytest.mark.unit]


class TestIngress:
    def test_detected_address_first_and_deduplicated(self) -> None:
        ranges = ingress_ranges("203.0.113.7/32", ["10.0.0.0/8", "203.0.113.7/32", "10.0.0.0/8"])
        assert ranges == ["203.0.113.7/32", "10.0.0.0/8"]

    def test_single_node_ports(self) -> None:
        rules = single_node_permissions(["198.51.100.1/32"])
        assert [(r["IpProtocol"], r["FromPort"], r["ToPort"]) for r in rules] == [
            ("tcp", 22, 22),
            ("tcp", 443, 443),
            ("tcp", 6443, 6443),
        ]

    def test_cluster_internal_rules_are_scoped_to_the_vpc(self) -> None:
        rules = cluster_permissions(["198.51.100.1/32"])
        external = rules[:3]
        internal = rules[3:]
        assert all(r["IpRanges"] == [{"CidrIp": "198.51.100.1/32"}] for r in external)
        assert all(r["IpRanges"] == [{"CidrIp": "10.0.0.0/16"}] for r in internal)
        assert [r["FromPort"] for r in internal] == [10250, 10259, 10257, 2379, 2380, 4789, 179, 5473, 6443]
        assert next(r for r in internal if r["FromPort"] == 4789)["IpProtocol"] == "udp"


class TestNetworkPhases:
    def test_records_ids_and_undo_entries(self, aws_context: AWSContext, clients: FakeClients) -> None:
        cache = AWSCache()
        undo: list[Undo] = []

        for phase in (create_vpc, create_subnet, create_internet_gateway, create_route_table):
            phase(aws_context, cache, undo)

        assert [u.kind for u in undo] == [
            ResourceKind.VPC,
            ResourceKind.SUBNET,
            ResourceKind.INTERNET_GATEWAY,
            ResourceKind.ROUTE_TABLE,
        ]
        assert undo[2].vpc_id == cache.vpc_id
        assert undo[3].association_id.startswith("rtbassoc-")
        assert cache.internet_gateway_attachment == cache.vpc_id
        _, route = next(c for c in clients.calls if c[0] == "create_route")
        assert route == {
            "RouteTableId": cache.route_table_id,
            "DestinationCidrBlock": "0.0.0.0/0",
            "GatewayId": cache.internet_gateway_id,
        }

    def test_dns_hostnames_enabled(self, aws_context: AWSContext, clients: FakeClients) -> None:
        create_vpc(aws_context, AWSCache(), [])
        _, kwargs = next(c for c in clients.calls if c[0] == "modify_vpc_attribute")
        assert kwargs["EnableDnsHostnames"] == {"Value": True}


class TestRollback:
    def test_empty_stack(self, clients: FakeClients) -> None:
        rollback(clients.ec2, [])  # type: ignore[arg-type]
        assert clients.calls == []

    def test_already_deleted_resources_are_skipped(self, clients: FakeClients, logs: list[str]) -> None:
        rollback(clients.ec2, [Undo(ResourceKind.VPC, "vpc-gone"), Undo(ResourceKind.SUBNET, "subnet-gone")])  # type: ignore[arg-type]
        assert clients.names() == ["delete_subnet", "delete_vpc"]
        assert "Rollback: vpc vpc-gone already deleted" in logs

    def test_failures_never_raise(self, aws_context: AWSContext, clients: FakeClients, logs: list[str]) -> None:
        cache = AWSCache()
        undo: list[Undo] = []
        create_vpc(aws_context, cache, undo)
        create_subnet(aws_context, cache, undo)
        clients.ec2.fail("delete_subnet", client_error("DependencyViolation"))

        rollback(clients.ec2, undo)  # type: ignore[arg-type]

        assert cache.vpc_id not in clients.ec2.vpcs
        assert any(m.startswith(f"Rollback: failed to delete subnet {cache.subnet_id}") for m in logs)
