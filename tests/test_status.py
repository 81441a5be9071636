"""Tests for condition building and the status tracker."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import pytest
import yaml

from holodeck.api.environment import ClusterStatus, Environment, NodeStatus, Property
from holodeck.cache import read_environment
from holodeck.constants import TERMINATED_MESSAGE, ConditionType, Reason
from holodeck.exceptions import CacheError
from holodeck.status import StatusTracker, build_conditions

pytestmark = [pytest.mark.unit]


def true_types(env: Environment) -> list[str]:
    return [c.type for c in env.status.conditions if c.status]


class TestBuildConditions:
    @pytest.mark.parametrize("kind", list(ConditionType))
    def test_exactly_one_condition_is_true(self, kind: ConditionType) -> None:
        conditions = build_conditions(kind, Reason.CREATING, "msg")
        assert [c.type for c in conditions] == ["Available", "Progressing", "Degraded", "Terminated"]
        assert [c.type for c in conditions if c.status] == [kind.value]

    def test_reason_and_message_on_true_condition(self) -> None:
        conditions = build_conditions(ConditionType.DEGRADED, Reason.CREATING, "Error creating VPC")
        degraded = next(c for c in conditions if c.type == "Degraded")
        assert (degraded.reason, degraded.message) == (Reason.CREATING, "Error creating VPC")
        available = next(c for c in conditions if c.type == "Available")
        assert (available.reason, available.message) == ("", "")

    def test_terminated_carries_reason_when_given(self) -> None:
        conditions = build_conditions(ConditionType.PROGRESSING, Reason.DESTROYING, "Deleting VPC resources")
        terminated = next(c for c in conditions if c.type == "Terminated")
        assert not terminated.status
        assert terminated.message == "Deleting VPC resources"

    def test_uses_given_timestamp(self) -> None:
        now = datetime(2024, 5, 1, tzinfo=UTC)
        assert all(c.last_transition_time == now for c in build_conditions(ConditionType.AVAILABLE, now=now))


class TestStatusTracker:
    def test_progressing_writes_cache_file(self, single_node_env: Environment, tmp_path: Path) -> None:
        cache_file = tmp_path / "nested" / "env.yaml"
        tracker = StatusTracker(single_node_env, cache_file)

        assert tracker.progressing([Property(name="vpc-id", value="vpc-1")], Reason.CREATING, "VPC created")

        written = read_environment(cache_file)
        assert true_types(written) == ["Progressing"]
        assert written.status.properties == [Property(name="vpc-id", value="vpc-1")]

    def test_cache_file_is_owner_only(self, single_node_env: Environment, tmp_path: Path) -> None:
        cache_file = tmp_path / "env.yaml"
        StatusTracker(single_node_env, cache_file).available([])
        assert cache_file.stat().st_mode & 0o777 == 0o600

    def test_identical_update_is_not_rewritten(self, single_node_env: Environment, tmp_path: Path) -> None:
        cache_file = tmp_path / "env.yaml"
        tracker = StatusTracker(single_node_env, cache_file)
        props = [Property(name="vpc-id", value="vpc-1")]

        assert tracker.progressing(props, Reason.CREATING, "VPC created")
        cache_file.unlink()
        assert not tracker.progressing(props, Reason.CREATING, "VPC created")
        assert not cache_file.exists()

    def test_properties_are_replaced_not_appended(self, single_node_env: Environment, tmp_path: Path) -> None:
        cache_file = tmp_path / "env.yaml"
        tracker = StatusTracker(single_node_env, cache_file)
        tracker.progressing([Property(name="vpc-id", value="")], Reason.CREATING, "a")
        tracker.progressing(
            [Property(name="vpc-id", value="vpc-1"), Property(name="subnet-id", value="subnet-1")],
            Reason.CREATING,
            "b",
        )

        names = [p.name for p in read_environment(cache_file).status.properties]
        assert names == ["vpc-id", "subnet-id"]
        assert read_environment(cache_file).status.properties[0].value == "vpc-1"

    def test_caller_environment_is_not_modified(self, single_node_env: Environment, tmp_path: Path) -> None:
        tracker = StatusTracker(single_node_env, tmp_path / "env.yaml")
        tracker.available([Property(name="instance-id", value="i-1")])
        assert single_node_env.status.conditions == []
        assert single_node_env.status.properties == []
        assert true_types(tracker.snapshot) == ["Available"]

    def test_cluster_status_is_persisted(self, cluster_env: Environment, tmp_path: Path) -> None:
        cache_file = tmp_path / "env.yaml"
        cluster = ClusterStatus(
            nodes=[NodeStatus(name="ci-test-control-plane-0", role="control-plane", instance_id="i-1")],
            total_nodes=1,
            phase="Running",
        )
        StatusTracker(cluster_env, cache_file).progressing([], Reason.CREATING, "Control-plane instances created", cluster)

        raw = yaml.safe_load(cache_file.read_text())
        assert raw["status"]["cluster"]["nodes"][0]["instanceID"] == "i-1"
        assert raw["status"]["cluster"]["totalNodes"] == 1

    def test_terminated_uses_fixed_reason(self, single_node_env: Environment, tmp_path: Path) -> None:
        cache_file = tmp_path / "env.yaml"
        StatusTracker(single_node_env, cache_file).terminated([])
        terminated = next(c for c in read_environment(cache_file).status.conditions if c.status)
        assert terminated.type == "Terminated"
        assert terminated.reason == Reason.TERMINATED
        assert terminated.message == TERMINATED_MESSAGE

    def test_write_failure_is_surfaced(self, single_node_env: Environment, tmp_path: Path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        tracker = StatusTracker(single_node_env, blocker / "env.yaml")
        with pytest.raises(CacheError):
            tracker.degraded([], Reason.CREATING, "Error creating VPC")
