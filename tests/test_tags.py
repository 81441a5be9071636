from __future__ import annotations

import pytest

from holodeck.constants import NodeRole
from holodeck.providers.aws.tags import build_tags, merge_tags, node_tags, tag_specification

pytestmark = [pytest.mark.unit]


def as_dict(tags: list[dict[str, str]]) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags}


class TestBuildTags:
    def test_base_tags(self) -> None:
        tags = as_dict(build_tags("ci-test", {}))
        assert tags["Name"] == "ci-test"
        assert tags["Project"] == "holodeck"
        assert tags["Product"] == "Cloud Native"
        assert tags["Environment"] == "cicd"
        assert tags["GitHubRunId"] == ""

    def test_ci_metadata(self) -> None:
        environ = {
            "GITHUB_SHA": "0123456789abcdef",
            "GITHUB_ACTOR": "octocat",
            "GITHUB_REPOSITORY": "NVIDIA/holodeck",
            "GITHUB_RUN_ID": "42",
        }
        tags = as_dict(build_tags("ci-test", environ))
        assert tags["CommitSHA"] == "01234567"
        assert tags["Actor"] == "octocat"
        assert tags["GitHubRepository"] == "NVIDIA/holodeck"
        assert tags["GitHubRunId"] == "42"


class TestNodeTags:
    def test_name_replaced_role_and_index_added(self) -> None:
        base = build_tags("ci-test", {})
        tags = node_tags(base, "ci-test-worker-3", NodeRole.WORKER, 3)

        assert [t["Value"] for t in tags if t["Key"] == "Name"] == ["ci-test-worker-3"]
        assert as_dict(tags)["Role"] == "worker"
        assert as_dict(tags)["NodeIndex"] == "3"
        assert as_dict(base)["Name"] == "ci-test"


class TestHelpers:
    def test_tag_specification_copies(self) -> None:
        tags = [{"Key": "Name", "Value": "a"}]
        (spec,) = tag_specification("vpc", tags)
        assert spec["ResourceType"] == "vpc"
        spec["Tags"][0]["Value"] = "changed"  # type: ignore[index]
        assert tags[0]["Value"] == "a"

    def test_merge_overrides_and_appends(self) -> None:
        merged = merge_tags([{"Key": "Name", "Value": "a"}, {"Key": "Project", "Value": "holodeck"}], {"Name": "b", "Team": "x"})
        assert merged == [
            {"Key": "Name", "Value": "b"},
            {"Key": "Project", "Value": "holodeck"},
            {"Key": "Team", "Value": "x"},
        ]
