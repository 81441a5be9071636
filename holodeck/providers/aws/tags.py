"""Resource tags applied to everything Holodeck creates."""

from __future__ import annotations

import os
from collections.abc import Mapping
from typing import Final

from holodeck.constants import (
    ENVIRONMENT_TAG_VALUE,
    PRODUCT_TAG_VALUE,
    PROJECT_TAG_VALUE,
    HolodeckTag,
    NodeRole,
)

type Tag = dict[str, str]

_CI_TAGS: Final = (
    (HolodeckTag.COMMIT_SHA, "GITHUB_SHA"),
    (HolodeckTag.ACTOR, "GITHUB_ACTOR"),
    (HolodeckTag.BRANCH, "GITHUB_REF_NAME"),
    (HolodeckTag.REPOSITORY, "GITHUB_REPOSITORY"),
    (HolodeckTag.RUN_ID, "GITHUB_RUN_ID"),
    (HolodeckTag.RUN_NUMBER, "GITHUB_RUN_NUMBER"),
    (HolodeckTag.JOB, "GITHUB_JOB"),
    (HolodeckTag.RUN_ATTEMPT, "GITHUB_RUN_ATTEMPT"),
)


def build_tags(env_name: str, environ: Mapping[str, str] | None = None) -> list[Tag]:
    """Base tags for an environment, including CI run metadata when present."""
    environ = os.environ if environ is None else environ
    tags: list[Tag] = [
        {"Key": HolodeckTag.PRODUCT.value, "Value": PRODUCT_TAG_VALUE},
        {"Key": HolodeckTag.NAME.value, "Value": env_name},
        {"Key": HolodeckTag.PROJECT.value, "Value": PROJECT_TAG_VALUE},
        {"Key": HolodeckTag.ENVIRONMENT.value, "Value": ENVIRONMENT_TAG_VALUE},
    ]
    for key, var in _CI_TAGS:
        value = environ.get(var, "")
        if key == HolodeckTag.COMMIT_SHA:
            value = value[:8]
        tags.append({"Key": key.value, "Value": value})
    return tags


def node_tags(base: list[Tag], name: str, role: NodeRole, index: int) -> list[Tag]:
    """Tags for one cluster node: base tags with ``Name`` replaced and role/index added."""
    tags = [dict(t) for t in base if t["Key"] != HolodeckTag.NAME]
    tags.extend([
        {"Key": HolodeckTag.ROLE.value, "Value": role.value},
        {"Key": HolodeckTag.NODE_INDEX.value, "Value": str(index)},
        {"Key": HolodeckTag.NAME.value, "Value": name},
    ])
    return tags


def tag_specification(resource_type: str, tags: list[Tag]) -> list[dict[str, object]]:
    return [{"ResourceType": resource_type, "Tags": [dict(t) for t in tags]}]


def merge_tags(base: list[Tag], extra: Mapping[str, str]) -> list[Tag]:
    merged = {t["Key"]: t["Value"] for t in base}
    merged.update(extra)
    return [{"Key": k, "Value": v} for k, v in merged.items()]
