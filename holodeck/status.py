"""Environment condition tracking.

Every lifecycle step reports exactly one of four states. The tracker
builds the full four-entry condition list with only that state true,
merges the resource ledger into it and persists the document when,
and only when, something observable changed.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from holodeck.api.environment import ClusterStatus, Condition, Environment, Property
from holodeck.cache import write_environment
from holodeck.constants import TERMINATED_MESSAGE, ConditionType, Reason
from holodeck.exceptions import CacheError


def build_conditions(
    true_type: ConditionType,
    reason: str = "",
    message: str = "",
    *,
    now: datetime | None = None,
) -> list[Condition]:
    """Build the four conditions, in persisted order, with ``true_type`` set.

    The reason and message go to the true condition. ``Terminated`` also
    carries them whenever a reason is given.
    """
    timestamp = now or datetime.now(UTC)
    conditions: list[Condition] = []
    for kind in ConditionType:
        condition = Condition(type=kind.value, status=kind == true_type, last_transition_time=timestamp)
        if kind == true_type or (kind == ConditionType.TERMINATED and reason):
            condition.reason = reason
            condition.message = message
        conditions.append(condition)
    return conditions


def _conditions_changed(old: Sequence[Condition], new: Sequence[Condition]) -> bool:
    # Timestamps are ignored so repeated marks do not rewrite the file
    by_type = {c.type: c for c in old}
    for condition in new:
        previous = by_type.get(condition.type)
        if previous is None:
            return True
        if (previous.status, previous.reason, previous.message) != (
            condition.status,
            condition.reason,
            condition.message,
        ):
            return True
    return False


def _merge_properties(current: list[Property], updates: Sequence[Property]) -> tuple[list[Property], bool]:
    if not current:
        return [p.model_copy() for p in updates], True

    merged = [p.model_copy() for p in current]
    index = {p.name: i for i, p in enumerate(merged)}
    modified = False
    for prop in updates:
        i = index.get(prop.name)
        if i is None:
            index[prop.name] = len(merged)
            merged.append(prop.model_copy())
            modified = True
        elif merged[i].value != prop.value:
            merged[i] = prop.model_copy()
            modified = True
    return merged, modified


class StatusTracker:
    """Persists conditions, the resource ledger and the cluster summary.

    The tracker keeps the last snapshot it wrote (or the document it was
    created from) and compares every update against it. The caller's
    environment object is never modified.
    """

    def __init__(self, environment: Environment, cache_file: Path) -> None:
        self._snapshot = environment.model_copy(deep=True)
        self._cache_file = cache_file
        self._lock = threading.Lock()

    @property
    def cache_file(self) -> Path:
        return self._cache_file

    @property
    def snapshot(self) -> Environment:
        with self._lock:
            return self._snapshot.model_copy(deep=True)

    def update(
        self,
        conditions: list[Condition],
        properties: Sequence[Property],
        cluster: ClusterStatus | None = None,
    ) -> bool:
        """Merge and persist. Returns True if the cache file was written.

        Raises:
            CacheError: If the document could not be written.
        """
        with self._lock:
            candidate = self._snapshot.model_copy(deep=True)
            modified = _conditions_changed(candidate.status.conditions, conditions)
            candidate.status.conditions = conditions

            merged, props_modified = _merge_properties(candidate.status.properties, properties)
            candidate.status.properties = merged
            modified = modified or props_modified

            if cluster is not None and cluster != candidate.status.cluster:
                candidate.status.cluster = cluster.model_copy(deep=True)
                modified = True

            if not modified:
                return False

            try:
                write_environment(candidate, self._cache_file)
            except CacheError as e:
                logger.error(f"Failed to update cache file {self._cache_file}: {e}")
                raise
            self._snapshot = candidate
            return True

    def progressing(
        self,
        properties: Sequence[Property],
        reason: str,
        message: str,
        cluster: ClusterStatus | None = None,
    ) -> bool:
        return self.update(build_conditions(ConditionType.PROGRESSING, reason, message), properties, cluster)

    def degraded(
        self,
        properties: Sequence[Property],
        reason: str,
        message: str,
        cluster: ClusterStatus | None = None,
    ) -> bool:
        return self.update(build_conditions(ConditionType.DEGRADED, reason, message), properties, cluster)

    def available(self, properties: Sequence[Property], cluster: ClusterStatus | None = None) -> bool:
        return self.update(build_conditions(ConditionType.AVAILABLE), properties, cluster)

    def terminated(self, properties: Sequence[Property]) -> bool:
        return self.update(
            build_conditions(ConditionType.TERMINATED, Reason.TERMINATED, TERMINATED_MESSAGE),
            properties,
        )
