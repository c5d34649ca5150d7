"""Aggregation of telemetry events into the rows of the profile view."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ViewState(Enum):
    """The table being shown; the value is the operation it lists."""

    PROCESS = "Process"
    FILE = "File"
    NETWORK = "Network"

    def next(self):
        """Return the view that the tab key switches to."""
        members = list(type(self))
        return members[(members.index(self) + 1) % len(members)]


@dataclass(frozen=True)
class ProfileRow:
    """One aggregated line of the profile table."""

    namespace: str
    pod_name: str
    process: str
    resource: str
    result: str
    count: int
    timestamp: str


def _get(entry, key):
    value = entry.get(key, "")
    return "" if value is None else str(value)


def generate_rows(logs, operation, namespace="", pod=""):
    """Count identical events of one operation, keeping each one's latest time.

    Log entries are mappings with ``operation``, ``namespaceName``, ``podName``,
    ``processName``, ``resource``, ``result`` and ``updatedTime``. An entry is
    kept when its namespace equals namespace, its pod equals pod, or when no
    namespace and no pod filter is given. Rows come in first-seen order.
    """
    operation = getattr(operation, "value", operation)
    counts: dict[tuple, list] = {}
    for entry in logs:
        if _get(entry, "operation") != operation:
            continue
        if not (
            _get(entry, "namespaceName") == namespace
            or _get(entry, "podName") == pod
            or (not namespace and not pod)
        ):
            continue
        key = (
            _get(entry, "namespaceName"),
            _get(entry, "podName"),
            _get(entry, "processName"),
            _get(entry, "resource"),
            _get(entry, "result"),
        )
        slot = counts.setdefault(key, [0, ""])
        slot[0] += 1
        slot[1] = _get(entry, "updatedTime")
    return [
        ProfileRow(*key, count=count, timestamp=timestamp)
        for key, (count, timestamp) in counts.items()
    ]


def sort_rows(rows):
    """Order rows by count, resource, process, pod and namespace, all descending."""
    return sorted(
        rows,
        key=lambda row: (row.count, row.resource, row.process, row.pod_name, row.namespace),
        reverse=True,
    )