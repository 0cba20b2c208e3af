"""Reading and writing the replica labels on pods and services."""

from __future__ import annotations

import re

from trainops.models import (
    GROUP_NAME_LABEL_DEPRECATED,
    JOB_ROLE_LABEL,
    JOB_ROLE_LABEL_DEPRECATED,
    OPERATOR_NAME_LABEL,
    REPLICA_INDEX_LABEL,
    REPLICA_INDEX_LABEL_DEPRECATED,
    REPLICA_TYPE_LABEL,
    REPLICA_TYPE_LABEL_DEPRECATED,
)

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _lookup(labels: dict[str, str], key: str, deprecated_key: str, what: str) -> str:
    if key in labels:
        return labels[key]
    if deprecated_key in labels:
        return labels[deprecated_key]
    raise ValueError(f"{what} label not found")


def replica_index(labels: dict[str, str]) -> int:
    """Return the replica index; raise ValueError if absent or not an integer."""
    value = _lookup(labels, REPLICA_INDEX_LABEL, REPLICA_INDEX_LABEL_DEPRECATED, "replica index")
    if not _INTEGER.fullmatch(value):
        raise ValueError(f"invalid replica index {value!r}")
    return int(value)


def set_replica_index(labels: dict[str, str], idx: int) -> None:
    set_replica_index_str(labels, str(idx))


def set_replica_index_str(labels: dict[str, str], idx: str) -> None:
    labels[REPLICA_INDEX_LABEL] = idx
    labels[REPLICA_INDEX_LABEL_DEPRECATED] = idx


def replica_type(labels: dict[str, str]) -> str:
    """Return the replica type; raise ValueError if absent."""
    return _lookup(labels, REPLICA_TYPE_LABEL, REPLICA_TYPE_LABEL_DEPRECATED, "replica type")


def set_replica_type(labels: dict[str, str], rt: str) -> None:
    labels[REPLICA_TYPE_LABEL] = rt
    labels[REPLICA_TYPE_LABEL_DEPRECATED] = rt


def has_known_labels(labels: dict[str, str], group_name: str) -> bool:
    return OPERATOR_NAME_LABEL in labels or labels.get(GROUP_NAME_LABEL_DEPRECATED, "") == group_name


def set_job_role(labels: dict[str, str], role: str) -> None:
    labels[JOB_ROLE_LABEL] = role
    labels[JOB_ROLE_LABEL_DEPRECATED] = role