"""Helpers over pods, replicas and API errors."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from trainops.models import (
    AlreadyExistsError,
    NotFoundError,
    Pod,
    PodPhase,
    ReplicaSpec,
    ReplicaStatus,
)

RECOMMENDED_CONFIG_PATH_ENV_VAR = "KUBECONFIG"
DELETE_PROPAGATION_FOREGROUND = "Foreground"

_log = logging.getLogger(__name__)


@dataclass
class DeleteOptions:
    grace_period_seconds: int | None = None
    propagation_policy: str | None = None


def is_resource_already_exists_error(err: BaseException | None) -> bool:
    return isinstance(err, AlreadyExistsError)


def is_resource_not_found_error(err: BaseException | None) -> bool:
    return isinstance(err, NotFoundError)


def cascade_delete_options(grace_period_seconds: int) -> DeleteOptions:
    """Options that delete a workload in the foreground after the grace period."""
    return DeleteOptions(
        grace_period_seconds=grace_period_seconds,
        propagation_policy=DELETE_PROPAGATION_FOREGROUND,
    )


def is_pod_active(pod: Pod) -> bool:
    """A pod is active until it has finished or is being deleted."""
    return (
        pod.status.phase not in (PodPhase.SUCCEEDED, PodPhase.FAILED)
        and pod.metadata.deletion_timestamp is None
    )


def filter_active_pods(pods: Iterable[Pod]) -> list[Pod]:
    """Return the pods that have not terminated."""
    active = []
    for pod in pods:
        if is_pod_active(pod):
            active.append(pod)
        else:
            _log.info(
                "Ignoring inactive pod %s/%s in state %s, deletion time %s",
                pod.namespace,
                pod.name,
                pod.status.phase,
                pod.metadata.deletion_timestamp,
            )
    return active


def filter_pod_count(pods: Iterable[Pod], phase: PodPhase) -> int:
    """Count the pods in the given phase."""
    return sum(1 for pod in pods if pod.status.phase == phase)


def get_total_replicas(replicas: Mapping[str, ReplicaSpec]) -> int:
    """Sum of replicas over all specs; an unset count stands for one."""
    return sum(1 if spec.replicas is None else spec.replicas for spec in replicas.values())


def get_total_failed_replicas(replica_statuses: Mapping[str, ReplicaStatus] | None) -> int:
    if not replica_statuses:
        return 0
    return sum(status.failed for status in replica_statuses.values())