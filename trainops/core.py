"""Core decisions about a job's pods and services."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from trainops.labels import replica_index
from trainops.models import (
    EVENT_TYPE_WARNING,
    REPLICA_TYPE_LABEL,
    REPLICA_TYPE_LABEL_DEPRECATED,
    ConditionStatus,
    ContainerStatus,
    Pod,
    PodPhase,
    PodTemplateSpec,
    ReplicaSpec,
    RestartPolicy,
    RunPolicy,
    Service,
    JobStatus,
)

_log = logging.getLogger(__name__)

_T = TypeVar("_T", Pod, Service)

_COUNTED_RESTART_POLICIES = (
    RestartPolicy.ON_FAILURE,
    RestartPolicy.ALWAYS,
    RestartPolicy.EXIT_CODE,
)


def record_abnormal_pods(active_pods: Iterable[Pod], obj: Any, recorder: Any) -> None:
    """Record a warning event for every active pod that is not healthy."""
    for pod in active_pods:

        def record_container(status: ContainerStatus) -> None:
            terminated = status.terminated
            if terminated is not None and terminated.exit_code != 0:
                recorder.event(
                    obj,
                    EVENT_TYPE_WARNING,
                    terminated.reason,
                    f"Error pod {pod.name} container {status.name} exitCode: "
                    f"{terminated.exit_code} terminated message: {terminated.message}",
                )
            waiting = status.waiting
            if waiting is not None and waiting.message:
                recorder.event(
                    obj,
                    EVENT_TYPE_WARNING,
                    waiting.reason,
                    f"Error pod {pod.name} container {status.name} "
                    f"waiting message: {waiting.message}",
                )

        if pod.status.container_statuses:
            for status in pod.status.container_statuses:
                record_container(status)
            continue
        if pod.status.init_container_statuses:
            for status in pod.status.init_container_statuses:
                record_container(status)
            continue
        if not pod.status.conditions:
            continue
        latest = max(
            pod.status.conditions,
            key=lambda c: c.last_transition_time
            or datetime.min.replace(tzinfo=timezone.utc),
        )
        if latest.status == ConditionStatus.TRUE:
            continue
        recorder.event(
            obj,
            EVENT_TYPE_WARNING,
            latest.reason,
            f"Error pod {pod.name} condition message: {latest.message}",
        )


def past_active_deadline(run_policy: RunPolicy, job_status: JobStatus) -> bool:
    """True if the job has an active deadline and has run at least that long."""
    if run_policy.active_deadline_seconds is None or job_status.start_time is None:
        return False
    start = job_status.start_time
    now = datetime.now(start.tzinfo)
    return now - start >= timedelta(seconds=run_policy.active_deadline_seconds)


def past_backoff_limit(
    job_name: str,
    run_policy: RunPolicy,
    replicas: Mapping[str, ReplicaSpec],
    pods: Sequence[Pod],
    pod_filter: Callable[[Sequence[Pod], str], list[Pod]],
) -> bool:
    """True if the restarts of running pods reach the backoff limit.

    Only replicas restarting OnFailure, Always or ExitCode are counted.
    """
    if run_policy.backoff_limit is None:
        return False
    restarts = 0
    for rtype, spec in replicas.items():
        if spec.restart_policy not in _COUNTED_RESTART_POLICIES:
            _log.warning(
                "The restart policy of replica %s of the job %s is not OnFailure, Always "
                "or ExitCode. Not counted in backoff limit.",
                rtype,
                job_name,
            )
            continue
        for pod in pod_filter(pods, rtype.lower()):
            if pod.status.phase != PodPhase.RUNNING:
                continue
            restarts += sum(s.restart_count for s in pod.status.init_container_statuses)
            restarts += sum(s.restart_count for s in pod.status.container_statuses)
    if run_policy.backoff_limit == 0:
        return restarts > 0
    return restarts >= run_policy.backoff_limit


def _matches_replica_type(labels: Mapping[str, str], replica_type: str) -> bool:
    return any(
        key in labels and labels[key] == replica_type
        for key in (REPLICA_TYPE_LABEL, REPLICA_TYPE_LABEL_DEPRECATED)
    )


def _filter_for_replica_type(objects: Iterable[_T], replica_type: str) -> list[_T]:
    return [obj for obj in objects if _matches_replica_type(obj.labels, replica_type)]


def _slice_size(objects: Iterable[_T], replicas: int) -> int:
    size = 0
    for obj in objects:
        try:
            size = max(size, replica_index(obj.labels))
        except ValueError:
            continue
    return max(size + 1, replicas)


def _slices(objects: Sequence[_T], replicas: int, logger: Any, what: str) -> list[list[_T]]:
    slices: list[list[_T]] = [[] for _ in range(_slice_size(objects, replicas))]
    for obj in objects:
        try:
            index = replica_index(obj.labels)
        except ValueError as err:
            logger.warning(
                "Error obtaining replica index from %s %s/%s: %s",
                what, obj.namespace, obj.name, err,
            )
            continue
        if index < 0 or index >= replicas:
            logger.warning(
                "The label index is not expected: %d, %s: %s/%s",
                index, what, obj.namespace, obj.name,
            )
        if index < 0:
            raise IndexError(f"negative replica index {index} on {what} {obj.namespace}/{obj.name}")
        slices[index].append(obj)
    return slices


def filter_pods_for_replica_type(pods: Iterable[Pod], replica_type: str) -> list[Pod]:
    """Return the pods labelled with replica_type."""
    return _filter_for_replica_type(pods, replica_type)


def get_pod_slices(pods: Sequence[Pod], replicas: int, logger: Any) -> list[list[Pod]]:
    """Group pods by replica index; slot i holds the pods of replica i."""
    return _slices(pods, replicas, logger, "pod")


def calculate_pod_slice_size(pods: Iterable[Pod], replicas: int) -> int:
    """The larger of the highest pod index plus one and the desired replicas."""
    return _slice_size(pods, replicas)


def set_restart_policy(pod_template: PodTemplateSpec, spec: ReplicaSpec) -> None:
    """Copy the replica restart policy to the pod template; ExitCode becomes Never."""
    if spec.restart_policy == RestartPolicy.EXIT_CODE:
        pod_template.spec.restart_policy = RestartPolicy.NEVER
    else:
        pod_template.spec.restart_policy = spec.restart_policy


def filter_services_for_replica_type(
    services: Iterable[Service], replica_type: str
) -> list[Service]:
    """Return the services labelled with replica_type."""
    return _filter_for_replica_type(services, replica_type)


def get_service_slices(
    services: Sequence[Service], replicas: int, logger: Any
) -> list[list[Service]]:
    """Group services by replica index; slot i holds the services of replica i."""
    return _slices(services, replicas, logger, "service")


def calculate_service_slice_size(services: Iterable[Service], replicas: int) -> int:
    """The larger of the highest service index plus one and the desired replicas."""
    return _slice_size(services, replicas)


def get_ports_from_job(spec: ReplicaSpec, default_container_name: str) -> dict[str, int] | None:
    """Ports of the default container, None if it has none.

    Raises ValueError if there is no container of that name.
    """
    for container in spec.template.spec.containers:
        if container.name == default_container_name:
            if not container.ports:
                return None
            return {port.name: port.container_port for port in container.ports}
    raise ValueError("failed to find the port")