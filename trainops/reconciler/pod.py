"""Reconciling the pods of a training job."""

from __future__ import annotations

import copy
import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from trainops import core
from trainops.logger import logger_for_replica
from trainops.models import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    JOB_ROLE_LABEL,
    REPLICA_INDEX_LABEL,
    REPLICA_TYPE_LABEL,
    JobStatus,
    ObjectMeta,
    Pod,
    PodPhase,
    PodTemplateSpec,
    ReplicaSpec,
    RestartPolicy,
    ServerTimeoutError,
    initialize_replica_statuses,
    set_controller_reference,
    update_job_replica_statuses,
)
from trainops.train import is_retryable_exit_code
from trainops.util import gen_general_name

DEFAULT_CONTAINER_NAME = "kubeflow"

CREATED_PODS_METRIC = "reconciler_created_pods_total"
DELETED_PODS_METRIC = "reconciler_deleted_pods_total"
FAILED_PODS_METRIC = "reconciler_failed_pods_total"

# Totals of reconciler actions, keyed by metric name.
METRICS: Counter[str] = Counter()

_UNKNOWN_EXIT_CODE = 0xBEEF


def _replica_count(spec: ReplicaSpec) -> int:
    if spec.replicas is None:
        raise ValueError("replica spec has no replica count")
    return spec.replicas


class PodReconciler:
    """Creates, deletes and counts the pods of each replica of a job."""

    def __init__(
        self,
        client: Any,
        util: Any = None,
        gang: Any = None,
        job_interface: Any = None,
    ) -> None:
        self.client = client
        self.util = util
        self.gang = gang
        self.job_interface = job_interface

    def override_for_pod_interface(self, ui: Any, gi: Any, ji: Any) -> None:
        if ui is not None:
            self.util = ui
        if ji is not None:
            self.job_interface = ji
        if gi is not None:
            self.gang = gi

    def _jobs(self) -> Any:
        if self.job_interface is None:
            raise RuntimeError("pod reconciler has no job interface")
        return self.job_interface

    def _gen_labels(self, job_name: str) -> dict[str, str]:
        return self._jobs().gen_labels(job_name)

    def _recorder(self) -> Any:
        if self.util is None:
            raise RuntimeError("pod reconciler has no utility interface")
        return self.util.get_recorder()

    def _gang_enabled(self) -> bool:
        return self.gang is not None and self.gang.gang_scheduling_enabled()

    def gen_pod_name(self, job_name: str, rtype: str, index: str) -> str:
        return gen_general_name(job_name, rtype, index)

    def get_default_container_name(self) -> str:
        return DEFAULT_CONTAINER_NAME

    def get_pods_for_job(self, job: Any) -> list[Pod]:
        """All pods that carry the job's labels."""
        return self.client.list(Pod.kind, self._gen_labels(job.metadata.name))

    def get_pod_slices(self, pods: Sequence[Pod], replicas: int, logger: Any) -> list[list[Pod]]:
        return core.get_pod_slices(pods, replicas, logger)

    def filter_pods_for_replica_type(self, pods: Sequence[Pod], replica_type: str) -> list[Pod]:
        return core.filter_pods_for_replica_type(pods, replica_type)

    def reconcile_pods(
        self,
        job: Any,
        job_status: JobStatus,
        pods: Sequence[Pod],
        rtype: str,
        spec: ReplicaSpec,
        replicas: Mapping[str, ReplicaSpec],
    ) -> None:
        """Create missing pods, delete surplus or retryable ones and count the rest."""
        rt = rtype.lower()
        logger = logger_for_replica(job, rt)
        pods = self.filter_pods_for_replica_type(pods, rt)
        num_replicas = _replica_count(spec)

        initialize_replica_statuses(job_status, rtype)

        for index, pod_slice in enumerate(self.get_pod_slices(pods, num_replicas, logger)):
            if len(pod_slice) > 1:
                logger.warning("We have too many pods for %s %d", rt, index)
                continue
            if not pod_slice:
                logger.info("Need to create new pod: %s-%d", rt, index)
                master_role = self._jobs().is_master_role(replicas, rt, index)
                self.create_new_pod(job, rt, str(index), spec, master_role, replicas)
                continue

            pod = pod_slice[0]
            if index >= num_replicas:
                self.delete_pod(pod.namespace, pod.name)

            exit_code = _UNKNOWN_EXIT_CODE
            for status in pod.status.container_statuses:
                if status.name == self.get_default_container_name() and status.terminated:
                    exit_code = status.terminated.exit_code
                    message = f"Pod: {pod.namespace}.{pod.name} exited with code {exit_code}"
                    logger.info(message)
                    self._recorder().event(job, EVENT_TYPE_NORMAL, "ExitedWithCode", message)

            if (
                spec.restart_policy == RestartPolicy.EXIT_CODE
                and pod.status.phase == PodPhase.FAILED
                and is_retryable_exit_code(exit_code)
            ):
                METRICS[FAILED_PODS_METRIC] += 1
                logger.info("Need to restart the pod: %s.%s", pod.namespace, pod.name)
                self.delete_pod(pod.namespace, pod.name)

            update_job_replica_statuses(job_status, rtype, pod)

    def create_new_pod(
        self,
        job: Any,
        rt: str,
        index: str,
        spec: ReplicaSpec,
        master_role: bool,
        replicas: Mapping[str, ReplicaSpec],
    ) -> None:
        """Build a pod for replica rt/index from the spec's template and submit it."""
        logger = logger_for_replica(job, rt)

        pod_labels = self._gen_labels(job.metadata.name)
        pod_labels[REPLICA_TYPE_LABEL] = rt
        pod_labels[REPLICA_INDEX_LABEL] = index
        if master_role:
            pod_labels[JOB_ROLE_LABEL] = "master"

        template: PodTemplateSpec = copy.deepcopy(spec.template)
        template.metadata.name = self.gen_pod_name(job.metadata.name, rt, index)
        template.metadata.namespace = job.metadata.namespace
        if template.metadata.labels is None:
            template.metadata.labels = {}
        template.metadata.labels.update(pod_labels)

        if template.spec.restart_policy:
            msg = "Restart policy in pod template will be overwritten by restart policy in replica spec"
            logger.warning(msg)
            self._recorder().event(job, EVENT_TYPE_WARNING, "SettedPodTemplateRestartPolicy", msg)
        core.set_restart_policy(template, spec)

        if self._gang_enabled():
            self.gang.decorate_pod_for_gang_scheduling(rt, template, job)

        template = self.decorate_pod(rt, template, job)

        pod = Pod(metadata=template.metadata, spec=template.spec)
        set_controller_reference(job, pod)

        try:
            self.client.create(pod)
        except ServerTimeoutError:
            return
        METRICS[CREATED_PODS_METRIC] += 1

    def delete_pod(self, namespace: str, name: str) -> None:
        """Delete the named pod; raises NotFoundError if it does not exist."""
        self.client.delete(Pod(metadata=ObjectMeta(name=name, namespace=namespace)))
        METRICS[DELETED_PODS_METRIC] += 1

    def decorate_pod(
        self, rtype: str, pod_template: PodTemplateSpec, job: Any
    ) -> PodTemplateSpec:
        """Hook to adjust a pod template before submission; returns the template to use.

        The default keeps the template as it is.
        """
        return pod_template


def bare_pod_reconciler(client: Any) -> PodReconciler:
    return PodReconciler(client)