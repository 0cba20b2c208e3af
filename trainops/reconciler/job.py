"""Reconciling a generic training job: cleanup, limits, replicas and status."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from trainops import core
from trainops.counter import Counter
from trainops.k8sutil import (
    filter_active_pods,
    filter_pod_count,
    get_total_failed_replicas,
    get_total_replicas,
)
from trainops.logger import logger_for_job
from trainops.models import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    GROUP_NAME_LABEL_DEPRECATED,
    JOB_NAME_LABEL,
    JOB_NAME_LABEL_DEPRECATED,
    OPERATOR_NAME_LABEL,
    ApiError,
    CleanPodPolicy,
    Job,
    JobConditionType,
    JobStatus,
    NotFoundError,
    Pod,
    PodPhase,
    ReplicaSpec,
    RestartPolicy,
    RunPolicy,
    Service,
    initialize_replica_statuses,
)
from trainops.status import (
    JOB_FAILED_REASON,
    JOB_RESTARTING_REASON,
    JOB_RUNNING_REASON,
    JOB_SUCCEEDED_REASON,
    is_failed,
    is_succeeded,
    update_job_conditions,
)

GROUP_NAME = "kubeflow.org"
JOB_KIND = Job().kind

REASON_KEY = "reason"
REASON_JOB_DELETED = "job deleted"

MSG_RECONCILE_CANCELLED = "Reconcile Cancelled"
MSG_RECONCILE_START = "Reconcile Starts"
MSG_GET_PODS_FAILED = "Get Pods Failed"
MSG_GET_SERVICES_FAILED = "Get Services Failed"

MSG_BACKOFF_LIMIT_REACHED_TEMPLATE = (
    "Job {} has failed because it has reached the specified backoff limit"
)
MSG_ACTIVE_DEADLINE_REACHED_TEMPLATE = (
    "Job {} has failed because it was active longer than specified deadline"
)

ERR_UPDATE_JOB_CONDITIONS_FAILED = "failed to update job conditions"
ERR_GET_REPLICAS_STATUS_FROM_STATUS_FAILED_TEMPLATE = (
    "failed to get ReplicasStatus for {} from status"
)
WARN_DEFAULT_IMPLEMENTATION_TEMPLATE = (
    "Warning: executing default implementation for JobReconciler.%s"
)

_MASTER_REPLICA_TYPE = "master"

_log = logging.getLogger(__name__)


class JobReconciler:
    """Drives a job towards its spec through the pod, service and gang reconcilers."""

    def __init__(
        self,
        client: Any,
        util: Any = None,
        pod_interface: Any = None,
        service_interface: Any = None,
        gang: Any = None,
    ) -> None:
        self.client = client
        self.util = util
        self.pod_interface = pod_interface
        self.service_interface = service_interface
        self.gang = gang
        self.counter = Counter()

    def override_for_job_interface(self, ui: Any, pi: Any, si: Any, gi: Any) -> None:
        if ui is not None:
            self.util = ui
        if pi is not None:
            self.pod_interface = pi
        if si is not None:
            self.service_interface = si
        if gi is not None:
            self.gang = gi

    def _util(self) -> Any:
        if self.util is None:
            raise RuntimeError("job reconciler has no utility interface")
        return self.util

    def _pods(self) -> Any:
        if self.pod_interface is None:
            raise RuntimeError("job reconciler has no pod interface")
        return self.pod_interface

    def _services(self) -> Any:
        if self.service_interface is None:
            raise RuntimeError("job reconciler has no service interface")
        return self.service_interface

    def _gang_enabled(self) -> bool:
        return self.gang is not None and self.gang.gang_scheduling_enabled()

    def gen_labels(self, job_name: str) -> dict[str, str]:
        """Labels shared by every pod and service of the job."""
        job_name = job_name.replace("/", "-")
        return {
            OPERATOR_NAME_LABEL: self._util().get_reconciler_name(),
            GROUP_NAME_LABEL_DEPRECATED: self.get_group_name_label_value(),
            JOB_NAME_LABEL: job_name,
            JOB_NAME_LABEL_DEPRECATED: job_name,
        }

    def get_group_name_label_value(self) -> str:
        return GROUP_NAME

    def reconcile_job(
        self,
        job: Any,
        replicas: Mapping[str, ReplicaSpec],
        status: JobStatus,
        run_policy: RunPolicy,
    ) -> None:
        """Run one reconciliation of job; status is updated in place and pushed if changed."""
        logger = self._util().get_logger(job)
        logger.info(MSG_RECONCILE_START)

        old_status = copy.deepcopy(status)

        if self.should_clean_up(status):
            self.cleanup_resources(run_policy, status, job)
            self.cleanup_job(run_policy, status, job)
            if self.is_job_succeeded(status):
                self.set_status_for_success_job(status)
            if old_status != status:
                self.update_job_status_in_api_server(job)
            return

        try:
            pods = self._pods().get_pods_for_job(job)
        except Exception:
            logger.info(MSG_GET_PODS_FAILED)
            raise

        try:
            services = self._services().get_services_for_job(job)
        except Exception:
            logger.info(MSG_GET_SERVICES_FAILED)
            raise

        try:
            previous_retry = self.counter.counts(
                f"{job.metadata.namespace}/{job.metadata.name}"
            )
        except (KeyError, ValueError):
            previous_retry = 0

        active_pods = filter_active_pods(pods)
        self.record_abnormal_pods(active_pods, job)

        active = len(active_pods)
        failed = filter_pod_count(pods, PodPhase.FAILED)
        total_replicas = get_total_replicas(replicas)
        prev_replicas_failed = get_total_failed_replicas(status.replica_statuses)

        failure_message = ""
        job_exceeds_limit = False
        exceeds_backoff_limit = False
        past_backoff = False

        if run_policy.backoff_limit is not None:
            job_has_new_failure = failed > prev_replicas_failed
            exceeds_backoff_limit = (
                job_has_new_failure
                and active != total_replicas
                and previous_retry + 1 > run_policy.backoff_limit
            )
            past_backoff = self.past_backoff_limit(job.metadata.name, run_policy, replicas, pods)

        if exceeds_backoff_limit or past_backoff:
            job_exceeds_limit = True
            failure_message = MSG_BACKOFF_LIMIT_REACHED_TEMPLATE.format(job.metadata.name)
        elif self.past_active_deadline(run_policy, status):
            job_exceeds_limit = True
            failure_message = MSG_ACTIVE_DEADLINE_REACHED_TEMPLATE.format(job.metadata.name)

        if job_exceeds_limit:
            if status.completion_time is None:
                status.completion_time = datetime.now(timezone.utc)
            self.cleanup_resources(run_policy, status, job)
            self.cleanup_job(run_policy, status, job)
            if self.is_job_succeeded(status):
                self.set_status_for_success_job(status)
            self._util().get_recorder().event(
                job, EVENT_TYPE_NORMAL, JOB_FAILED_REASON, failure_message
            )
            update_job_conditions(
                status, JobConditionType.FAILED, JOB_FAILED_REASON, failure_message
            )
            self.update_job_status_in_api_server(job)
            return

        if self._gang_enabled():
            try:
                self.gang.reconcile_pod_group(job, run_policy, replicas)
            except Exception as err:
                _log.warning("ReconcilePodGroups error %s", err)
                raise

        for rtype, spec in replicas.items():
            initialize_replica_statuses(status, rtype)
            try:
                self._pods().reconcile_pods(job, status, pods, rtype, spec, replicas)
            except Exception as err:
                _log.warning("ReconcilePods error %s", err)
                raise
            try:
                self._services().reconcile_services(job, services, rtype, spec)
            except Exception as err:
                _log.warning("ReconcileServices error %s", err)
                raise

        try:
            self.update_job_status(job, replicas, status)
        except Exception as err:
            _log.warning("UpdateJobStatus error %s", err)
            raise

        if old_status != status:
            self.update_job_status_in_api_server(job)

    def delete_job(self, job: Any) -> None:
        """Delete the job itself; raises NotFoundError if it is gone already."""
        self.client.delete(job)

    def record_abnormal_pods(self, active_pods: Sequence[Pod], obj: Any) -> None:
        core.record_abnormal_pods(active_pods, obj, self._util().get_recorder())

    def set_status_for_success_job(self, status: JobStatus) -> None:
        """Count every still active replica as succeeded."""
        for replica_status in (status.replica_statuses or {}).values():
            replica_status.succeeded += replica_status.active
            replica_status.active = 0

    def update_job_status(
        self, job: Any, replicas: Mapping[str, ReplicaSpec], job_status: JobStatus
    ) -> None:
        """Derive the job conditions from the replica statuses, locally only."""
        _log.warning(WARN_DEFAULT_IMPLEMENTATION_TEMPLATE, "UpdateJobStatus")

        job_kind = job.kind
        job_key = f"{job.metadata.namespace}/{job.metadata.name}"
        logger = self._util().get_logger(job)
        recorder = self._util().get_recorder()

        for rtype, spec in replicas.items():
            status = (job_status.replica_statuses or {}).get(rtype)
            if status is None:
                raise KeyError(ERR_GET_REPLICAS_STATUS_FROM_STATUS_FAILED_TEMPLATE.format(rtype))
            if spec.replicas is None:
                raise ValueError("replica spec has no replica count")

            succeeded = status.succeeded
            expected = spec.replicas - succeeded
            running = status.active
            failed = status.failed

            _log.info(
                "%s=%s, ReplicaType=%s expected=%d, running=%d, succeeded=%d , failed=%d",
                job_kind, job_key, rtype, expected, running, succeeded, failed,
            )

            if self.is_flag_replica_type_for_job_status(rtype):
                if running > 0:
                    update_job_conditions(
                        job_status,
                        JobConditionType.RUNNING,
                        JOB_RUNNING_REASON,
                        f"{job_kind} {job_key} is running.",
                    )
                if expected == 0:
                    msg = f"{job_kind} {job_key} is successfully completed."
                    _log.info(msg)
                    recorder.event(job, EVENT_TYPE_NORMAL, JOB_SUCCEEDED_REASON, msg)
                    if job_status.completion_time is None:
                        job_status.completion_time = datetime.now(timezone.utc)
                    update_job_conditions(
                        job_status, JobConditionType.SUCCEEDED, JOB_SUCCEEDED_REASON, msg
                    )
                    return

            if failed > 0:
                if spec.restart_policy == RestartPolicy.EXIT_CODE:
                    msg = (
                        f"{job_kind} {job_key} is restarting because {failed} "
                        f"{rtype} replica(s) failed."
                    )
                    recorder.event(job, EVENT_TYPE_WARNING, JOB_RESTARTING_REASON, msg)
                    update_job_conditions(
                        job_status, JobConditionType.RESTARTING, JOB_RESTARTING_REASON, msg
                    )
                else:
                    msg = (
                        f"{job_kind} {job_key} is failed because {failed} "
                        f"{rtype} replica(s) failed."
                    )
                    if job_status.completion_time is None:
                        job_status.completion_time = datetime.now(timezone.utc)
                    update_job_conditions(
                        job_status, JobConditionType.FAILED, JOB_FAILED_REASON, msg
                    )

        msg = f"{job_kind} {job_key} is running."
        logger.info(msg)
        update_job_conditions(job_status, JobConditionType.RUNNING, JOB_RUNNING_REASON, msg)

    def update_job_status_in_api_server(self, job: Any) -> None:
        self.client.update_status(job)

    def cleanup_resources(self, run_policy: RunPolicy, status: JobStatus, job: Any) -> None:
        """Delete the job's pod group, pods and their services as the clean policy says."""
        if run_policy.clean_pod_policy is None:
            raise ValueError("run policy has no clean pod policy")
        if run_policy.clean_pod_policy == CleanPodPolicy.NONE:
            return
        clean_running = run_policy.clean_pod_policy == CleanPodPolicy.RUNNING

        if self.gang is not None:
            self.gang.delete_pod_group(job)

        for pod in self._pods().get_pods_for_job(job):
            if clean_running and pod.status.phase not in (PodPhase.RUNNING, PodPhase.PENDING):
                continue
            self.client.delete(pod)
            try:
                svc = self.client.get(Service.kind, pod.namespace, pod.name)
            except NotFoundError:
                continue
            self.client.delete(svc)

    def cleanup_job(self, run_policy: RunPolicy, status: JobStatus, job: Any) -> None:
        """Delete the job once its time to live after completion has passed."""
        ttl = run_policy.ttl_seconds_after_finished
        if ttl is None:
            return
        finish_time = status.completion_time
        if finish_time is None:
            raise ValueError("job has no completion time")
        current_time = datetime.now(finish_time.tzinfo)
        expire_time = finish_time + timedelta(seconds=ttl)

        if current_time > expire_time:
            try:
                self.delete_job(job)
            except ApiError as err:
                logger_for_job(job).warning("Cleanup Job error: %s.", err)
                raise
        elif finish_time > current_time:
            logger_for_job(job).warning(
                "Found Job finished in the future. This is likely due to time skew in the "
                "cluster. Job cleanup will be deferred."
            )

    def is_flag_replica_type_for_job_status(self, rtype: str) -> bool:
        """Every named replica type decides the status of a generic job."""
        _log.warning(WARN_DEFAULT_IMPLEMENTATION_TEMPLATE, "IsFlagReplicaTypeForJobStatus")
        return bool(rtype)

    def is_job_succeeded(self, status: JobStatus) -> bool:
        return is_succeeded(status)

    def is_job_failed(self, status: JobStatus) -> bool:
        return is_failed(status)

    def should_clean_up(self, status: JobStatus) -> bool:
        return self.is_job_succeeded(status) or self.is_job_failed(status)

    def past_backoff_limit(
        self,
        job_name: str,
        run_policy: RunPolicy,
        replicas: Mapping[str, ReplicaSpec],
        pods: Sequence[Pod],
    ) -> bool:
        return core.past_backoff_limit(
            job_name, run_policy, replicas, pods, self._pods().filter_pods_for_replica_type
        )

    def past_active_deadline(self, run_policy: RunPolicy, job_status: JobStatus) -> bool:
        return core.past_active_deadline(run_policy, job_status)

    def get_job(self, namespace: str, name: str) -> Job:
        """Fetch a generic job from the store; raises NotFoundError if absent."""
        return self.client.get(JOB_KIND, namespace, name)

    def extract_replicas_spec(self, job: Job) -> dict[str, ReplicaSpec]:
        return job.replica_specs

    def extract_run_policy(self, job: Job) -> RunPolicy:
        return job.run_policy

    def extract_job_status(self, job: Job) -> JobStatus:
        return job.status

    def is_master_role(
        self, replicas: Mapping[str, ReplicaSpec], rtype: str, index: int
    ) -> bool:
        """The first replica of a master replica type holds the master role."""
        return rtype.lower() == _MASTER_REPLICA_TYPE and index == 0


def bare_job_reconciler(client: Any) -> JobReconciler:
    return JobReconciler(client)