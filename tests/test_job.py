from datetime import datetime, timedelta, timezone

import pytest

from trainops.models import (
    EVENT_TYPE_NORMAL,
    GROUP_NAME_LABEL_DEPRECATED,
    JOB_NAME_LABEL,
    JOB_NAME_LABEL_DEPRECATED,
    OPERATOR_NAME_LABEL,
    REPLICA_INDEX_LABEL,
    REPLICA_TYPE_LABEL,
    CleanPodPolicy,
    ConditionStatus,
    Container,
    ContainerPort,
    ContainerStatus,
    Job,
    JobConditionType,
    JobStatus,
    NotFoundError,
    ObjectMeta,
    Pod,
    PodPhase,
    PodSpec,
    PodStatus,
    PodTemplateSpec,
    RecordingEventRecorder,
    ReplicaSpec,
    ReplicaStatus,
    RestartPolicy,
    RunPolicy,
    Service,
)
from trainops.reconciler.base import InMemoryClient, bare_util_reconciler
from trainops.reconciler.job import GROUP_NAME, JobReconciler, bare_job_reconciler
from trainops.reconciler.pod import bare_pod_reconciler
from trainops.reconciler.service import bare_service_reconciler
from trainops.reconciler.volcano import bare_volcano_reconciler
from trainops.status import JOB_FAILED_REASON, JOB_SUCCEEDED_REASON, update_job_conditions


def _wired():
    client = InMemoryClient()
    util = bare_util_reconciler(RecordingEventRecorder(), None, "Test Reconciler")
    job_r = bare_job_reconciler(client)
    pod_r = bare_pod_reconciler(client)
    svc_r = bare_service_reconciler(client)
    gang = bare_volcano_reconciler(client, None, False)
    job_r.override_for_job_interface(util, pod_r, svc_r, gang)
    pod_r.override_for_pod_interface(util, gang, job_r)
    svc_r.override_for_service_interface(util, pod_r, job_r)
    gang.override_for_gang_scheduling_interface(util)
    return client, job_r, util.recorder


def _job(name="job1", replicas=2, restart_policy=RestartPolicy.ON_FAILURE, run_policy=None):
    template = PodTemplateSpec(
        spec=PodSpec(
            containers=[
                Container(
                    name="kubeflow",
                    image="trainer",
                    ports=[ContainerPort(name="job-port", container_port=2222)],
                )
            ]
        )
    )
    return Job(
        metadata=ObjectMeta(name=name, namespace="default", uid="uid-1"),
        replica_specs={
            "Worker": ReplicaSpec(
                replicas=replicas, template=template, restart_policy=restart_policy
            )
        },
        run_policy=run_policy or RunPolicy(clean_pod_policy=CleanPodPolicy.NONE),
    )


def _pod(job_r, job, index, phase, restarts=0):
    labels = job_r.gen_labels(job.name)
    labels[REPLICA_TYPE_LABEL] = "worker"
    labels[REPLICA_INDEX_LABEL] = str(index)
    return Pod(
        metadata=ObjectMeta(name=f"{job.name}-worker-{index}", namespace="default", labels=labels),
        status=PodStatus(
            phase=phase,
            container_statuses=[ContainerStatus(name="kubeflow", restart_count=restarts)],
        ),
    )


def test_gen_labels():
    _, job_r, _ = _wired()
    labels = job_r.gen_labels("test/job1")
    assert labels == {
        GROUP_NAME_LABEL_DEPRECATED: GROUP_NAME,
        JOB_NAME_LABEL: "test-job1",
        JOB_NAME_LABEL_DEPRECATED: "test-job1",
        OPERATOR_NAME_LABEL: "Test Reconciler",
    }


def test_group_name_label_value():
    assert bare_job_reconciler(InMemoryClient()).get_group_name_label_value() == "kubeflow.org"


def test_gen_labels_without_util_raises():
    with pytest.raises(RuntimeError):
        bare_job_reconciler(InMemoryClient()).gen_labels("job")


def test_override_ignores_none():
    _, job_r, _ = _wired()
    pods = job_r.pod_interface
    job_r.override_for_job_interface(None, None, None, None)
    assert job_r.pod_interface is pods


def test_reconcile_creates_pods_and_services():
    client, job_r, _ = _wired()
    job = _job()
    client.create(job)
    job_r.reconcile_job(job, job.replica_specs, job.status, job.run_policy)

    pod_names = sorted(p.name for p in client.list(Pod.kind))
    svc_names = sorted(s.name for s in client.list(Service.kind))
    assert pod_names == ["job1-worker-0", "job1-worker-1"]
    assert svc_names == ["job1-worker-0", "job1-worker-1"]
    assert job.status.replica_statuses == {"Worker": ReplicaStatus()}
    stored = client.get("Job", "default", "job1")
    assert [c.type for c in stored.status.conditions] == [JobConditionType.RUNNING]


def test_reconcile_backoff_limit_fails_job():
    client, job_r, recorder = _wired()
    job = _job(run_policy=RunPolicy(clean_pod_policy=CleanPodPolicy.NONE, backoff_limit=0))
    client.create(job)
    client.create(_pod(job_r, job, 0, PodPhase.RUNNING, restarts=1))

    job_r.reconcile_job(job, job.replica_specs, job.status, job.run_policy)

    message = "Job job1 has failed because it has reached the specified backoff limit"
    assert job.status.conditions[-1].type == JobConditionType.FAILED
    assert job.status.conditions[-1].message == message
    assert job.status.completion_time is not None
    assert [(e.event_type, e.reason, e.message) for e in recorder.events] == [
        (EVENT_TYPE_NORMAL, JOB_FAILED_REASON, message)
    ]
    stored = client.get("Job", "default", "job1")
    assert stored.status.conditions[-1].type == JobConditionType.FAILED


def test_reconcile_active_deadline_fails_job():
    client, job_r, _ = _wired()
    job = _job(run_policy=RunPolicy(clean_pod_policy=CleanPodPolicy.NONE, active_deadline_seconds=10))
    job.status.start_time = datetime.now(timezone.utc) - timedelta(seconds=100)
    client.create(job)

    job_r.reconcile_job(job, job.replica_specs, job.status, job.run_policy)

    assert job.status.conditions[-1].message == (
        "Job job1 has failed because it was active longer than specified deadline"
    )
    assert client.list(Pod.kind) == []


def test_reconcile_succeeded_job_cleans_up():
    client, job_r, _ = _wired()
    job = _job(run_policy=RunPolicy(clean_pod_policy=CleanPodPolicy.ALL))
    update_job_conditions(job.status, JobConditionType.SUCCEEDED, "done", "done")
    job.status.replica_statuses = {"Worker": ReplicaStatus(active=2)}
    client.create(job)
    pod = _pod(job_r, job, 0, PodPhase.RUNNING)
    client.create(pod)
    client.create(Service(metadata=ObjectMeta(name=pod.name, namespace="default")))

    job_r.reconcile_job(job, job.replica_specs, job.status, job.run_policy)

    assert client.list(Pod.kind) == []
    assert client.list(Service.kind) == []
    assert job.status.replica_statuses["Worker"] == ReplicaStatus(succeeded=2, active=0)
    stored = client.get("Job", "default", "job1")
    assert stored.status.replica_statuses["Worker"].succeeded == 2


def test_cleanup_resources_running_policy_keeps_finished_pods():
    client, job_r, _ = _wired()
    job = _job()
    client.create(_pod(job_r, job, 0, PodPhase.RUNNING))
    client.create(_pod(job_r, job, 1, PodPhase.SUCCEEDED))
    job_r.cleanup_resources(RunPolicy(clean_pod_policy=CleanPodPolicy.RUNNING), job.status, job)
    assert [p.name for p in client.list(Pod.kind)] == ["job1-worker-1"]


def test_cleanup_resources_none_policy_keeps_everything():
    client, job_r, _ = _wired()
    job = _job()
    client.create(_pod(job_r, job, 0, PodPhase.RUNNING))
    job_r.cleanup_resources(RunPolicy(clean_pod_policy=CleanPodPolicy.NONE), job.status, job)
    assert len(client.list(Pod.kind)) == 1


def test_cleanup_resources_requires_policy():
    _, job_r, _ = _wired()
    job = _job()
    with pytest.raises(ValueError):
        job_r.cleanup_resources(RunPolicy(), job.status, job)


def test_cleanup_job_deletes_expired_job():
    client, job_r, _ = _wired()
    job = _job()
    client.create(job)
    status = JobStatus(completion_time=datetime.now(timezone.utc) - timedelta(seconds=60))
    job_r.cleanup_job(RunPolicy(ttl_seconds_after_finished=10), status, job)
    with pytest.raises(NotFoundError):
        client.get("Job", "default", "job1")


def test_cleanup_job_keeps_job_within_ttl():
    client, job_r, _ = _wired()
    job = _job()
    client.create(job)
    status = JobStatus(completion_time=datetime.now(timezone.utc))
    job_r.cleanup_job(RunPolicy(ttl_seconds_after_finished=3600), status, job)
    assert client.get("Job", "default", "job1").name == "job1"


def test_cleanup_job_without_completion_time_raises():
    _, job_r, _ = _wired()
    job = _job()
    with pytest.raises(ValueError):
        job_r.cleanup_job(RunPolicy(ttl_seconds_after_finished=1), JobStatus(), job)


def test_update_job_status_succeeded():
    _, job_r, recorder = _wired()
    job = _job()
    status = JobStatus(replica_statuses={"Worker": ReplicaStatus(succeeded=2)})
    job_r.update_job_status(job, job.replica_specs, status)
    assert [c.type for c in status.conditions] == [JobConditionType.SUCCEEDED]
    assert status.completion_time is not None
    assert recorder.events[0].reason == JOB_SUCCEEDED_REASON
    assert recorder.events[0].message == "Job default/job1 is successfully completed."


def test_update_job_status_exit_code_failure_restarts():
    _, job_r, _ = _wired()
    job = _job(restart_policy=RestartPolicy.EXIT_CODE)
    status = JobStatus(replica_statuses={"Worker": ReplicaStatus(failed=1)})
    job_r.update_job_status(job, job.replica_specs, status)
    types = [c.type for c in status.conditions]
    assert JobConditionType.RUNNING in types
    assert JobConditionType.RESTARTING not in types


def test_update_job_status_failure_fails_job():
    _, job_r, _ = _wired()
    job = _job()
    status = JobStatus(replica_statuses={"Worker": ReplicaStatus(failed=1)})
    job_r.update_job_status(job, job.replica_specs, status)
    assert status.conditions[0].type == JobConditionType.FAILED
    assert status.conditions[0].message == "Job default/job1 is failed because 1 Worker replica(s) failed."
    assert status.completion_time is not None


def test_update_job_status_running():
    _, job_r, _ = _wired()
    job = _job()
    status = JobStatus(replica_statuses={"Worker": ReplicaStatus(active=2)})
    job_r.update_job_status(job, job.replica_specs, status)
    assert [(c.type, c.status) for c in status.conditions] == [
        (JobConditionType.RUNNING, ConditionStatus.TRUE)
    ]


def test_update_job_status_missing_replica_status():
    _, job_r, _ = _wired()
    job = _job()
    with pytest.raises(KeyError):
        job_r.update_job_status(job, job.replica_specs, JobStatus(replica_statuses={}))


def test_set_status_for_success_job():
    job_r = bare_job_reconciler(InMemoryClient())
    status = JobStatus(replica_statuses={"Worker": ReplicaStatus(active=3, succeeded=1)})
    job_r.set_status_for_success_job(status)
    assert status.replica_statuses["Worker"] == ReplicaStatus(active=0, succeeded=4)


def test_should_clean_up():
    job_r = bare_job_reconciler(InMemoryClient())
    status = JobStatus()
    assert job_r.should_clean_up(status) is False
    update_job_conditions(status, JobConditionType.FAILED, "failed", "failed")
    assert job_r.is_job_failed(status) is True
    assert job_r.should_clean_up(status) is True


def test_past_backoff_limit():
    _, job_r, _ = _wired()
    job = _job()
    pods = [_pod(job_r, job, 0, PodPhase.RUNNING, restarts=2)]
    assert job_r.past_backoff_limit("job1", RunPolicy(backoff_limit=2), job.replica_specs, pods) is True
    assert job_r.past_backoff_limit("job1", RunPolicy(backoff_limit=3), job.replica_specs, pods) is False


def test_past_active_deadline():
    job_r = bare_job_reconciler(InMemoryClient())
    status = JobStatus(start_time=datetime.now(timezone.utc) - timedelta(seconds=30))
    assert job_r.past_active_deadline(RunPolicy(active_deadline_seconds=10), status) is True
    assert job_r.past_active_deadline(RunPolicy(active_deadline_seconds=3600), status) is False


def test_get_job_and_extract():
    client, job_r, _ = _wired()
    job = _job()
    client.create(job)
    fetched = job_r.get_job("default", "job1")
    assert job_r.extract_replicas_spec(fetched)["Worker"].replicas == 2
    assert job_r.extract_run_policy(fetched).clean_pod_policy == CleanPodPolicy.NONE
    assert job_r.extract_job_status(fetched) == JobStatus()
    assert job_r.is_master_role(fetched.replica_specs, "worker", 0) is False


def test_get_missing_job_raises():
    _, job_r, _ = _wired()
    with pytest.raises(NotFoundError):
        job_r.get_job("default", "absent")


def test_delete_job():
    client, job_r, _ = _wired()
    job = _job()
    client.create(job)
    job_r.delete_job(job)
    with pytest.raises(NotFoundError):
        job_r.delete_job(job)


def test_is_flag_replica_type():
    assert JobReconciler(InMemoryClient()).is_flag_replica_type_for_job_status("worker") is True