# trainops

Building blocks for controllers that run distributed training jobs. A job
is made of replica types (for example a master and several workers). For
each replica type, trainops keeps the right number of pods and headless
services, counts their phases into a job status, and decides when the job
has succeeded, failed, or gone past its backoff limit or active deadline.
It can also gang-schedule a job through a `PodGroup`.

All cluster objects are plain dataclasses in `trainops.models`. The
reconcilers work against an `InMemoryClient`, so reconciliation logic runs
and can be tested without a cluster.

## Installation

```
pip install trainops
```

The package has no runtime dependencies. To run the tests:

```
pip install "trainops[test]"
pytest
```

## Modules

- `trainops.models`: object dataclasses such as `Pod`, `Service`,
  `PodTemplateSpec`, `ReplicaSpec`, `RunPolicy`, `JobStatus` and `Job`; the
  enums `RestartPolicy`, `CleanPodPolicy`, `PodPhase`, `ConditionStatus`
  and `JobConditionType`; the errors `ApiError`, `NotFoundError`,
  `AlreadyExistsError` and `ServerTimeoutError`; `RecordingEventRecorder`,
  which keeps every event in a list; `get_controller_of` and
  `set_controller_reference` for owner references; and
  `initialize_replica_statuses` and `update_job_replica_statuses`.
- `trainops.labels`: reads and writes the replica index, replica type and
  job role labels. The deprecated label keys are still read, and the
  setters write both keys. `replica_index` and `replica_type` raise
  `ValueError` when the label is missing.
- `trainops.status`: `is_succeeded`, `is_failed` and
  `update_job_conditions`. A new condition replaces one of the same type;
  Running and Restarting replace each other; Failed or Succeeded turn an
  existing Running condition to False; nothing changes once the job has
  failed.
- `trainops.counter`: a thread-safe `Counter` keyed by string, with `inc`,
  `dec`, `counts` and `delete_key`.
- `trainops.train`: `is_retryable_exit_code`, true for exit codes of 128
  and above.
- `trainops.util`: `gen_general_name` (`job-rtype-index`, lower-cased
  type, `/` replaced by `-`), `pformat` (indented JSON, strings returned
  as they are) and `rand_string` (lower-case letters and digits).
- `trainops.signals`: `setup_signal_handler` returns a `threading.Event`
  that is set on the first SIGINT or SIGTERM (SIGINT only on Windows); a
  second signal ends the process with exit code 1. It may be called once.
- `trainops.k8sutil`: pod activity checks, pod counts by phase, replica
  totals (an unset replica count stands for one) and
  `cascade_delete_options`.
- `trainops.core`: filters pods and services by replica type, groups them
  into slices by replica index, copies restart policies into pod
  templates, reads container ports, records abnormal pods as events and
  checks backoff limits and active deadlines.
- `trainops.logger`: `logging.LoggerAdapter`s that carry the job, pod or
  service in their context.
- `trainops.reconciler.base`: `InMemoryClient`, `ReconcilerUtil`,
  `bare_util_reconciler`, `BaseGangReconciler` and
  `SchedulerFrameworkReconciler`.
- `trainops.reconciler.volcano`: `PodGroup`, `PodGroupSpec` and
  `VolcanoReconciler`, which creates, updates and deletes the pod group of
  a job and points pod templates at the `volcano` scheduler.
- `trainops.reconciler.pod`: `PodReconciler`. It also keeps in-process
  totals of created, deleted and failed pods in the `METRICS` counter.
- `trainops.reconciler.service`: `ServiceReconciler`, one headless
  service per replica.
- `trainops.reconciler.job`: `JobReconciler`, which ties the others
  together.

## Job conditions

```python
from trainops.models import JobConditionType, JobStatus
from trainops.status import is_succeeded, update_job_conditions

status = JobStatus()
update_job_conditions(status, JobConditionType.RUNNING, "JobRunning", "job is running")
update_job_conditions(status, JobConditionType.SUCCEEDED, "JobSucceeded", "job finished")
assert is_succeeded(status)
```

## Reconciling a job

Reconcilers are built from bare parts and then wired to each other:

```python
from trainops.models import (
    CleanPodPolicy, Container, ContainerPort, Job, ObjectMeta, PodSpec,
    PodTemplateSpec, RecordingEventRecorder, ReplicaSpec, RestartPolicy, RunPolicy,
)
from trainops.reconciler.base import InMemoryClient, bare_util_reconciler
from trainops.reconciler.job import bare_job_reconciler
from trainops.reconciler.pod import bare_pod_reconciler
from trainops.reconciler.service import bare_service_reconciler
from trainops.reconciler.volcano import bare_volcano_reconciler

client = InMemoryClient()
util = bare_util_reconciler(RecordingEventRecorder(), None, "my-operator")
jobs = bare_job_reconciler(client)
pods = bare_pod_reconciler(client)
services = bare_service_reconciler(client)
gang = bare_volcano_reconciler(client, None, False)

gang.override_for_gang_scheduling_interface(util)
pods.override_for_pod_interface(util, gang, jobs)
services.override_for_service_interface(util, pods, jobs)
jobs.override_for_job_interface(util, pods, services, gang)

template = PodTemplateSpec(
    spec=PodSpec(containers=[
        Container(name="kubeflow", ports=[ContainerPort(name="port", container_port=2222)])
    ])
)
job = Job(
    metadata=ObjectMeta(name="demo", namespace="default", uid="demo-uid"),
    replica_specs={
        "Worker": ReplicaSpec(replicas=2, restart_policy=RestartPolicy.ON_FAILURE, template=template)
    },
    run_policy=RunPolicy(clean_pod_policy=CleanPodPolicy.RUNNING),
)
client.create(job)

jobs.reconcile_job(job, job.replica_specs, job.status, job.run_policy)
print(sorted(p.name for p in client.list("Pod")))  # ['demo-worker-0', 'demo-worker-1']
```

The pod containers are looked up by the default container name,
`kubeflow`. `JobReconciler` has generic defaults for `get_job` (a stored
object of kind `Job`), the `extract_*` methods (the fields of `Job`) and
`is_master_role` (replica 0 of a `master` type); subclass it to change
them for another kind of job.

## What trainops does not do

- It does not talk to a real cluster. The only client is
  `InMemoryClient`; a client for a live API server has to be supplied by
  the caller with the same `get`, `list`, `create`, `update`,
  `update_status` and `delete` methods.
- It has no command-line program and does not run a controller loop or
  watch for changes; the caller decides when to call `reconcile_job`.
- `METRICS` is a plain in-process `collections.Counter`; nothing exports
  it.
- `VolcanoReconciler` computes no minimum resources for a pod group
  unless a `min_resources_fn` is passed in or the scheduling policy sets
  them.