"""Data model for training jobs and the cluster objects they own."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar

REPLICA_INDEX_LABEL = "training.kubeflow.org/replica-index"
REPLICA_TYPE_LABEL = "training.kubeflow.org/replica-type"
OPERATOR_NAME_LABEL = "training.kubeflow.org/operator-name"
JOB_NAME_LABEL = "training.kubeflow.org/job-name"
JOB_ROLE_LABEL = "training.kubeflow.org/job-role"

REPLICA_INDEX_LABEL_DEPRECATED = "replica-index"
REPLICA_TYPE_LABEL_DEPRECATED = "replica-type"
GROUP_NAME_LABEL_DEPRECATED = "group-name"
JOB_NAME_LABEL_DEPRECATED = "job-name"
JOB_ROLE_LABEL_DEPRECATED = "job-role"

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

CLUSTER_IP_NONE = "None"
NAMESPACE_DEFAULT = "default"


class RestartPolicy(str, Enum):
    ALWAYS = "Always"
    ON_FAILURE = "OnFailure"
    NEVER = "Never"
    EXIT_CODE = "ExitCode"


class CleanPodPolicy(str, Enum):
    ALL = "All"
    RUNNING = "Running"
    NONE = "None"


class PodPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class JobConditionType(str, Enum):
    CREATED = "Created"
    RUNNING = "Running"
    RESTARTING = "Restarting"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class ApiError(Exception):
    """An error reported by the object store."""


class NotFoundError(ApiError):
    """The requested object does not exist."""


class AlreadyExistsError(ApiError):
    """An object with the same name already exists."""


class ServerTimeoutError(ApiError):
    """The server did not complete the request in time."""


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    uid: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    deletion_timestamp: datetime | None = None


class _Resource:
    """Shortcuts to the metadata of an object."""

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @name.setter
    def name(self, value: str) -> None:
        self.metadata.name = value

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @namespace.setter
    def namespace(self, value: str) -> None:
        self.metadata.namespace = value

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels

    @labels.setter
    def labels(self, value: dict[str, str]) -> None:
        self.metadata.labels = value

    @property
    def uid(self) -> str:
        return self.metadata.uid


@dataclass
class ContainerStateTerminated:
    exit_code: int = 0
    reason: str = ""
    message: str = ""


@dataclass
class ContainerStateWaiting:
    reason: str = ""
    message: str = ""


@dataclass
class ContainerStatus:
    name: str = ""
    restart_count: int = 0
    terminated: ContainerStateTerminated | None = None
    waiting: ContainerStateWaiting | None = None


@dataclass
class PodCondition:
    type: str = ""
    status: ConditionStatus = ConditionStatus.UNKNOWN
    last_transition_time: datetime | None = None
    reason: str = ""
    message: str = ""


@dataclass
class PodStatus:
    phase: PodPhase | None = None
    conditions: list[PodCondition] = field(default_factory=list)
    container_statuses: list[ContainerStatus] = field(default_factory=list)
    init_container_statuses: list[ContainerStatus] = field(default_factory=list)


@dataclass
class ContainerPort:
    name: str = ""
    container_port: int = 0


@dataclass
class Container:
    name: str = ""
    image: str = ""
    ports: list[ContainerPort] = field(default_factory=list)


@dataclass
class PodSpec:
    containers: list[Container] = field(default_factory=list)
    restart_policy: RestartPolicy | None = None
    scheduler_name: str = ""


@dataclass
class PodTemplateSpec(_Resource):
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PodSpec = field(default_factory=PodSpec)


@dataclass
class Pod(_Resource):
    kind: ClassVar[str] = "Pod"
    api_version: ClassVar[str] = "v1"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PodSpec = field(default_factory=PodSpec)
    status: PodStatus = field(default_factory=PodStatus)


@dataclass
class ServicePort:
    name: str = ""
    port: int = 0


@dataclass
class ServiceSpec:
    cluster_ip: str = ""
    selector: dict[str, str] = field(default_factory=dict)
    ports: list[ServicePort] = field(default_factory=list)


@dataclass
class Service(_Resource):
    kind: ClassVar[str] = "Service"
    api_version: ClassVar[str] = "v1"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: ServiceSpec = field(default_factory=ServiceSpec)


@dataclass
class SchedulingPolicy:
    min_available: int | None = None
    queue: str = ""
    priority_class: str = ""
    min_resources: dict[str, Any] | None = None


@dataclass
class RunPolicy:
    clean_pod_policy: CleanPodPolicy | None = None
    ttl_seconds_after_finished: int | None = None
    active_deadline_seconds: int | None = None
    backoff_limit: int | None = None
    scheduling_policy: SchedulingPolicy | None = None


@dataclass
class ReplicaSpec:
    replicas: int | None = None
    template: PodTemplateSpec = field(default_factory=PodTemplateSpec)
    restart_policy: RestartPolicy | None = None


@dataclass
class ReplicaStatus:
    active: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class JobCondition:
    type: JobConditionType
    status: ConditionStatus
    reason: str = ""
    message: str = ""
    last_update_time: datetime | None = None
    last_transition_time: datetime | None = None


@dataclass
class JobStatus:
    conditions: list[JobCondition] = field(default_factory=list)
    replica_statuses: dict[str, ReplicaStatus] | None = None
    start_time: datetime | None = None
    completion_time: datetime | None = None
    last_reconcile_time: datetime | None = None


@dataclass
class Job(_Resource):
    """A generic training job."""

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    kind: str = "Job"
    api_version: str = ""
    replica_specs: dict[str, ReplicaSpec] = field(default_factory=dict)
    run_policy: RunPolicy = field(default_factory=RunPolicy)
    status: JobStatus = field(default_factory=JobStatus)


@dataclass
class Event:
    obj: Any
    event_type: str
    reason: str
    message: str


class RecordingEventRecorder:
    """Event recorder that keeps every event in memory."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def event(self, obj: Any, event_type: str, reason: str, message: str) -> None:
        self.events.append(Event(obj, event_type, reason, message))


def get_controller_of(obj: Any) -> OwnerReference | None:
    """Return the owner reference that marks the controller of obj, if any."""
    return next((ref for ref in obj.metadata.owner_references if ref.controller), None)


def set_controller_reference(owner: Any, obj: Any) -> OwnerReference:
    """Make owner the controller of obj; raise ValueError if another controller is set."""
    reference = OwnerReference(
        api_version=getattr(owner, "api_version", ""),
        kind=owner.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
    )
    existing = get_controller_of(obj)
    if existing is not None and (existing.kind, existing.name, existing.uid) != (
        reference.kind,
        reference.name,
        reference.uid,
    ):
        raise ValueError(
            f"object {obj.metadata.namespace}/{obj.metadata.name} is already owned "
            f"by another {existing.kind} controller {existing.name}"
        )
    refs = [
        ref
        for ref in obj.metadata.owner_references
        if (ref.kind, ref.name) != (reference.kind, reference.name)
    ]
    refs.append(reference)
    obj.metadata.owner_references = refs
    return reference


def initialize_replica_statuses(job_status: JobStatus, rtype: str) -> None:
    """Reset the replica status of rtype to zero counts."""
    if job_status.replica_statuses is None:
        job_status.replica_statuses = {}
    job_status.replica_statuses[rtype] = ReplicaStatus()


def update_job_replica_statuses(job_status: JobStatus, rtype: str, pod: Pod) -> None:
    """Count pod into the replica status of rtype according to its phase."""
    status = job_status.replica_statuses[rtype]
    match pod.status.phase:
        case PodPhase.RUNNING:
            status.active += 1
        case PodPhase.SUCCEEDED:
            status.succeeded += 1
        case PodPhase.FAILED:
            status.failed += 1