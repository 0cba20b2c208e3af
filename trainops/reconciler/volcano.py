"""Gang scheduling through pod groups of the volcano scheduler."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from trainops.k8sutil import get_total_replicas
from trainops.logger import logger_for_replica
from trainops.models import (
    EVENT_TYPE_WARNING,
    ApiError,
    NotFoundError,
    ObjectMeta,
    PodTemplateSpec,
    ReplicaSpec,
    RunPolicy,
    set_controller_reference,
)
from trainops.reconciler.base import BaseGangReconciler

VOLCANO_POD_GROUP_ANNOTATION = "scheduling.k8s.io/group-name"
VOLCANO_SCHEDULER_NAME = "volcano"
POD_GROUP_KIND = "PodGroup"

_log = logging.getLogger(__name__)

MinResourcesFn = Callable[[int, Mapping[str, ReplicaSpec]], "dict[str, Any] | None"]


@dataclass
class PodGroupSpec:
    min_member: int = 0
    queue: str = ""
    priority_class_name: str = ""
    min_resources: dict[str, Any] | None = None


@dataclass
class PodGroup:
    kind: ClassVar[str] = POD_GROUP_KIND
    api_version: ClassVar[str] = "scheduling.volcano.sh/v1beta1"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: PodGroupSpec = field(default_factory=PodGroupSpec)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


class VolcanoReconciler:
    """Creates, updates and deletes the pod group of a job."""

    def __init__(
        self,
        client: Any,
        gang: BaseGangReconciler | None = None,
        util: Any = None,
        min_resources_fn: MinResourcesFn | None = None,
    ) -> None:
        self.client = client
        self.gang = gang if gang is not None else BaseGangReconciler()
        self.util = util
        self.min_resources_fn = min_resources_fn

    def override_for_gang_scheduling_interface(self, ui: Any) -> None:
        if ui is not None:
            self.util = ui

    def get_gang_scheduler_name(self) -> str:
        return VOLCANO_SCHEDULER_NAME

    def gang_scheduling_enabled(self) -> bool:
        return self.gang.gang_scheduling_enabled()

    def get_pod_group_name(self, job: Any) -> str:
        return self.gang.get_pod_group_name(job)

    def get_pod_group_for_job(self, job: Any) -> PodGroup:
        """The job's pod group; raises NotFoundError if there is none."""
        return self.client.get(POD_GROUP_KIND, job.metadata.namespace, self.get_pod_group_name(job))

    def delete_pod_group(self, job: Any) -> None:
        """Delete the job's pod group; a missing one is not an error."""
        pod_group = PodGroup(
            metadata=ObjectMeta(
                name=self.get_pod_group_name(job), namespace=job.metadata.namespace
            )
        )
        try:
            self.client.delete(pod_group)
        except NotFoundError:
            pass

    def reconcile_pod_group(
        self, job: Any, run_policy: RunPolicy, replicas: Mapping[str, ReplicaSpec]
    ) -> None:
        """Create the job's pod group, or bring its spec up to date."""
        min_member = get_total_replicas(replicas)
        queue = ""
        priority_class = ""
        min_resources = None

        policy = run_policy.scheduling_policy
        if policy is not None:
            if policy.min_available is not None:
                min_member = policy.min_available
            if policy.queue:
                queue = policy.queue
            if policy.priority_class:
                priority_class = policy.priority_class
            if policy.min_resources is not None:
                min_resources = policy.min_resources

        if min_resources is None and self.min_resources_fn is not None:
            min_resources = self.min_resources_fn(min_member, replicas)

        spec = PodGroupSpec(
            min_member=min_member,
            queue=queue,
            priority_class_name=priority_class,
            min_resources=min_resources,
        )
        namespace = job.metadata.namespace
        name = self.get_pod_group_name(job)

        try:
            try:
                pod_group = self.client.get(POD_GROUP_KIND, namespace, name)
                pod_group.spec = spec
                self.client.update(pod_group)
            except NotFoundError:
                pod_group = PodGroup(metadata=ObjectMeta(name=name, namespace=namespace), spec=spec)
                set_controller_reference(job, pod_group)
                self.client.create(pod_group)
        except (ApiError, ValueError) as err:
            _log.warning("Sync PodGroup %s/%s: %s", namespace, name, err)
            raise

    def decorate_pod_for_gang_scheduling(
        self, rtype: str, pod_template: PodTemplateSpec, job: Any
    ) -> None:
        """Point the pod template at the gang scheduler and at the job's pod group."""
        scheduler = pod_template.spec.scheduler_name
        if scheduler in ("", self.get_gang_scheduler_name()):
            pod_template.spec.scheduler_name = self.get_gang_scheduler_name()
        else:
            msg = (
                "Another scheduler is specified when gang-scheduling is enabled "
                "and it will not be overwritten"
            )
            logger_for_replica(job, rtype).warning(msg)
            self.util.get_recorder().event(
                job, EVENT_TYPE_WARNING, "PodTemplateSchedulerNameAlreadySet", msg
            )

        if pod_template.metadata.annotations is None:
            pod_template.metadata.annotations = {}
        pod_template.metadata.annotations[VOLCANO_POD_GROUP_ANNOTATION] = job.metadata.name


def bare_volcano_reconciler(
    client: Any, bg_reconciler: BaseGangReconciler | None, enabled: bool
) -> VolcanoReconciler:
    """A volcano reconciler with only its client and gang settings."""
    if bg_reconciler is None:
        bg_reconciler = BaseGangReconciler()
    bg_reconciler.enabled = enabled
    return VolcanoReconciler(client, gang=dataclasses.replace(bg_reconciler))