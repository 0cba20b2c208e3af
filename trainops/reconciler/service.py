"""Reconciling the headless services of a training job."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from trainops import core
from trainops.logger import logger_for_replica
from trainops.models import (
    CLUSTER_IP_NONE,
    REPLICA_INDEX_LABEL,
    REPLICA_TYPE_LABEL,
    ApiError,
    ObjectMeta,
    ReplicaSpec,
    Service,
    ServicePort,
    ServiceSpec,
    ServerTimeoutError,
    set_controller_reference,
)
from trainops.reconciler.pod import DEFAULT_CONTAINER_NAME, DELETED_PODS_METRIC, METRICS
from trainops.util import gen_general_name

SUCCEEDED_SERVICE_CREATION_METRIC = "reconciler_succeeded_service_creation_total"
FAILED_SERVICE_CREATION_METRIC = "reconciler_failed_service_creation_total"


def _replica_count(spec: ReplicaSpec) -> int:
    if spec.replicas is None:
        raise ValueError("replica spec has no replica count")
    return spec.replicas


class ServiceReconciler:
    """Creates and deletes one headless service per replica of a job."""

    def __init__(
        self,
        client: Any,
        util: Any = None,
        pod_interface: Any = None,
        job_interface: Any = None,
    ) -> None:
        self.client = client
        self.util = util
        self.pod_interface = pod_interface
        self.job_interface = job_interface

    def override_for_service_interface(self, ui: Any, pi: Any, ji: Any) -> None:
        if ui is not None:
            self.util = ui
        if pi is not None:
            self.pod_interface = pi
        if ji is not None:
            self.job_interface = ji

    def _gen_labels(self, job_name: str) -> dict[str, str]:
        if self.job_interface is None:
            raise RuntimeError("service reconciler has no job interface")
        return self.job_interface.gen_labels(job_name)

    def _default_container_name(self) -> str:
        if self.pod_interface is None:
            return DEFAULT_CONTAINER_NAME
        return self.pod_interface.get_default_container_name()

    def get_ports_from_job(self, spec: ReplicaSpec) -> dict[str, int] | None:
        """Ports of the default container; ValueError if that container is missing."""
        return core.get_ports_from_job(spec, self._default_container_name())

    def get_services_for_job(self, job: Any) -> list[Service]:
        """All services that carry the job's labels."""
        return self.client.list(Service.kind, self._gen_labels(job.metadata.name))

    def filter_services_for_replica_type(
        self, services: Sequence[Service], replica_type: str
    ) -> list[Service]:
        return core.filter_services_for_replica_type(services, replica_type)

    def get_service_slices(
        self, services: Sequence[Service], replicas: int, logger: Any
    ) -> list[list[Service]]:
        return core.get_service_slices(services, replicas, logger)

    def reconcile_services(
        self, job: Any, services: Sequence[Service], rtype: str, spec: ReplicaSpec
    ) -> None:
        """Create missing services and delete those beyond the replica count."""
        rt = rtype.lower()
        replicas = _replica_count(spec)
        services = self.filter_services_for_replica_type(services, rt)
        logger = logger_for_replica(job, rt)

        for index, service_slice in enumerate(self.get_service_slices(services, replicas, logger)):
            if len(service_slice) > 1:
                logger.warning("We have too many services for %s %d", rtype, index)
            elif not service_slice:
                logger.info("need to create new service: %s-%d", rtype, index)
                self.create_new_service(job, rtype, spec, str(index))
            elif index >= replicas:
                svc = service_slice[0]
                self.delete_service(svc.namespace, svc.name, job)

    def create_new_service(self, job: Any, rtype: str, spec: ReplicaSpec, index: str) -> None:
        """Build the headless service of replica rtype/index and submit it."""
        rt = rtype.lower()
        labels = self._gen_labels(job.metadata.name)
        labels[REPLICA_TYPE_LABEL] = rt
        labels[REPLICA_INDEX_LABEL] = index

        ports = self.get_ports_from_job(spec) or {}

        service = Service(
            metadata=ObjectMeta(
                name=gen_general_name(job.metadata.name, rt, index),
                namespace=job.metadata.namespace,
                labels=dict(labels),
            ),
            spec=ServiceSpec(
                cluster_ip=CLUSTER_IP_NONE,
                selector=labels,
                ports=[ServicePort(name=name, port=port) for name, port in ports.items()],
            ),
        )
        set_controller_reference(job, service)

        service = self.decorate_service(rt, service, job)

        try:
            self.client.create(service)
        except ServerTimeoutError:
            METRICS[SUCCEEDED_SERVICE_CREATION_METRIC] += 1
            return
        except ApiError:
            METRICS[FAILED_SERVICE_CREATION_METRIC] += 1
            raise
        METRICS[SUCCEEDED_SERVICE_CREATION_METRIC] += 1

    def delete_service(self, namespace: str, name: str, job: Any) -> None:
        """Delete the named service; raises NotFoundError if it does not exist."""
        self.client.delete(Service(metadata=ObjectMeta(name=name, namespace=namespace)))
        METRICS[DELETED_PODS_METRIC] += 1

    def decorate_service(self, rtype: str, svc: Service, job: Any) -> Service:
        """Hook to adjust a service before submission; returns the service to create.

        The default keeps the service as it is.
        """
        return svc


def bare_service_reconciler(client: Any) -> ServiceReconciler:
    return ServiceReconciler(client)