"""Loggers that carry the job, pod or service they talk about."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from trainops.models import Pod, Service, get_controller_of

_log = logging.getLogger("trainops")


def _entry(fields: dict[str, Any]) -> logging.LoggerAdapter:
    return logging.LoggerAdapter(_log, fields)


def _controller_job(obj: Any, kind: str) -> str:
    ref = get_controller_of(obj)
    if ref is not None and ref.kind == kind:
        return f"{obj.metadata.namespace}.{ref.name}"
    return ""


def logger_for_replica(job: Any, rtype: str) -> logging.LoggerAdapter:
    """Logger for one replica type of a job."""
    return _entry(
        {
            "job": f"{job.metadata.namespace}.{job.metadata.name}",
            "uid": job.metadata.uid,
            "replica-type": rtype,
        }
    )


def logger_for_job(job: Any) -> logging.LoggerAdapter:
    """Logger for a job, keyed as namespace.name."""
    return _entry(
        {
            "job": f"{job.metadata.namespace}.{job.metadata.name}",
            "uid": job.metadata.uid,
        }
    )


def logger_for_pod(pod: Pod, kind: str) -> logging.LoggerAdapter:
    """Logger for a pod; names its job when the pod is controlled by a job of kind."""
    return _entry(
        {
            "job": _controller_job(pod, kind),
            "pod": f"{pod.metadata.namespace}.{pod.metadata.name}",
            "uid": pod.metadata.uid,
        }
    )


def logger_for_service(svc: Service, kind: str) -> logging.LoggerAdapter:
    """Logger for a service; names its job when it is controlled by a job of kind."""
    return _entry(
        {
            "job": _controller_job(svc, kind),
            "service": f"{svc.metadata.namespace}.{svc.metadata.name}",
            "uid": svc.metadata.uid,
        }
    )


def logger_for_key(key: str) -> logging.LoggerAdapter:
    """Logger for a work-queue key of the form namespace/name."""
    return _entry({"job": key.replace("/", ".")})


def logger_for_unstructured(obj: Mapping[str, Any], kind: str) -> logging.LoggerAdapter:
    """Logger for an unstructured object given as a mapping with kind and metadata."""
    metadata = obj.get("metadata") or {}
    job = ""
    if obj.get("kind", "") == kind:
        job = f"{metadata.get('namespace', '')}.{metadata.get('name', '')}"
    return _entry({"job": job, "uid": metadata.get("uid", "")})