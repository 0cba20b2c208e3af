"""Shared pieces of the reconcilers: object store, utilities and gang settings."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from trainops.models import AlreadyExistsError, NotFoundError, RecordingEventRecorder

RECONCILER_NAME = "common-reconciler"


def _key(obj: Any) -> tuple[str, str, str]:
    return (obj.kind, obj.metadata.namespace, obj.metadata.name)


class InMemoryClient:
    """An object store keyed by kind, namespace and name.

    Objects are copied on the way in and on the way out, as a remote store would.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], Any] = {}

    @property
    def objects(self) -> list[Any]:
        """Copies of every stored object, in creation order."""
        return [copy.deepcopy(obj) for obj in self._objects.values()]

    def get(self, kind: str, namespace: str, name: str) -> Any:
        try:
            return copy.deepcopy(self._objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(f'{kind} "{namespace}/{name}" not found') from None

    def list(self, kind: str, labels: Mapping[str, str] | None = None) -> list[Any]:
        """Objects of kind whose labels include every given label."""
        wanted = dict(labels or {})
        return [
            copy.deepcopy(obj)
            for (obj_kind, _, _), obj in self._objects.items()
            if obj_kind == kind
            and all(obj.metadata.labels.get(k) == v for k, v in wanted.items())
        ]

    def create(self, obj: Any) -> None:
        key = _key(obj)
        if key in self._objects:
            raise AlreadyExistsError(f'{key[0]} "{key[1]}/{key[2]}" already exists')
        self._objects[key] = copy.deepcopy(obj)

    def update(self, obj: Any) -> None:
        key = _key(obj)
        if key not in self._objects:
            raise NotFoundError(f'{key[0]} "{key[1]}/{key[2]}" not found')
        self._objects[key] = copy.deepcopy(obj)

    def update_status(self, obj: Any) -> None:
        """Replace only the status of the stored object."""
        key = _key(obj)
        try:
            stored = self._objects[key]
        except KeyError:
            raise NotFoundError(f'{key[0]} "{key[1]}/{key[2]}" not found') from None
        stored.status = copy.deepcopy(obj.status)

    def delete(self, obj: Any) -> None:
        key = _key(obj)
        if key not in self._objects:
            raise NotFoundError(f'{key[0]} "{key[1]}/{key[2]}" not found')
        del self._objects[key]


@dataclass
class ReconcilerUtil:
    """Event recorder, logger and name shared by the reconcilers."""

    recorder: Any = field(default_factory=RecordingEventRecorder)
    logger: logging.Logger | None = None
    name: str = RECONCILER_NAME

    def get_reconciler_name(self) -> str:
        return self.name

    def get_recorder(self) -> Any:
        return self.recorder

    def get_logger(self, job: Any) -> logging.LoggerAdapter:
        """Logger that carries the job's kind and namespace/name."""
        base = self.logger if self.logger is not None else logging.getLogger("trainops")
        return logging.LoggerAdapter(
            base, {job.kind: f"{job.metadata.namespace}/{job.metadata.name}"}
        )


def bare_util_reconciler(
    recorder: Any, logger: logging.Logger | None, name: str = RECONCILER_NAME
) -> ReconcilerUtil:
    return ReconcilerUtil(recorder=recorder, logger=logger, name=name)


@dataclass
class BaseGangReconciler:
    """Gang-scheduling settings common to every gang scheduler."""

    enabled: bool = False

    def gang_scheduling_enabled(self) -> bool:
        return self.enabled

    def get_pod_group_name(self, job: Any) -> str:
        return job.metadata.name


@dataclass
class SchedulerFrameworkReconciler(BaseGangReconciler):
    """Gang settings for the scheduler-framework scheduler."""