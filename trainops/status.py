"""Job condition bookkeeping."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from trainops.models import ConditionStatus, JobCondition, JobConditionType, JobStatus

JOB_CREATED_REASON = "JobCreated"
JOB_SUCCEEDED_REASON = "JobSucceeded"
JOB_RUNNING_REASON = "JobRunning"
JOB_FAILED_REASON = "JobFailed"
JOB_RESTARTING_REASON = "JobRestarting"


def is_succeeded(status: JobStatus) -> bool:
    return _has_condition(status, JobConditionType.SUCCEEDED)


def is_failed(status: JobStatus) -> bool:
    return _has_condition(status, JobConditionType.FAILED)


def update_job_conditions(
    job_status: JobStatus, condition_type: JobConditionType, reason: str, message: str
) -> None:
    """Add a true condition of condition_type to job_status where it changes anything."""
    _set_condition(job_status, _new_condition(condition_type, reason, message))


def _has_condition(status: JobStatus, cond_type: JobConditionType) -> bool:
    return any(
        c.type == cond_type and c.status == ConditionStatus.TRUE for c in status.conditions
    )


def _new_condition(condition_type: JobConditionType, reason: str, message: str) -> JobCondition:
    now = datetime.now(timezone.utc)
    return JobCondition(
        type=condition_type,
        status=ConditionStatus.TRUE,
        reason=reason,
        message=message,
        last_update_time=now,
        last_transition_time=now,
    )


def _get_condition(status: JobStatus, cond_type: JobConditionType) -> JobCondition | None:
    return next((c for c in status.conditions if c.type == cond_type), None)


def _set_condition(status: JobStatus, condition: JobCondition) -> None:
    if is_failed(status):
        return
    current = _get_condition(status, condition.type)
    if current is not None and current.status == condition.status:
        if current.reason == condition.reason:
            return
        condition = replace(condition, last_transition_time=current.last_transition_time)
    status.conditions = [*_filter_out_condition(status.conditions, condition.type), condition]


def _filter_out_condition(
    conditions: list[JobCondition], cond_type: JobConditionType
) -> list[JobCondition]:
    kept = []
    for c in conditions:
        if cond_type == JobConditionType.RESTARTING and c.type == JobConditionType.RUNNING:
            continue
        if cond_type == JobConditionType.RUNNING and c.type == JobConditionType.RESTARTING:
            continue
        if c.type == cond_type:
            continue
        if (
            cond_type in (JobConditionType.FAILED, JobConditionType.SUCCEEDED)
            and c.type == JobConditionType.RUNNING
        ):
            c = replace(c, status=ConditionStatus.FALSE)
        kept.append(c)
    return kept