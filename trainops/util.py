"""General helpers: names, pretty printing and random strings."""

from __future__ import annotations

import dataclasses
import json
import logging
import random
from datetime import datetime
from enum import Enum
from typing import Any

ENV_KUBEFLOW_NAMESPACE = "KUBEFLOW_NAMESPACE"

_LETTERS = "0123456789abcdefghijklmnopqrstuvwxyz"
_rng = random.Random()
_log = logging.getLogger(__name__)


def gen_general_name(job_name: str, rtype: str, index: str) -> str:
    """Name of a replica's pod or service: job-rtype-index, with '/' replaced by '-'."""
    return f"{job_name}-{rtype.lower()}-{index}".replace("/", "-")


def _to_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def pformat(value: Any) -> str:
    """Pretty JSON for value; strings are returned as they are."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, indent=2, default=_to_json)
    except (TypeError, ValueError) as err:
        _log.warning("Couldn't pretty format %r, error: %s", value, err)
        return str(value)


def rand_string(n: int) -> str:
    """Random string of lower-case letters and digits, usable as a DNS label."""
    if n < 0:
        raise ValueError("length must not be negative")
    return "".join(_rng.choices(_LETTERS, k=n))