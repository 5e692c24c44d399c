"""Utilities for managing status conditions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def _status_string(value: bool) -> str:
    return "True" if value else "False"


def set_condition(
    conditions: list[dict[str, Any]] | None,
    condition_type: str,
    status: bool,
) -> list[dict[str, Any]]:
    """Set a boolean condition and return the new conditions list.

    The input list is never mutated. ``lastTransitionTime`` is only moved when
    the status actually changes; ``lastProbeTime`` is refreshed on every call.

    Args:
        conditions: Existing conditions
        condition_type: Type of condition
        status: New status of the condition

    Returns:
        Updated list of conditions
    """
    now = datetime.now(timezone.utc).isoformat()
    status_str = _status_string(status)

    updated: list[dict[str, Any]] = []
    found = False
    for cond in conditions or []:
        cond = dict(cond)
        if cond.get("type") == condition_type:
            found = True
            if cond.get("status") != status_str:
                cond["lastTransitionTime"] = now
            cond["status"] = status_str
            cond["lastProbeTime"] = now
        updated.append(cond)

    if not found:
        updated.append(
            {
                "type": condition_type,
                "status": status_str,
                "lastProbeTime": now,
                "lastTransitionTime": now,
            }
        )

    return updated


def get_condition(
    conditions: list[dict[str, Any]] | None,
    condition_type: str,
) -> dict[str, Any] | None:
    """Return the condition of the given type, if present."""
    for cond in conditions or []:
        if cond.get("type") == condition_type:
            return cond
    return None


def is_condition_false(conditions: list[dict[str, Any]] | None, condition_type: str) -> bool:
    """Check whether a condition is present and False."""
    cond = get_condition(conditions, condition_type)
    return cond is not None and cond.get("status") == "False"
