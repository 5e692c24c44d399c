"""Label helpers shared by the handlers."""

from __future__ import annotations

from typing import Any

from kubernetes import client

from ..constants import (
    CONTROL_PLANE_OCP,
    LABEL_CONTROL_PLANE,
    LABEL_CONTROLLER_CLASS,
    LABEL_MANAGED_BY,
    LABEL_VALUE_MANAGED_BY,
)


def controller_class_matches(labels: dict[str, str] | None, controller_class: str) -> bool:
    """Check whether a resource belongs to this controller instance.

    A resource without labels is only handled by the controller running
    with the empty class.
    """
    if not labels:
        return controller_class == ""
    return labels.get(LABEL_CONTROLLER_CLASS, "") == controller_class


def uses_ocp(labels: dict[str, str] | None) -> bool:
    """Check whether a System selects the self-hosted control plane."""
    return (labels or {}).get(LABEL_CONTROL_PLANE, "") == CONTROL_PLANE_OCP


def managed_by_labels(extra: dict[str, str] | None = None) -> dict[str, str]:
    labels = dict(extra or {})
    labels[LABEL_MANAGED_BY] = LABEL_VALUE_MANAGED_BY
    return labels


def owner_reference(body: dict[str, Any]) -> client.V1OwnerReference:
    """Build a controller owner reference pointing at ``body``."""
    meta = body.get("metadata", {})
    return client.V1OwnerReference(
        api_version=body.get("apiVersion"),
        kind=body.get("kind"),
        name=meta.get("name"),
        uid=meta.get("uid"),
        controller=True,
        block_owner_deletion=True,
    )
