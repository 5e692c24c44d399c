"""Owned Secrets and ConfigMaps generated for a System."""

from __future__ import annotations

import logging
from typing import Any

from kubernetes import client

from ..constants import EVENT_ERROR_NOT_OWNED_BY_CONTROLLER, FIELD_MANAGER
from ..errors import ReconcilerError
from ..utils.labels import managed_by_labels, owner_reference
from ..utils.secrets import decode_secret_data

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"


def _get_or_none(read_fn: Any, name: str, namespace: str) -> Any:
    try:
        return read_fn(name=name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return None
        raise


def is_controlled_by(obj: Any, owner_uid: str) -> bool:
    """Check whether ``obj`` carries a controller reference to ``owner_uid``."""
    for ref in obj.metadata.owner_references or []:
        if ref.controller and ref.uid == owner_uid:
            return True
    return False


def _metadata(owner_body: Any, name: str, labels: dict[str, str] | None) -> client.V1ObjectMeta:
    meta = owner_body.get("metadata") or {}
    return client.V1ObjectMeta(
        name=name,
        namespace=meta.get("namespace"),
        labels=managed_by_labels(labels),
        owner_references=[owner_reference(owner_body)],
    )


def ensure_owned_secret(
    api: client.CoreV1Api,
    owner_body: Any,
    name: str,
    data: dict[str, str],
    labels: dict[str, str] | None = None,
    condition: str = "",
    event: str = "",
) -> str:
    """Create or update a Secret owned by ``owner_body``.

    Args:
        api: Kubernetes API client
        owner_body: Owning resource
        name: Secret name
        data: Desired string data
        labels: Extra labels for a created Secret
        condition: Condition to report on failure
        event: Event reason to report on failure

    Returns:
        ``created``, ``updated`` or ``unchanged``

    Raises:
        ReconcilerError: If the Secret exists but is owned by something else
    """
    meta = owner_body.get("metadata") or {}
    namespace = meta.get("namespace")

    try:
        existing = _get_or_none(api.read_namespaced_secret, name, namespace)
        if existing is None:
            logger.info(f"Creating secret {namespace}/{name}")
            api.create_namespaced_secret(
                namespace=namespace,
                body=client.V1Secret(
                    metadata=_metadata(owner_body, name, labels),
                    type="Opaque",
                    string_data=dict(data),
                ),
                field_manager=FIELD_MANAGER,
            )
            return CREATED
    except client.exceptions.ApiException as e:
        raise ReconcilerError.wrap(e, f"Could not create secret {name}").with_event(event).with_condition(condition) from e

    if not is_controlled_by(existing, meta.get("uid", "")):
        raise (
            ReconcilerError("Existing secret is not owned by controller")
            .with_event(EVENT_ERROR_NOT_OWNED_BY_CONTROLLER)
            .with_condition(condition)
        )

    if decode_secret_data(existing.data) == data:
        return UNCHANGED

    logger.info(f"Updating secret {namespace}/{name}")
    existing.data = None
    existing.string_data = dict(data)
    try:
        api.replace_namespaced_secret(
            name=name,
            namespace=namespace,
            body=existing,
            field_manager=FIELD_MANAGER,
        )
    except client.exceptions.ApiException as e:
        raise ReconcilerError.wrap(e, f"Could not update secret {name}").with_event(event).with_condition(condition) from e
    return UPDATED


def ensure_owned_configmap(
    api: client.CoreV1Api,
    owner_body: Any,
    name: str,
    data: dict[str, str],
    labels: dict[str, str] | None = None,
    condition: str = "",
    event: str = "",
) -> str:
    """Create or update a ConfigMap owned by ``owner_body``.

    Returns:
        ``created``, ``updated`` or ``unchanged``

    Raises:
        ReconcilerError: If the ConfigMap exists but is owned by something else
    """
    meta = owner_body.get("metadata") or {}
    namespace = meta.get("namespace")

    try:
        existing = _get_or_none(api.read_namespaced_config_map, name, namespace)
        if existing is None:
            logger.info(f"Creating configmap {namespace}/{name}")
            api.create_namespaced_config_map(
                namespace=namespace,
                body=client.V1ConfigMap(
                    metadata=_metadata(owner_body, name, labels),
                    data=dict(data),
                ),
                field_manager=FIELD_MANAGER,
            )
            return CREATED
    except client.exceptions.ApiException as e:
        raise ReconcilerError.wrap(e, f"Could not create configmap {name}").with_event(event).with_condition(condition) from e

    if not is_controlled_by(existing, meta.get("uid", "")):
        raise (
            ReconcilerError("ConfigMap already exists and is not owned by controller")
            .with_event(EVENT_ERROR_NOT_OWNED_BY_CONTROLLER)
            .with_condition(condition)
        )

    if dict(existing.data or {}) == data:
        return UNCHANGED

    logger.info(f"Updating configmap {namespace}/{name}")
    existing.data = dict(data)
    try:
        api.replace_namespaced_config_map(
            name=name,
            namespace=namespace,
            body=existing,
            field_manager=FIELD_MANAGER,
        )
    except client.exceptions.ApiException as e:
        raise ReconcilerError.wrap(e, f"Could not update configmap {name}").with_event(event).with_condition(condition) from e
    return UPDATED
