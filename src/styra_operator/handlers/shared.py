"""Shared state and Kubernetes helpers for handlers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from kubernetes import client

from ..config import ProjectConfig
from ..services.das.base import DASClient
from ..services.ocp.base import ControlPlaneClient
from ..services.s3.base import S3AdminClient
from ..services.webhook import DatasourceWebhook
from ..utils.locks import KeyedLocks

RESYNC_INTERVAL_SECONDS = int(os.getenv("RESYNC_INTERVAL_SECONDS", "300"))


@dataclass
class OperatorContext:
    """Configuration and clients the handlers reconcile with.

    Built once at operator startup and handed to the kopf handlers through
    the operator memo; tests build one from fakes.
    """

    config: ProjectConfig
    das: DASClient | None
    webhook: DatasourceWebhook
    core_api: Any
    apps_api: Any
    ocp: ControlPlaneClient | None = None
    s3: S3AdminClient | None = None
    locks: KeyedLocks = field(default_factory=KeyedLocks)


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    from kubernetes import config

    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


def get_core_api() -> client.CoreV1Api:
    """Get Kubernetes CoreV1Api client.

    Returns:
        CoreV1Api instance
    """
    return client.CoreV1Api()


def get_apps_api() -> client.AppsV1Api:
    """Get Kubernetes AppsV1Api client.

    Returns:
        AppsV1Api instance
    """
    return client.AppsV1Api()
