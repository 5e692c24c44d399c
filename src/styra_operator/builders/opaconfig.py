"""Builders for OPA and SLP sidecar configuration."""

from __future__ import annotations

import copy
from typing import Any

import yaml

from ..constants import OPA_TOKEN_PATH, SLP_TOKEN_PATH
from ..services.das.base import OPAConfig


def deep_merge(base: dict[str, Any], override: dict[str, Any] | None) -> dict[str, Any]:
    """Merge ``override`` on top of ``base`` recursively.

    Nested mappings are merged; any other value in ``override`` replaces the
    value in ``base``. Neither input is modified.

    Args:
        base: Base configuration
        override: User supplied overrides

    Returns:
        Merged configuration
    """
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def render_yaml(data: dict[str, Any]) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def _labels(opa_config: OPAConfig) -> dict[str, str]:
    return {"system-id": opa_config.system_id, "system-type": opa_config.system_type}


def _bearer(url: str, name: str, token_path: str) -> dict[str, Any]:
    return {"name": name, "url": url, "credentials": {"bearer": {"token_path": token_path}}}


def _with_decision_log_headers(
    data: dict[str, Any],
    headers: list[str] | None,
) -> dict[str, Any]:
    if headers is not None:
        data["decision_logs"] = {"request_context": {"http": {"headers": list(headers)}}}
    return data


def build_opa_config(
    opa_config: OPAConfig,
    decision_log_headers: list[str] | None = None,
    custom_config: dict[str, Any] | None = None,
) -> str:
    """Render the OPA config for a System talking directly to DAS.

    Args:
        opa_config: Connection details from DAS
        decision_log_headers: Request headers to include in decision logs
        custom_config: User overrides merged on top

    Returns:
        Rendered ``opa-conf.yaml``
    """
    data: dict[str, Any] = {
        "services": [
            _bearer(opa_config.host_url, "styra", OPA_TOKEN_PATH),
            _bearer(f"{opa_config.host_url}/bundles", "styra-bundles", OPA_TOKEN_PATH),
        ],
        "labels": _labels(opa_config),
        "discovery": {
            "name": "discovery",
            "prefix": f"/systems/{opa_config.system_id}",
            "service": "styra",
        },
    }
    _with_decision_log_headers(data, decision_log_headers)
    return render_yaml(deep_merge(data, custom_config))


def build_opa_config_with_slp(
    opa_config: OPAConfig,
    slp_url: str,
    decision_log_headers: list[str] | None = None,
    custom_config: dict[str, Any] | None = None,
) -> str:
    """Render the OPA config for a System served by a local plane."""
    data: dict[str, Any] = {
        "services": [{"name": "styra", "url": slp_url}],
        "labels": _labels(opa_config),
        "discovery": {"name": "discovery", "service": "styra"},
    }
    _with_decision_log_headers(data, decision_log_headers)
    return render_yaml(deep_merge(data, custom_config))


def build_slp_config(opa_config: OPAConfig) -> str:
    """Render the local plane config of a System."""
    data = {
        "services": [_bearer(opa_config.host_url, "styra", SLP_TOKEN_PATH)],
        "labels": _labels(opa_config),
        "discovery": {
            "name": "discovery",
            "resource": f"/systems/{opa_config.system_id}/discovery",
            "service": "styra",
        },
    }
    return render_yaml(data)


def build_ocp_opa_config(
    unique_name: str,
    bundle_url: str,
    bundle_resource: str,
    labels: dict[str, str],
    log_service_url: str = "",
    log_token_path: str = "",
    custom_config: dict[str, Any] | None = None,
) -> str:
    """Render the OPA config for a System on the self-hosted control plane.

    Bundles are read from object storage using environment credentials. When a
    decision log service is configured, decision logs are sent there.

    Args:
        unique_name: Unique system name, used as bundle name
        bundle_url: Object storage URL of the bundle bucket
        bundle_resource: Object key of the bundle
        labels: Labels reported by OPA
        log_service_url: Decision log service URL
        log_token_path: Bearer token path for the decision log service
        custom_config: User overrides merged on top

    Returns:
        Rendered ``opa-conf.yaml``
    """
    services: list[dict[str, Any]] = [
        {
            "name": "s3",
            "url": bundle_url,
            "credentials": {"s3_signing": {"environment_credentials": {}}},
        }
    ]
    data: dict[str, Any] = {
        "services": services,
        "bundles": {unique_name: {"service": "s3", "resource": bundle_resource}},
        "labels": dict(labels),
    }
    if log_service_url:
        services.append(_bearer(log_service_url, "logs", log_token_path))
        data["decision_logs"] = {"service": "logs"}
    return render_yaml(deep_merge(data, custom_config))
