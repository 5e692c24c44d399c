"""Builders for DAS system configurations."""

from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlparse

from ..config import ProjectConfig
from ..constants import COND_SYSTEM_CONFIG_UPDATED, EVENT_ERROR_UPDATE_SYSTEM
from ..errors import ReconcilerError

logger = logging.getLogger(__name__)

URL_PATH_PATTERN = re.compile(r"^[a-zA-Z0-9\-._~!$&'()*+,;=:@/]*$")


def join_path(*parts: str) -> str:
    """Slash-join the non-empty parts."""
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


def display_name(meta: dict[str, Any], config: ProjectConfig) -> str:
    """Build the DAS display name of a System.

    Args:
        meta: System metadata
        config: Project configuration

    Returns:
        ``<prefix>/<namespace>/<name>/<suffix>`` without empty parts
    """
    return join_path(
        config.system_prefix,
        meta.get("namespace", ""),
        meta.get("name", ""),
        config.system_suffix,
    )


def git_secret_id(system_id: str) -> str:
    return join_path("systems", system_id, "git")


def is_url_valid(url: str) -> bool:
    """Check a source control URL.

    An empty URL is valid. Otherwise the scheme must be http or https and the
    path may only contain URL path characters.
    """
    if url.strip() == "":
        return True

    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False
    return URL_PATH_PATTERN.match(parsed.path) is not None


def expected_value(expected: dict[str, Any] | None) -> Any:
    """Resolve the expected value of an allowed mapping.

    Exactly one of ``string``, ``boolean`` and ``integer`` is used when it is
    the only one set; anything else means ``True``.
    """
    expected = expected or {}
    present = [key for key in ("string", "boolean", "integer") if expected.get(key) is not None]
    if len(present) == 1:
        return expected[present[0]]
    return True


def _decision_mapping_from_spec(mapping: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}

    allowed = mapping.get("allowed")
    if allowed is not None:
        allowed_cfg: dict[str, Any] = {"path": allowed.get("path", "")}
        if "expected" in allowed and allowed["expected"] is not None:
            allowed_cfg["expected"] = expected_value(allowed["expected"])
        if allowed.get("negated"):
            allowed_cfg["negated"] = True
        result["allowed"] = allowed_cfg

    columns = mapping.get("columns") or []
    if columns:
        result["columns"] = [{"key": c.get("key", ""), "path": c.get("path", "")} for c in columns]

    reason_path = (mapping.get("reason") or {}).get("path", "")
    if reason_path:
        result["reason"] = {"path": reason_path}

    return result


def spec_to_system_config(
    meta: dict[str, Any],
    spec: dict[str, Any],
    system_id: str,
    config: ProjectConfig,
) -> dict[str, Any]:
    """Build the desired DAS system config from a System spec.

    Args:
        meta: System metadata
        spec: System spec
        system_id: DAS id of the system
        config: Project configuration

    Returns:
        System config request body

    Raises:
        ReconcilerError: If the source control URL is invalid
    """
    delta_bundles = True
    if config.enable_delta_bundles_default is not None:
        delta_bundles = config.enable_delta_bundles_default
    if spec.get("enableDeltaBundles") is not None:
        delta_bundles = spec["enableDeltaBundles"]

    cfg: dict[str, Any] = {
        "name": display_name(meta, config),
        "type": "custom",
        "read_only": config.read_only,
        "bundle_download": {"delta_bundles": delta_bundles},
    }

    mappings = spec.get("decisionMappings") or []
    if mappings:
        cfg["decision_mappings"] = {
            m.get("name", ""): _decision_mapping_from_spec(m) for m in mappings
        }

    source_control = spec.get("sourceControl")
    if source_control is not None:
        origin = source_control.get("origin") or {}
        if not is_url_valid(origin.get("url", "")):
            raise (
                ReconcilerError("Invalid URL for source control")
                .with_event(EVENT_ERROR_UPDATE_SYSTEM)
                .with_condition(COND_SYSTEM_CONFIG_UPDATED)
            )

        git = {
            "commit": "",
            "credentials": git_secret_id(system_id),
            "path": origin.get("path", ""),
            "reference": "",
            "url": origin.get("url", ""),
        }
        if origin.get("commit"):
            git["commit"] = origin["commit"]
        elif origin.get("reference"):
            git["reference"] = origin["reference"]
        cfg["source_control"] = {"origin": git}

    if spec.get("discoveryOverrides") is not None:
        cfg["deployment_parameters"] = {"discovery": spec["discoveryOverrides"]}

    return cfg


def _normalize_origin(source_control: dict[str, Any] | None) -> dict[str, str] | None:
    if not source_control:
        return None
    origin = source_control.get("origin") or {}
    return {key: origin.get(key) or "" for key in ("commit", "credentials", "path", "reference", "url")}


def _normalize_mapping(mapping: dict[str, Any]) -> dict[str, Any]:
    columns = [
        {"key": c.get("key", ""), "path": c.get("path", ""), "type": c.get("type", "")}
        for c in mapping.get("columns") or []
    ]
    allowed = mapping.get("allowed")
    reason = mapping.get("reason")
    return {
        "allowed": None
        if allowed is None
        else {
            "expected": allowed.get("expected"),
            "negated": bool(allowed.get("negated", False)),
            "path": allowed.get("path", ""),
        },
        "columns": sorted(columns, key=lambda c: c["key"]),
        "reason": None if not reason else {"path": reason.get("path", "")},
    }


def decision_mappings_equal(
    a: dict[str, Any] | None,
    b: dict[str, Any] | None,
) -> bool:
    """Compare decision mappings, ignoring the order of columns.

    An absent and an empty mapping set compare equal.
    """
    a = a or {}
    b = b or {}
    if a.keys() != b.keys():
        return False
    return all(_normalize_mapping(a[name]) == _normalize_mapping(b[name]) for name in a)


def system_needs_update(
    cfg: dict[str, Any] | None,
    expected: dict[str, Any],
    config: ProjectConfig,
) -> bool:
    """Decide whether the DAS system differs materially from the desired config.

    Args:
        cfg: Observed system config, or None when nothing was fetched
        expected: Desired config from :func:`spec_to_system_config`
        config: Project configuration

    Returns:
        True when the system must be updated
    """
    if cfg is None:
        logger.info("System needs update: no observed config")
        return True

    if bool(cfg.get("read_only", False)) != config.read_only:
        logger.info("System needs update: read only is not equal")
        return True

    bundle_download = cfg.get("bundle_download")
    if (
        bundle_download is None
        or bool(bundle_download.get("delta_bundles", False))
        != expected["bundle_download"]["delta_bundles"]
    ):
        logger.info("System needs update: delta bundle setting not equal")
        return True

    if _normalize_origin(expected.get("source_control")) != _normalize_origin(cfg.get("source_control")):
        logger.info("System needs update: source control is not equal")
        return True

    if expected["name"] != cfg.get("name"):
        logger.info("System needs update: system names are not equal")
        return True

    if not decision_mappings_equal(expected.get("decision_mappings"), cfg.get("decision_mappings")):
        logger.info("System needs update: decision mappings are not equal")
        return True

    return False
