"""System reconcile against the self-hosted control plane."""

from __future__ import annotations

import logging
from typing import Any

from ..builders.opaconfig import build_ocp_opa_config
from ..builders.system import display_name
from ..constants import (
    COND_DATASOURCES_UPDATED,
    COND_OPA_CONFIGMAP_UPDATED,
    COND_OPA_UP_TO_DATE,
    COND_S3_CREDENTIALS_UPDATED,
    COND_SYSTEM_CONFIG_UPDATED,
    CONFIGMAP_KEY_OPA,
    EVENT_ERROR_CALL_WEBHOOK,
    EVENT_ERROR_DELETE_OCP_RESOURCES,
    EVENT_ERROR_OPA_CONFIGMAP,
    EVENT_ERROR_PUT_BUNDLE,
    EVENT_ERROR_PUT_SOURCE,
)
from ..errors import ReconcilerError, find_http_error, is_not_found
from ..utils.errors import sanitize_exception
from ..utils.events import emit_warning
from .base import Phase, ReconcileState
from .derived import UNCHANGED, ensure_owned_configmap
from .s3credentials import reconcile_s3_credentials
from .shared import OperatorContext

logger = logging.getLogger(__name__)

BUNDLE_OBJECT = "bundle.tar.gz"


def unique_name(meta: dict[str, Any], context: OperatorContext) -> str:
    """Name of a System on the self-hosted plane: its display name without slashes."""
    return display_name(meta, context.config).replace("/", "-")


def requirements(defaults: list[str], spec_datasources: list[dict[str, Any]] | None) -> list[str]:
    """Default requirements followed by datasource paths, without duplicates."""
    result: list[str] = []
    for req in list(defaults) + [ds.get("path", "") for ds in spec_datasources or []]:
        if req and req not in result:
            result.append(req)
    return result


def bundle_key(name: str) -> str:
    return f"bundles/{name}/{BUNDLE_OBJECT}"


def bundle_labels(state: ReconcileState, name: str) -> dict[str, str]:
    return {"unique-name": name, "system-name": state.name, "system-namespace": state.namespace}


class OCPReconciler:
    """Builds the phases of a System on the self-hosted control plane."""

    def __init__(self, context: OperatorContext):
        self.context = context

    @property
    def ocp(self) -> Any:
        if self.context.ocp is None:
            raise ReconcilerError("Self-hosted control plane client is not configured")
        return self.context.ocp

    def phases(self, state: ReconcileState) -> list[Phase]:
        state.scratch["unique_name"] = unique_name(state.meta, self.context)
        return [
            Phase("ocpDatasources", COND_DATASOURCES_UPDATED, self.reconcile_sources),
            Phase("ocpSystemSource", COND_SYSTEM_CONFIG_UPDATED, self.reconcile_system_source),
            Phase("ocpS3Credentials", COND_S3_CREDENTIALS_UPDATED, self.reconcile_s3_credentials),
            Phase("ocpOPAConfigMap", COND_OPA_CONFIGMAP_UPDATED, self.reconcile_opa_configmap),
        ]

    def reconcile_sources(self, state: ReconcileState) -> None:
        name = state.scratch["unique_name"]
        for ds in state.spec.get("datasources") or []:
            source_id = ds.get("path", "")
            if not source_id:
                continue
            try:
                self.ocp.get_source(source_id)
                continue
            except Exception as e:
                if not is_not_found(e):
                    raise ReconcilerError.wrap(e, f"Could not get source {source_id}").with_event(
                        EVENT_ERROR_PUT_SOURCE
                    ) from e

            logger.info(f"Creating source {source_id}")
            try:
                self.ocp.put_source(source_id, {"name": source_id})
            except Exception as e:
                raise ReconcilerError.wrap(e, f"Could not create source {source_id}").with_event(
                    EVENT_ERROR_PUT_SOURCE
                ) from e

            try:
                self.context.webhook.system_datasource_changed(name, source_id)
            except Exception as e:
                message = f"Could not call datasource changed webhook: {sanitize_exception(e)}"
                logger.warning(message)
                emit_warning(state.body, EVENT_ERROR_CALL_WEBHOOK, message)

    def reconcile_system_source(self, state: ReconcileState) -> None:
        config = self.context.config
        name = state.scratch["unique_name"]
        reqs = [{"source": r} for r in requirements(config.ocp.default_requirements, state.spec.get("datasources"))]

        source: dict[str, Any] = {"name": name, "requirements": reqs}
        origin = (state.spec.get("sourceControl") or {}).get("origin")
        if origin:
            source["git"] = {
                "repo": origin.get("url", ""),
                "reference": origin.get("reference", ""),
                "commit": origin.get("commit", ""),
                "path": origin.get("path", ""),
                "credentials": config.ocp.git_credential_id,
            }
        try:
            self.ocp.put_source(name, source)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not put system source").with_event(EVENT_ERROR_PUT_SOURCE) from e

        storage = config.ocp.s3
        bundle = {
            "labels": bundle_labels(state, name),
            "object_storage": {
                "aws": {
                    "bucket": storage.bucket,
                    "key": bundle_key(name),
                    "region": storage.region,
                    "credentials": storage.ocp_credential_id,
                    "url": storage.url,
                }
            },
            "requirements": [{"source": name}],
        }
        try:
            self.ocp.put_bundle(name, bundle)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not put system bundle").with_event(EVENT_ERROR_PUT_BUNDLE) from e
        state.system_id = name

    def reconcile_s3_credentials(self, state: ReconcileState) -> None:
        if self.context.s3 is None:
            raise ReconcilerError("Object storage admin client is not configured")
        storage = self.context.config.ocp.s3
        outcome = reconcile_s3_credentials(
            self.context.s3,
            self.context.core_api,
            state.body,
            storage.bucket,
            storage.region,
            state.scratch["unique_name"],
            labels=state.labels,
        )
        if outcome != UNCHANGED:
            state.set_condition(COND_OPA_UP_TO_DATE, False)

    def reconcile_opa_configmap(self, state: ReconcileState) -> None:
        config = self.context.config
        name = state.scratch["unique_name"]
        storage = config.ocp.s3
        try:
            rendered = build_ocp_opa_config(
                name,
                f"{storage.url.rstrip('/')}/{storage.bucket}",
                bundle_key(name),
                bundle_labels(state, name),
                log_service_url=config.ocp.decision_logs.url,
                log_token_path=config.ocp.decision_logs.token_path,
                custom_config=state.spec.get("customOPAConfig"),
            )
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not render OPA config").with_event(EVENT_ERROR_OPA_CONFIGMAP) from e

        outcome = ensure_owned_configmap(
            self.context.core_api,
            state.body,
            f"{state.name}-opa",
            {CONFIGMAP_KEY_OPA: rendered},
            labels=state.labels,
            condition=COND_OPA_CONFIGMAP_UPDATED,
            event=EVENT_ERROR_OPA_CONFIGMAP,
        )
        if outcome != UNCHANGED:
            state.set_condition(COND_OPA_UP_TO_DATE, False)

    def delete(self, state: ReconcileState) -> None:
        """Remove the bundle and sources of a System.

        Raises:
            ReconcilerError: On any failure other than an already deleted
                resource or a datasource source that is still referenced
        """
        name = unique_name(state.meta, self.context)
        try:
            self._tolerate_not_found(self.ocp.delete_bundle, name)
            self._tolerate_not_found(self.ocp.delete_source, name)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not delete system resources").with_event(
                EVENT_ERROR_DELETE_OCP_RESOURCES
            ) from e

        for ds in state.spec.get("datasources") or []:
            source_id = ds.get("path", "")
            if not source_id:
                continue
            try:
                self._tolerate_not_found(self.ocp.delete_source, source_id)
            except Exception as e:
                http_error = find_http_error(e)
                if http_error is not None and http_error.status_code == 500:
                    logger.info(f"Source {source_id} is still referenced, keeping it")
                    continue
                raise ReconcilerError.wrap(e, f"Could not delete source {source_id}").with_event(
                    EVENT_ERROR_DELETE_OCP_RESOURCES
                ) from e

    @staticmethod
    def _tolerate_not_found(fn: Any, resource_id: str) -> None:
        try:
            fn(resource_id)
        except Exception as e:
            if not is_not_found(e):
                raise
            logger.debug(f"{resource_id} already deleted")
