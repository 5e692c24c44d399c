"""Handler for GlobalDatasource CRD."""

from __future__ import annotations

from typing import Any

import kopf
from kubernetes import client

from ..builders.system import join_path
from ..constants import (
    API_GROUP_VERSION_GLOBAL_DATASOURCE,
    EVENT_ERROR_CREDENTIALS_SECRET_FETCH,
    KIND_GLOBAL_DATASOURCE,
    SECRET_KEY_GIT_NAME,
    SECRET_KEY_GIT_SECRET,
)
from ..errors import ReconcilerError, is_not_found
from ..utils.events import emit_reconcile_completed
from ..utils.secrets import read_secret_data
from .base import BaseHandler, Phase, ReconcileState
from .shared import RESYNC_INTERVAL_SECONDS, OperatorContext


def global_secret_id(name: str) -> str:
    return join_path("libraries", "global", name, "git")


def global_datasource_id(name: str) -> str:
    return join_path("global", name)


def datasource_request(spec: dict[str, Any], name: str, with_credentials: bool) -> dict[str, Any]:
    """Build the upsert request for a GlobalDatasource."""
    request: dict[str, Any] = {
        "category": spec.get("category", ""),
        "description": spec.get("description", ""),
        "commit": spec.get("commit", ""),
        "reference": spec.get("reference", ""),
        "url": spec.get("url", ""),
        "path": spec.get("path", ""),
        "enabled": spec.get("enabled", True) is not False,
    }
    if with_credentials:
        request["credentials"] = global_secret_id(name)
    return request


def datasource_needs_update(
    spec: dict[str, Any],
    name: str,
    datasource: dict[str, Any],
    with_credentials: bool,
) -> bool:
    """Check whether the DAS datasource drifted from the GlobalDatasource spec."""
    desired = datasource_request(spec, name, False)
    for key, value in desired.items():
        observed = datasource.get(key)
        if key == "enabled":
            observed = observed is not False
        elif observed is None:
            observed = ""
        if observed != value:
            return True
    if datasource.get("credentials", "") != global_secret_id(name):
        return with_credentials
    return False


class GlobalDatasourceHandler(BaseHandler):
    """Handler for GlobalDatasource resources."""

    def __init__(self, context: OperatorContext):
        """Initialize global datasource handler."""
        super().__init__(KIND_GLOBAL_DATASOURCE, context)

    @property
    def das(self) -> Any:
        if self.context.das is None:
            raise ReconcilerError("DAS client is not configured")
        return self.context.das

    def reconcile_resource(self, body: Any, patch: kopf.Patch) -> None:
        """Reconcile GlobalDatasource resource."""
        state = ReconcileState(body, patch, track_status=False)
        meta = state.meta

        if not self.is_managed(meta):
            self.log_info(meta, "This is not a GlobalDatasource we are managing. Skipping reconciliation.")
            return
        if meta.get("deletionTimestamp"):
            return

        self.ensure_finalizer(meta, patch)
        try:
            self.run_phases(
                state,
                [
                    Phase("reconcileCredentials", "", self.reconcile_credentials),
                    Phase("reconcileDatasource", "", self.reconcile_datasource),
                ],
            )
        except ReconcilerError as e:
            self.handle_reconciler_error(state, e)

        emit_reconcile_completed(body)
        self.log_info(meta, "Reconciliation completed", event="reconcile", reason="ReconciliationCompleted")

    def reconcile_credentials(self, state: ReconcileState) -> None:
        """Store the git credentials of the datasource in DAS.

        An explicit ``credentialsSecretRef`` wins over the default git
        credentials. No match means no credentials are written.
        """
        ref = state.spec.get("credentialsSecretRef")
        secret_id = global_secret_id(state.name)

        if ref:
            try:
                data = read_secret_data(self.context.core_api, ref.get("namespace", ""), ref.get("name", ""))
            except client.exceptions.ApiException as e:
                raise ReconcilerError.wrap(e, "Could not fetch credentials Secret").with_event(
                    EVENT_ERROR_CREDENTIALS_SECRET_FETCH
                ) from e
            user = data.get(SECRET_KEY_GIT_NAME, "")
            password = data.get(SECRET_KEY_GIT_SECRET, "")
            if not user:
                raise ReconcilerError(f"Key `{SECRET_KEY_GIT_NAME}` is required in git credential secret")
            if not password:
                raise ReconcilerError(f"Key `{SECRET_KEY_GIT_SECRET}` is required in git credential secret")
            state.scratch["credentials"] = True
        else:
            credential = self.context.config.get_git_credential_for_repo(state.spec.get("url", ""))
            if credential is None:
                self.log_info(state.meta, "Could not find matching credentials", url=state.spec.get("url", ""))
                state.scratch["credentials"] = False
                return
            user, password = credential.user, credential.password
            state.scratch["credentials"] = True

        try:
            self.das.create_update_secret(secret_id, user, password)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not update Styra secret") from e

    def reconcile_datasource(self, state: ReconcileState) -> None:
        ds_id = global_datasource_id(state.name)
        with_credentials = bool(state.scratch.get("credentials"))
        try:
            datasource = self.das.get_datasource(ds_id)
            update = datasource_needs_update(state.spec, state.name, datasource, with_credentials)
        except Exception as e:
            if not is_not_found(e):
                raise ReconcilerError.wrap(e, "Could not fetch datasource") from e
            update = True

        if not update:
            return
        self.log_info(state.meta, f"Upserting datasource {ds_id}")
        try:
            self.das.upsert_datasource(ds_id, datasource_request(state.spec, state.name, with_credentials))
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not upsert datasource") from e

    def delete_resource(self, body: Any, patch: kopf.Patch) -> None:
        """Handle GlobalDatasource resource deletion."""
        meta = body.get("metadata") or {}
        if not self.is_managed(meta):
            return
        self.log_info(meta, "GlobalDatasource is being deleted", event="deletion", reason="Deletion")
        self.remove_finalizer(meta, patch)


def _handler(memo: kopf.Memo) -> GlobalDatasourceHandler:
    return GlobalDatasourceHandler(memo.context)


@kopf.on.create(API_GROUP_VERSION_GLOBAL_DATASOURCE, KIND_GLOBAL_DATASOURCE)
@kopf.on.update(API_GROUP_VERSION_GLOBAL_DATASOURCE, KIND_GLOBAL_DATASOURCE)
@kopf.on.resume(API_GROUP_VERSION_GLOBAL_DATASOURCE, KIND_GLOBAL_DATASOURCE)
def handle_global_datasource(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle GlobalDatasource resource reconciliation."""
    handler = _handler(memo)
    handler.reconcile_with_metrics(body, lambda: handler.reconcile(body, patch))


@kopf.timer(
    API_GROUP_VERSION_GLOBAL_DATASOURCE,
    KIND_GLOBAL_DATASOURCE,
    interval=RESYNC_INTERVAL_SECONDS,
    initial_delay=RESYNC_INTERVAL_SECONDS,
    idle=RESYNC_INTERVAL_SECONDS,
)
def resync_global_datasource(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Periodically reconcile GlobalDatasource resources."""
    handler = _handler(memo)
    handler.reconcile_with_metrics(body, lambda: handler.reconcile(body, patch))


@kopf.on.delete(API_GROUP_VERSION_GLOBAL_DATASOURCE, KIND_GLOBAL_DATASOURCE)
def handle_global_datasource_delete(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle GlobalDatasource resource deletion."""
    _handler(memo).delete(body, patch)
