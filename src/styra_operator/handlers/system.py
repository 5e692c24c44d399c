"""Handler for System CRD."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import kopf
from kubernetes import client

from .. import metrics
from ..builders.opaconfig import build_opa_config, build_opa_config_with_slp, build_slp_config
from ..builders.system import display_name, git_secret_id, spec_to_system_config, system_needs_update
from ..constants import (
    ANNOTATION_MIGRATION_ID,
    ANNOTATION_RESTARTED_AT,
    API_GROUP_VERSION_SYSTEM,
    COND_CREATED_IN_STYRA,
    COND_DATASOURCES_UPDATED,
    COND_GIT_CREDENTIALS_UPDATED,
    COND_OPA_CONFIGMAP_UPDATED,
    COND_OPA_TOKEN_UPDATED,
    COND_OPA_UP_TO_DATE,
    COND_SLP_CONFIGMAP_UPDATED,
    COND_SLP_UP_TO_DATE,
    COND_SUBJECTS_UPDATED,
    COND_SYSTEM_CONFIG_UPDATED,
    CONFIGMAP_KEY_OPA,
    CONFIGMAP_KEY_SLP,
    EVENT_ERROR_CONVERT_OPA_CONF,
    EVENT_ERROR_CREATE_SYSTEM,
    EVENT_ERROR_CREATE_UPDATE_SECRET,
    EVENT_ERROR_CREDENTIALS_SECRET_FETCH,
    EVENT_ERROR_CREDENTIALS_SECRET_NOT_FOUND,
    EVENT_ERROR_DELETE_DEFAULT_POLICY,
    EVENT_ERROR_DELETE_SYSTEM,
    EVENT_ERROR_FETCH_OPA_CONFIG,
    EVENT_ERROR_FETCH_SYSTEM,
    EVENT_ERROR_OPA_CONFIGMAP,
    EVENT_ERROR_OPA_TOKEN_NO_TOKEN,
    EVENT_ERROR_OPA_TOKEN_SECRET,
    EVENT_ERROR_RECONCILE_ID,
    EVENT_ERROR_RESTART_SLPS,
    EVENT_ERROR_SLP_CONFIGMAP,
    EVENT_ERROR_UPDATE_SYSTEM,
    FIELD_MANAGER,
    KIND_SYSTEM,
    PHASE_CREATED,
    SECRET_KEY_GIT_NAME,
    SECRET_KEY_GIT_PASSWORD_DEPRECATED,
    SECRET_KEY_GIT_SECRET,
    SECRET_KEY_GIT_USERNAME_DEPRECATED,
    SECRET_KEY_TOKEN,
)
from ..errors import ReconcilerError, is_conflict, is_not_found
from ..services.das.base import OPAConfig
from ..utils.conditions import is_condition_false
from ..utils.events import emit_reconcile_completed, emit_warning
from ..utils.labels import uses_ocp
from ..utils.secrets import read_secret_data
from .base import BaseHandler, Phase, ReconcileState
from .datasources import reconcile_system_datasources
from .derived import UNCHANGED, ensure_owned_configmap, ensure_owned_secret
from .ocp import OCPReconciler
from .shared import RESYNC_INTERVAL_SECONDS, OperatorContext
from .subjects import invite_missing_system_users, reconcile_system_role_bindings

DEFAULT_POLICIES = ("rules", "test")


def slp_url(local_plane: str) -> str:
    return f"http://{local_plane}/v1"


class SystemHandler(BaseHandler):
    """Handler for System resources."""

    def __init__(self, context: OperatorContext):
        """Initialize system handler."""
        super().__init__(KIND_SYSTEM, context)

    @property
    def das(self) -> Any:
        if self.context.das is None:
            raise ReconcilerError("DAS client is not configured")
        return self.context.das

    def reconcile_resource(self, body: Any, patch: kopf.Patch) -> None:
        """Reconcile System resource."""
        state = ReconcileState(body, patch)
        meta = state.meta

        if not self.is_managed(meta):
            self.log_info(meta, "This is not a System we are managing. Skipping reconciliation.")
            metrics.delete_system_ready(state.name, state.namespace, state.system_id)
            return

        if meta.get("deletionTimestamp"):
            return

        self.ensure_finalizer(meta, patch)

        try:
            if uses_ocp(state.labels):
                if not self.context.config.ocp.enabled:
                    self.log_info(meta, "Self-hosted control plane is not enabled. Skipping reconciliation.")
                    return
                phases = OCPReconciler(self.context).phases(state)
            else:
                phases = self.saas_phases(state)

            self.run_phases(state, phases)
            self.finish(state)
        except ReconcilerError as e:
            metrics.set_system_ready(state.name, state.namespace, state.system_id, False)
            self.handle_reconciler_error(state, e)

        state.flush()
        metrics.set_system_ready(state.name, state.namespace, state.system_id, state.status["ready"])

    def saas_phases(self, state: ReconcileState) -> list[Phase]:
        phases = [
            Phase("resolveIdentity", COND_CREATED_IN_STYRA, self.resolve_identity),
            Phase("reconcileCredentials", COND_GIT_CREDENTIALS_UPDATED, self.reconcile_credentials),
            Phase("updateSystem", COND_SYSTEM_CONFIG_UPDATED, self.reconcile_system_config),
            Phase("reconcileSubjects", COND_SUBJECTS_UPDATED, self.reconcile_subjects),
            Phase("reconcileDatasources", COND_DATASOURCES_UPDATED, self.reconcile_datasources),
            Phase("reconcileOPAToken", COND_OPA_TOKEN_UPDATED, self.reconcile_opa_token),
            Phase("reconcileOPAConfigMap", COND_OPA_CONFIGMAP_UPDATED, self.reconcile_opa_configmap),
        ]
        if self._local_plane(state):
            phases.append(
                Phase("reconcileSLPConfigMap", COND_SLP_CONFIGMAP_UPDATED, self.reconcile_slp_configmap)
            )
        return phases

    @staticmethod
    def _local_plane(state: ReconcileState) -> str:
        return (state.spec.get("localPlane") or {}).get("name", "")

    # Identity

    def resolve_identity(self, state: ReconcileState) -> None:
        config = self.context.config
        system_id = state.system_id
        migration_id = state.annotations.get(ANNOTATION_MIGRATION_ID, "")

        if config.enable_migrations and not system_id and migration_id:
            self.log_info(state.meta, f"Use migration id {migration_id} to fetch system from Styra DAS")
            state.scratch["cfg"] = self._get_system(migration_id)
            self._reconcile_id(state, migration_id)
            return

        if system_id:
            try:
                state.scratch["cfg"] = self.das.get_system(system_id)
                return
            except Exception as e:
                if not is_not_found(e):
                    raise ReconcilerError.wrap(e, "Could not fetch system from Styra API").with_event(
                        EVENT_ERROR_FETCH_SYSTEM
                    ) from e

            state.scratch["cfg"] = None
            try:
                response = self._create_system_with_id(state, system_id)
                new_id = response.get("id") or system_id
            except ReconcilerError as e:
                if not is_conflict(e):
                    raise
                self.log_info(state.meta, "System still found in Styra cache, creating new system")
                new_id = self._create_system(state).get("id", "")
            self._post_system_creation(state, new_id)
            return

        name = display_name(state.meta, config)
        try:
            cfg = self.das.get_system_by_name(name)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not fetch system from Styra API").with_event(
                EVENT_ERROR_FETCH_SYSTEM
            ) from e

        state.scratch["cfg"] = cfg
        if cfg is not None:
            self._reconcile_id(state, cfg.get("id", ""))
            return

        response = self._create_system(state)
        self._post_system_creation(state, response.get("id", ""))

    def _get_system(self, system_id: str) -> dict[str, Any]:
        try:
            return self.das.get_system(system_id)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not fetch system from Styra API").with_event(
                EVENT_ERROR_FETCH_SYSTEM
            ) from e

    def _creation_request(self, state: ReconcileState) -> dict[str, Any]:
        try:
            request = spec_to_system_config(state.meta, state.spec, state.system_id, self.context.config)
        except ReconcilerError as e:
            raise (
                ReconcilerError.wrap(e, "Error while reading system spec")
                .with_event(EVENT_ERROR_CREATE_SYSTEM)
                .with_condition(COND_CREATED_IN_STYRA)
            ) from e
        # Credentials are not in DAS yet, and delta bundles cannot be set on creation.
        request.pop("source_control", None)
        request.pop("bundle_download", None)
        return request

    def _create_system_with_id(self, state: ReconcileState, system_id: str) -> dict[str, Any]:
        self.log_info(state.meta, f"Creating system in Styra with id {system_id}")
        request = self._creation_request(state)
        try:
            return self.das.put_system(system_id, request, {"If-None-Match": "*"})
        except Exception as e:
            raise (
                ReconcilerError.wrap(e, f"Could not create system in Styra with id {system_id}")
                .with_event(EVENT_ERROR_CREATE_SYSTEM)
                .with_condition(COND_CREATED_IN_STYRA)
            ) from e

    def _create_system(self, state: ReconcileState) -> dict[str, Any]:
        self.log_info(state.meta, "Creating system in Styra")
        request = self._creation_request(state)
        try:
            response = self.das.create_system(request)
        except Exception as e:
            raise (
                ReconcilerError.wrap(e, "Could not create system in Styra")
                .with_event(EVENT_ERROR_CREATE_SYSTEM)
                .with_condition(COND_CREATED_IN_STYRA)
            ) from e
        self.log_info(state.meta, "Created system in Styra")
        return response

    def _post_system_creation(self, state: ReconcileState, system_id: str) -> None:
        for policy in DEFAULT_POLICIES:
            try:
                self.das.delete_policy(f"systems/{system_id}/{policy}")
            except Exception as e:
                raise ReconcilerError.wrap(e, "Could not delete default policy").with_event(
                    EVENT_ERROR_DELETE_DEFAULT_POLICY
                ) from e
        self._reconcile_id(state, system_id)

    def _reconcile_id(self, state: ReconcileState, system_id: str) -> None:
        if not system_id:
            raise ReconcilerError("ID is empty").with_event(EVENT_ERROR_RECONCILE_ID)
        state.system_id = system_id

    # Credentials

    def reconcile_credentials(self, state: ReconcileState) -> None:
        source_control = state.spec.get("sourceControl")
        if not source_control:
            self.log_info(state.meta, "No source control settings defined. Skipping credentials reconciliation")
            return

        origin = source_control.get("origin") or {}
        secret_name = origin.get("credentialsSecretName", "")
        if not secret_name:
            credential = self.context.config.get_git_credential_for_repo(origin.get("url", ""))
            if credential is None:
                self.log_info(state.meta, "Could not find matching credentials", url=origin.get("url", ""))
                return
            username, password = credential.user, credential.password
        else:
            username, password = self._read_git_secret(state, secret_name)

        try:
            self.das.create_update_secret(git_secret_id(state.system_id), username, password)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not create or update secret in Styra").with_event(
                EVENT_ERROR_CREATE_UPDATE_SECRET
            ) from e

    def _read_git_secret(self, state: ReconcileState, secret_name: str) -> tuple[str, str]:
        try:
            data = read_secret_data(self.context.core_api, state.namespace, secret_name)
        except client.exceptions.ApiException as e:
            if e.status == 404:
                raise ReconcilerError.wrap(e, "Could not find credentials Secret").with_event(
                    EVENT_ERROR_CREDENTIALS_SECRET_NOT_FOUND
                ) from e
            raise ReconcilerError.wrap(e, "Could not fetch credentials Secret").with_event(
                EVENT_ERROR_CREDENTIALS_SECRET_FETCH
            ) from e

        if SECRET_KEY_GIT_NAME in data:
            username = data[SECRET_KEY_GIT_NAME]
        else:
            self.log_info(state.meta, "Using deprecated username field from git credentials secret")
            username = data.get(SECRET_KEY_GIT_USERNAME_DEPRECATED, "")
        if SECRET_KEY_GIT_SECRET in data:
            password = data[SECRET_KEY_GIT_SECRET]
        else:
            self.log_info(state.meta, "Using deprecated password field from git credentials secret")
            password = data.get(SECRET_KEY_GIT_PASSWORD_DEPRECATED, "")
        return username, password

    # System config

    def reconcile_system_config(self, state: ReconcileState) -> None:
        config = self.context.config
        expected = spec_to_system_config(state.meta, state.spec, state.system_id, config)
        if not system_needs_update(state.scratch.get("cfg"), expected, config):
            return

        self.log_info(state.meta, "Updating system")
        try:
            state.scratch["cfg"] = self.das.update_system(state.system_id, expected)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not update Styra system").with_event(
                EVENT_ERROR_UPDATE_SYSTEM
            ) from e

    # Subjects and datasources

    def reconcile_subjects(self, state: ReconcileState) -> None:
        subjects = state.spec.get("subjects")
        config = self.context.config
        invite_missing_system_users(self.das, subjects)
        reconcile_system_role_bindings(
            self.das, state.system_id, subjects, config.system_user_roles, config.sso
        )

    def reconcile_datasources(self, state: ReconcileState) -> None:
        cfg = state.scratch.get("cfg")
        observed = cfg.get("datasources") if cfg else None
        reconcile_system_datasources(
            self.das,
            state.system_id,
            state.spec.get("datasources"),
            observed,
            is_ignored=self.context.config.matches_ignore_pattern,
            notify=self.context.webhook.system_datasource_changed,
            warn=lambda reason, message: emit_warning(state.body, reason, message),
        )

    # Derived resources

    def _mark_stale(self, state: ReconcileState, outcome: str, condition: str) -> None:
        if outcome != UNCHANGED:
            self.log_info(state.meta, f"Derived resource {outcome}, sidecars are outdated")
            state.set_condition(condition, False)

    def reconcile_opa_token(self, state: ReconcileState) -> None:
        try:
            opa_config = self.das.get_opa_config(state.system_id)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not get OPA config from styra API").with_event(
                EVENT_ERROR_FETCH_OPA_CONFIG
            ) from e
        state.scratch["opa_config"] = opa_config

        if not opa_config.token:
            raise ReconcilerError("Cannot create token Secret without a token").with_event(
                EVENT_ERROR_OPA_TOKEN_NO_TOKEN
            )

        outcome = ensure_owned_secret(
            self.context.core_api,
            state.body,
            f"{state.name}-opa-token",
            {SECRET_KEY_TOKEN: opa_config.token},
            labels=state.labels,
            condition=COND_OPA_TOKEN_UPDATED,
            event=EVENT_ERROR_OPA_TOKEN_SECRET,
        )
        stale = COND_SLP_UP_TO_DATE if self._local_plane(state) else COND_OPA_UP_TO_DATE
        self._mark_stale(state, outcome, stale)

    def reconcile_opa_configmap(self, state: ReconcileState) -> None:
        opa_config: OPAConfig = state.scratch["opa_config"]
        config = self.context.config
        custom = state.spec.get("customOPAConfig")
        local_plane = self._local_plane(state)
        try:
            if local_plane:
                rendered = build_opa_config_with_slp(
                    opa_config, slp_url(local_plane), config.opa_decision_log_headers, custom
                )
            else:
                rendered = build_opa_config(opa_config, config.opa_decision_log_headers, custom)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not convert OPA conf to ConfigMap").with_event(
                EVENT_ERROR_CONVERT_OPA_CONF
            ) from e

        outcome = ensure_owned_configmap(
            self.context.core_api,
            state.body,
            f"{state.name}-opa",
            {CONFIGMAP_KEY_OPA: rendered},
            labels=state.labels,
            condition=COND_OPA_CONFIGMAP_UPDATED,
            event=EVENT_ERROR_OPA_CONFIGMAP,
        )
        self._mark_stale(state, outcome, COND_OPA_UP_TO_DATE)

    def reconcile_slp_configmap(self, state: ReconcileState) -> None:
        opa_config: OPAConfig = state.scratch["opa_config"]
        try:
            rendered = build_slp_config(opa_config)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not convert OPA Conf to SLP ConfigMap").with_event(
                EVENT_ERROR_CONVERT_OPA_CONF
            ) from e

        outcome = ensure_owned_configmap(
            self.context.core_api,
            state.body,
            f"{state.name}-slp",
            {CONFIGMAP_KEY_SLP: rendered},
            labels=state.labels,
            condition=COND_SLP_CONFIGMAP_UPDATED,
            event=EVENT_ERROR_SLP_CONFIGMAP,
        )
        self._mark_stale(state, outcome, COND_SLP_UP_TO_DATE)

    # Completion

    def finish(self, state: ReconcileState) -> None:
        """Restart outdated sidecars and mark the System as created."""
        if is_condition_false(state.conditions, COND_SLP_UP_TO_DATE):
            if self.context.config.slp_restart_enabled():
                self.restart_slps(state)
            state.set_condition(COND_SLP_UP_TO_DATE, True)

        if is_condition_false(state.conditions, COND_OPA_UP_TO_DATE):
            state.set_condition(COND_OPA_UP_TO_DATE, True)

        state.status["ready"] = True
        state.status["phase"] = PHASE_CREATED
        state.status["failureMessage"] = ""
        emit_reconcile_completed(state.body)
        self.log_info(state.meta, "Reconciliation completed", event="reconcile", reason="ReconciliationCompleted")

    def restart_slps(self, state: ReconcileState) -> None:
        deployment_type = self.context.config.slp_restart.deployment_type
        if deployment_type.lower() != "statefulset":
            self.log_info(
                state.meta,
                "Restarting SLPs is not supported for this deployment type",
                deployment_type=deployment_type,
            )
            return

        name = self._local_plane(state)
        body = {
            "spec": {
                "template": {
                    "metadata": {
                        "annotations": {
                            ANNOTATION_RESTARTED_AT: datetime.now(timezone.utc).isoformat(),
                        }
                    }
                }
            }
        }
        self.log_info(state.meta, f"Restarting SLPs in StatefulSet {name}")
        try:
            self.context.apps_api.patch_namespaced_stateful_set(
                name=name,
                namespace=state.namespace,
                body=body,
                field_manager=FIELD_MANAGER,
            )
        except client.exceptions.ApiException as e:
            message = (
                "SLP statefulset not found for system with SLP enabled"
                if e.status == 404
                else "Could not patch StatefulSet"
            )
            raise (
                ReconcilerError.wrap(e, message)
                .with_event(EVENT_ERROR_RESTART_SLPS)
                .with_condition(COND_SLP_UP_TO_DATE)
            ) from e

    # Deletion

    def delete_resource(self, body: Any, patch: kopf.Patch) -> None:
        """Handle System resource deletion."""
        state = ReconcileState(body, patch)
        meta = state.meta

        if not self.is_managed(meta) or not self.has_finalizer(meta):
            return

        self.log_info(meta, f"System {state.name} is being deleted", event="deletion", reason="Deletion")
        protected = state.spec.get("deletionProtection")
        if protected is None:
            protected = self.context.config.deletion_protection_default

        try:
            if protected:
                self.log_info(meta, "Deletion protection is enabled, keeping external resources")
            elif uses_ocp(state.labels):
                if self.context.config.ocp.enabled:
                    OCPReconciler(self.context).delete(state)
            elif state.system_id:
                self.log_info(meta, "Deleting system in styra")
                try:
                    self.das.delete_system(state.system_id)
                except Exception as e:
                    raise ReconcilerError.wrap(e, "Could not delete system in styra").with_event(
                        EVENT_ERROR_DELETE_SYSTEM
                    ) from e
        except ReconcilerError as e:
            metrics.set_system_ready(state.name, state.namespace, state.system_id, False)
            self.handle_reconciler_error(state, e)

        self.remove_finalizer(meta, patch)
        metrics.delete_system_ready(state.name, state.namespace, state.system_id)


def _handler(memo: kopf.Memo) -> SystemHandler:
    return SystemHandler(memo.context)


@kopf.on.create(API_GROUP_VERSION_SYSTEM, KIND_SYSTEM)
@kopf.on.update(API_GROUP_VERSION_SYSTEM, KIND_SYSTEM)
@kopf.on.resume(API_GROUP_VERSION_SYSTEM, KIND_SYSTEM)
def handle_system(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle System resource reconciliation."""
    handler = _handler(memo)
    handler.reconcile_with_metrics(body, lambda: handler.reconcile(body, patch))


@kopf.timer(
    API_GROUP_VERSION_SYSTEM,
    KIND_SYSTEM,
    interval=RESYNC_INTERVAL_SECONDS,
    initial_delay=RESYNC_INTERVAL_SECONDS,
    idle=RESYNC_INTERVAL_SECONDS,
)
def resync_system(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Periodically reconcile System resources to repair drift."""
    handler = _handler(memo)
    handler.reconcile_with_metrics(body, lambda: handler.reconcile(body, patch))


@kopf.on.delete(API_GROUP_VERSION_SYSTEM, KIND_SYSTEM)
def handle_system_delete(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle System resource deletion."""
    _handler(memo).delete(body, patch)
