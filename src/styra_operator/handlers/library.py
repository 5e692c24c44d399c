"""Handler for Library CRD."""

from __future__ import annotations

from typing import Any

import kopf

from ..builders.system import join_path
from ..constants import API_GROUP_VERSION_LIBRARY, KIND_LIBRARY
from ..errors import ReconcilerError, is_not_found
from ..utils.events import emit_reconcile_completed, emit_warning
from .base import BaseHandler, Phase, ReconcileState
from .datasources import reconcile_library_datasources
from .shared import RESYNC_INTERVAL_SECONDS, OperatorContext
from .subjects import reconcile_library_subjects

REQUEUE_DELAY_SECONDS = 10


def library_secret_id(name: str) -> str:
    return join_path("libraries", name, "git")


def _origin(spec: dict[str, Any]) -> dict[str, Any]:
    return (spec.get("sourceControl") or {}).get("libraryOrigin") or {}


def library_request(spec: dict[str, Any]) -> dict[str, Any]:
    """Build the upsert request for a Library spec."""
    origin = _origin(spec)
    return {
        "description": spec.get("description", ""),
        "read_only": True,
        "source_control": {
            "library_origin": {
                "commit": origin.get("commit", ""),
                "credentials": library_secret_id(spec.get("name", "")),
                "path": origin.get("path", ""),
                "reference": origin.get("reference", ""),
                "url": origin.get("url", ""),
            }
        },
    }


def same_source_control(spec: dict[str, Any], library: dict[str, Any]) -> bool:
    origin = _origin(spec)
    observed = (library.get("source_control") or {}).get("library_origin") or {}
    return all(
        (origin.get(key) or "") == (observed.get(key) or "")
        for key in ("path", "reference", "commit", "url")
    )


def library_needs_update(spec: dict[str, Any], library: dict[str, Any] | None, has_credential: bool) -> bool:
    """Decide whether the DAS library differs from the Library spec.

    Args:
        spec: Library spec
        library: Library fetched from DAS
        has_credential: Whether a default git credential matches the library URL

    Returns:
        True when the library must be upserted
    """
    if library is None:
        return True
    if (
        spec.get("name", "") != library.get("id", "")
        or spec.get("description", "") != library.get("description", "")
        or not library.get("read_only", False)
        or not same_source_control(spec, library)
    ):
        return True

    observed = (library.get("source_control") or {}).get("library_origin") or {}
    if observed.get("credentials", "") != library_secret_id(spec.get("name", "")):
        return has_credential
    return False


class LibraryHandler(BaseHandler):
    """Handler for Library resources."""

    def __init__(self, context: OperatorContext):
        """Initialize library handler."""
        super().__init__(KIND_LIBRARY, context)

    @property
    def das(self) -> Any:
        if self.context.das is None:
            raise ReconcilerError("DAS client is not configured")
        return self.context.das

    def reconcile_resource(self, body: Any, patch: kopf.Patch) -> None:
        """Reconcile Library resource."""
        state = ReconcileState(body, patch, track_status=False)
        meta = state.meta

        if not self.is_managed(meta):
            self.log_info(meta, "This is not a Library we are managing. Skipping reconciliation.")
            return
        if meta.get("deletionTimestamp"):
            self.log_info(meta, f"Library {state.spec.get('name', '')} is under deletion. Ignoring it.")
            return

        self.ensure_finalizer(meta, patch)
        phases = [
            Phase("reconcileCredentials", "", self.reconcile_credentials),
            Phase("reconcileLibrary", "", self.reconcile_library),
            Phase("reconcileDatasources", "", self.reconcile_datasources),
            Phase("reconcileSubjects", "", self.reconcile_subjects),
        ]
        try:
            self.run_phases(state, phases)
        except ReconcilerError as e:
            self.handle_reconciler_error(state, e)

        if state.requeue:
            raise kopf.TemporaryError(
                f"Library {state.spec.get('name', '')} could not be fetched. Requeueing...",
                delay=REQUEUE_DELAY_SECONDS,
            )
        emit_reconcile_completed(body)
        self.log_info(meta, "Reconciliation completed", event="reconcile", reason="ReconciliationCompleted")

    def _credential(self, state: ReconcileState) -> Any:
        return self.context.config.get_git_credential_for_repo(_origin(state.spec).get("url", ""))

    def reconcile_credentials(self, state: ReconcileState) -> None:
        credential = self._credential(state)
        if credential is None:
            self.log_info(state.meta, "Could not find matching credentials", url=_origin(state.spec).get("url", ""))
            return
        try:
            self.das.create_update_secret(
                library_secret_id(state.spec.get("name", "")), credential.user, credential.password
            )
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not update Styra secret") from e

    def reconcile_library(self, state: ReconcileState) -> None:
        name = state.spec.get("name", "")
        library = None
        try:
            library = self.das.get_library(name)
            update = library_needs_update(state.spec, library, self._credential(state) is not None)
        except Exception as e:
            if not is_not_found(e):
                raise ReconcilerError.wrap(e, "Could not fetch library") from e
            update = True

        if update:
            self.log_info(state.meta, f"Upserting library {name}")
            try:
                self.das.upsert_library(name, library_request(state.spec))
            except Exception as e:
                raise ReconcilerError.wrap(e, "Could not upsert library") from e

        state.scratch["library"] = library
        if library is None:
            state.requeue = True

    def reconcile_datasources(self, state: ReconcileState) -> None:
        library = state.scratch.get("library") or {}
        reconcile_library_datasources(
            self.das,
            state.spec.get("name", ""),
            state.spec.get("datasources"),
            library.get("datasources") or [],
            notify=self.context.webhook.library_datasource_changed,
            warn=lambda reason, message: emit_warning(state.body, reason, message),
        )

    def reconcile_subjects(self, state: ReconcileState) -> None:
        reconcile_library_subjects(
            self.das,
            state.spec.get("name", ""),
            state.spec.get("subjects"),
            self.context.config.sso,
        )

    def delete_resource(self, body: Any, patch: kopf.Patch) -> None:
        """Handle Library resource deletion."""
        meta = body.get("metadata") or {}
        if not self.is_managed(meta):
            return
        self.log_info(meta, "Library is being deleted", event="deletion", reason="Deletion")
        self.remove_finalizer(meta, patch)


def _handler(memo: kopf.Memo) -> LibraryHandler:
    return LibraryHandler(memo.context)


@kopf.on.create(API_GROUP_VERSION_LIBRARY, KIND_LIBRARY)
@kopf.on.update(API_GROUP_VERSION_LIBRARY, KIND_LIBRARY)
@kopf.on.resume(API_GROUP_VERSION_LIBRARY, KIND_LIBRARY)
def handle_library(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle Library resource reconciliation."""
    handler = _handler(memo)
    handler.reconcile_with_metrics(body, lambda: handler.reconcile(body, patch))


@kopf.timer(
    API_GROUP_VERSION_LIBRARY,
    KIND_LIBRARY,
    interval=RESYNC_INTERVAL_SECONDS,
    initial_delay=RESYNC_INTERVAL_SECONDS,
    idle=RESYNC_INTERVAL_SECONDS,
)
def resync_library(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Periodically reconcile Library resources."""
    handler = _handler(memo)
    handler.reconcile_with_metrics(body, lambda: handler.reconcile(body, patch))


@kopf.on.delete(API_GROUP_VERSION_LIBRARY, KIND_LIBRARY)
def handle_library_delete(
    body: kopf.Body,
    patch: kopf.Patch,
    memo: kopf.Memo,
    **kwargs: Any,
) -> None:
    """Handle Library resource deletion."""
    _handler(memo).delete(body, patch)
