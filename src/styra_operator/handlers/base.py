"""Base handler class with common functionality for all CRD handlers."""

from __future__ import annotations

import copy
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import kopf

from .. import metrics
from ..constants import CONTROLLER_NAME, FINALIZER, PHASE_FAILED, PHASE_PENDING
from ..errors import ReconcilerError, is_user_error
from ..logging import log_resource_event
from ..utils.conditions import set_condition
from ..utils.errors import sanitize_exception
from ..utils.events import emit_reconcile_failed, emit_reconcile_started
from ..utils.labels import controller_class_matches
from .shared import OperatorContext


class ReconcileState:
    """Working state of a single reconcile.

    Holds the resource as fetched at the top of the reconcile and a private
    copy of its status. Phases update the copy; :meth:`flush` writes it to
    the kopf patch once.
    """

    def __init__(self, body: Any, patch: kopf.Patch, track_status: bool = True) -> None:
        self.body = body
        self.patch = patch
        self.meta: dict[str, Any] = dict(body.get("metadata") or {})
        self.spec: dict[str, Any] = dict(body.get("spec") or {})
        self.track_status = track_status
        self.requeue = False
        self.scratch: dict[str, Any] = {}

        status = body.get("status") or {}
        self.status: dict[str, Any] = {
            "id": status.get("id", ""),
            "ready": bool(status.get("ready", False)),
            "phase": status.get("phase") or PHASE_PENDING,
            "failureMessage": status.get("failureMessage", ""),
            "conditions": copy.deepcopy(list(status.get("conditions") or [])),
        }

    @property
    def name(self) -> str:
        return self.meta.get("name", "")

    @property
    def namespace(self) -> str:
        return self.meta.get("namespace", "")

    @property
    def labels(self) -> dict[str, str]:
        return dict(self.meta.get("labels") or {})

    @property
    def annotations(self) -> dict[str, str]:
        return dict(self.meta.get("annotations") or {})

    @property
    def system_id(self) -> str:
        return self.status.get("id", "")

    @system_id.setter
    def system_id(self, value: str) -> None:
        self.status["id"] = value

    @property
    def conditions(self) -> list[dict[str, Any]]:
        return self.status["conditions"]

    def set_condition(self, condition_type: str, value: bool) -> None:
        self.status["conditions"] = set_condition(self.status["conditions"], condition_type, value)

    def flush(self) -> None:
        """Write the working status to the patch."""
        if self.track_status:
            self.patch.status.update(copy.deepcopy(self.status))


@dataclass
class Phase:
    """One named step of a reconcile, owning one condition."""

    name: str
    condition: str
    run: Callable[[ReconcileState], None]


class BaseHandler:
    """Base class for all CRD handlers with common functionality."""

    def __init__(self, kind: str, context: OperatorContext):
        """Initialize base handler.

        Args:
            kind: The Kubernetes resource kind (e.g., "System", "Library")
            context: Clients and configuration the handler reconciles with
        """
        self.kind = kind
        self.context = context
        self.logger = logging.getLogger(__name__)

    def _get_resource_context(self, meta: dict[str, Any]) -> dict[str, Any]:
        """Extract common resource context from metadata.

        Args:
            meta: Kubernetes resource metadata

        Returns:
            Dictionary with resource context fields
        """
        return {
            "name": meta.get("name", "unknown"),
            "namespace": meta.get("namespace", ""),
            "uid": meta.get("uid", "unknown"),
        }

    def _log(
        self,
        level: int,
        meta: dict[str, Any],
        message: str,
        event: str,
        reason: str,
        **kwargs: Any,
    ) -> None:
        ctx = self._get_resource_context(meta)
        log_resource_event(
            self.logger,
            controller=CONTROLLER_NAME,
            resource_kind=self.kind,
            resource_name=ctx["name"],
            namespace=ctx["namespace"],
            uid=ctx["uid"],
            event=event,
            reason=reason,
            message=message,
            level=level,
            **kwargs,
        )

    def log_info(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "info",
        reason: str = "Info",
        **kwargs: Any,
    ) -> None:
        """Log an info-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            event: Event type (default: "info")
            reason: Reason for the event (default: "Info")
            **kwargs: Additional fields to include in the log
        """
        self._log(logging.INFO, meta, message, event, reason, **kwargs)

    def log_warning(
        self,
        meta: dict[str, Any],
        message: str,
        event: str = "warning",
        reason: str = "Warning",
        **kwargs: Any,
    ) -> None:
        """Log a warning-level structured log message."""
        self._log(logging.WARNING, meta, message, event, reason, **kwargs)

    def log_error(
        self,
        meta: dict[str, Any],
        message: str,
        error: Exception | None = None,
        event: str = "error",
        reason: str = "Error",
        **kwargs: Any,
    ) -> None:
        """Log an error-level structured log message.

        Args:
            meta: Kubernetes resource metadata
            message: Log message
            error: Optional exception to include sanitized error details
            event: Event type (default: "error")
            reason: Reason for the event (default: "Error")
            **kwargs: Additional fields to include in the log
        """
        log_data = kwargs.copy()
        if error is not None:
            log_data["error"] = sanitize_exception(error)
            log_data["error_type"] = type(error).__name__
        self._log(logging.ERROR, meta, message, event, reason, **log_data)

    def is_managed(self, meta: dict[str, Any]) -> bool:
        """Check the controller class label against this controller instance."""
        return controller_class_matches(meta.get("labels"), self.context.config.controller_class)

    def ensure_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        """Ensure finalizer is present in metadata."""
        finalizers = list(meta.get("finalizers") or [])
        if FINALIZER not in finalizers:
            finalizers.append(FINALIZER)
            patch.metadata["finalizers"] = finalizers

    def remove_finalizer(self, meta: dict[str, Any], patch: kopf.Patch) -> None:
        """Remove finalizer from metadata."""
        finalizers = list(meta.get("finalizers") or [])
        if FINALIZER in finalizers:
            finalizers.remove(FINALIZER)
            patch.metadata["finalizers"] = finalizers if finalizers else None

    def has_finalizer(self, meta: dict[str, Any]) -> bool:
        return FINALIZER in (meta.get("finalizers") or [])

    def _lock_key(self, body: Any) -> str:
        return f"{self.kind}/{(body.get('metadata') or {}).get('uid', '')}"

    @contextmanager
    def serialized(self, body: Any) -> Iterator[None]:
        """Hold the per-object lock so one handler works on a resource at a time."""
        with self.context.locks.hold(self._lock_key(body)):
            yield

    def reconcile(self, body: Any, patch: kopf.Patch) -> None:
        """Reconcile a resource while holding its lock."""
        with self.serialized(body):
            self.reconcile_resource(body, patch)

    def delete(self, body: Any, patch: kopf.Patch) -> None:
        """Tear down a resource while holding its lock.

        The lock is dropped once the teardown went through.
        """
        with self.serialized(body):
            self.delete_resource(body, patch)
        self.context.locks.forget(self._lock_key(body))

    def reconcile_resource(self, body: Any, patch: kopf.Patch) -> None:
        raise NotImplementedError

    def delete_resource(self, body: Any, patch: kopf.Patch) -> None:
        raise NotImplementedError

    def reconcile_with_metrics(
        self,
        body: Any,
        reconcile_fn: Callable[[], None],
    ) -> None:
        """Execute reconciliation with metrics and error handling.

        Args:
            body: Kubernetes resource body
            reconcile_fn: Function to execute for reconciliation
        """
        meta = body.get("metadata") or {}
        emit_reconcile_started(body)
        metrics.reconcile_total.labels(kind=self.kind, result="started").inc()

        start_time = time.time()
        try:
            reconcile_fn()
            metrics.reconcile_total.labels(kind=self.kind, result="success").inc()
        except kopf.TemporaryError:
            # Already logged and recorded on the resource
            metrics.reconcile_total.labels(kind=self.kind, result="failed").inc()
            raise
        except Exception as e:
            metrics.error_total.labels(kind=self.kind, error_type=type(e).__name__).inc()
            self.log_error(meta, "Reconciliation failed", error=e, reason="ReconciliationFailed")
            emit_reconcile_failed(body, f"Reconciliation failed: {sanitize_exception(e)}")
            metrics.reconcile_total.labels(kind=self.kind, result="error").inc()
            raise
        finally:
            duration = time.time() - start_time
            metrics.reconcile_duration_seconds.labels(kind=self.kind).observe(duration)

    def run_phases(self, state: ReconcileState, phases: list[Phase]) -> None:
        """Run phases in order until the first failure.

        Each successful phase sets its condition True. A failure is raised as
        a ReconcilerError carrying the failing phase's condition.
        """
        for phase in phases:
            start_time = time.time()
            try:
                phase.run(state)
            except ReconcilerError as e:
                if not e.condition_type:
                    e.with_condition(phase.condition)
                raise
            except Exception as e:
                raise ReconcilerError.wrap(e, f"Phase {phase.name} failed").with_condition(
                    phase.condition
                ) from e
            finally:
                metrics.reconcile_segment_seconds.labels(segment=phase.name).observe(
                    time.time() - start_time
                )

            if phase.condition:
                state.set_condition(phase.condition, True)
            if state.requeue:
                self.log_info(state.meta, f"Requeue requested after phase {phase.name}")
                break

    def handle_reconciler_error(self, state: ReconcileState, error: ReconcilerError) -> None:
        """Record a failed reconcile on the resource and request a retry.

        Raises:
            kopf.TemporaryError: Always, so kopf retries with backoff
        """
        message = sanitize_exception(error)
        user_error = is_user_error(error)

        if user_error:
            self.log_warning(state.meta, message, reason=error.event or "ReconcileFailed")
        else:
            self.log_error(
                state.meta,
                "Reconciliation failed",
                error=error,
                reason=error.event or "ReconcileFailed",
            )
        error_type = "user_error" if user_error else type(error.cause or error).__name__
        metrics.error_total.labels(kind=self.kind, error_type=error_type).inc()

        state.status["failureMessage"] = message
        state.status["ready"] = False
        state.status["phase"] = PHASE_FAILED
        if error.condition_type:
            state.set_condition(error.condition_type, False)

        emit_reconcile_failed(state.body, message, reason=error.event)
        state.flush()
        raise kopf.TemporaryError(message) from error
