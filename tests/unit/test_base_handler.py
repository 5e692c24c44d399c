"""Tests for base handler functionality."""

from __future__ import annotations

from unittest.mock import Mock

import kopf
import pytest
from prometheus_client import REGISTRY

from styra_operator.constants import FINALIZER, LABEL_CONTROLLER_CLASS, PHASE_FAILED, PHASE_PENDING
from styra_operator.errors import ReconcilerError
from styra_operator.handlers.base import BaseHandler, Phase, ReconcileState
from styra_operator.utils.conditions import get_condition


def _errors(kind: str, error_type: str) -> float:
    value = REGISTRY.get_sample_value(
        "styra_operator_error_total", {"kind": kind, "error_type": error_type}
    )
    return value or 0.0


class TestReconcileState:
    """Test cases for ReconcileState."""

    def test_defaults(self, make_body):
        state = ReconcileState(make_body(), kopf.Patch())

        assert state.status["phase"] == PHASE_PENDING
        assert state.status["ready"] is False
        assert state.system_id == ""
        assert state.conditions == []

    def test_status_is_a_copy(self, make_body):
        """Test that updating the working status leaves the body untouched."""
        body = make_body(status={"conditions": [{"type": "A", "status": "False"}]})
        state = ReconcileState(body, kopf.Patch())

        state.set_condition("A", True)

        assert body["status"]["conditions"][0]["status"] == "False"
        assert get_condition(state.conditions, "A")["status"] == "True"

    def test_flush(self, make_body):
        patch = kopf.Patch()
        state = ReconcileState(make_body(), patch)
        state.system_id = "abc"

        state.flush()

        assert patch.status["id"] == "abc"

    def test_flush_without_status(self, make_body):
        patch = kopf.Patch()
        ReconcileState(make_body(kind="Library"), patch, track_status=False).flush()
        assert "status" not in patch


class TestFinalizers:
    """Test cases for finalizer handling."""

    def test_ensure_finalizer_adds_when_missing(self, context):
        handler = BaseHandler(kind="TestKind", context=context)
        patch = kopf.Patch()

        handler.ensure_finalizer({"finalizers": ["other"]}, patch)

        assert patch.metadata["finalizers"] == ["other", FINALIZER]

    def test_ensure_finalizer_no_duplicate(self, context):
        handler = BaseHandler(kind="TestKind", context=context)
        patch = kopf.Patch()

        handler.ensure_finalizer({"finalizers": [FINALIZER]}, patch)

        assert "finalizers" not in patch.metadata

    def test_remove_finalizer_keeps_others(self, context):
        handler = BaseHandler(kind="TestKind", context=context)
        patch = kopf.Patch()

        handler.remove_finalizer({"finalizers": [FINALIZER, "other"]}, patch)

        assert patch.metadata["finalizers"] == ["other"]

    def test_remove_last_finalizer(self, context):
        handler = BaseHandler(kind="TestKind", context=context)
        patch = kopf.Patch()

        handler.remove_finalizer({"finalizers": [FINALIZER]}, patch)

        assert patch.metadata["finalizers"] is None

    def test_has_finalizer(self, context):
        handler = BaseHandler(kind="TestKind", context=context)
        assert handler.has_finalizer({"finalizers": [FINALIZER]})
        assert not handler.has_finalizer({})


class TestIsManaged:
    """Test cases for controller class filtering."""

    def test_unlabelled_with_empty_class(self, context):
        assert BaseHandler(kind="TestKind", context=context).is_managed({})

    def test_unlabelled_with_class(self, context):
        context.config.controller_class = "blue"
        assert not BaseHandler(kind="TestKind", context=context).is_managed({})

    def test_matching_label(self, context):
        context.config.controller_class = "blue"
        meta = {"labels": {LABEL_CONTROLLER_CLASS: "blue"}}
        assert BaseHandler(kind="TestKind", context=context).is_managed(meta)


class TestRunPhases:
    """Test cases for the phase runner."""

    def test_sets_conditions_in_order(self, context, make_body):
        handler = BaseHandler(kind="TestKind", context=context)
        state = ReconcileState(make_body(), kopf.Patch())
        order = []

        handler.run_phases(
            state,
            [
                Phase("first", "First", lambda s: order.append("first")),
                Phase("untracked", "", lambda s: order.append("untracked")),
                Phase("second", "Second", lambda s: order.append("second")),
            ],
        )

        assert order == ["first", "untracked", "second"]
        assert [c["type"] for c in state.conditions] == ["First", "Second"]

    def test_failure_carries_phase_condition(self, context, make_body):
        handler = BaseHandler(kind="TestKind", context=context)
        state = ReconcileState(make_body(), kopf.Patch())
        later = Mock()

        def fail(s):
            raise RuntimeError("boom")

        with pytest.raises(ReconcilerError) as exc_info:
            handler.run_phases(state, [Phase("failing", "Failing", fail), Phase("later", "Later", later)])

        assert exc_info.value.condition_type == "Failing"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        later.assert_not_called()

    def test_explicit_condition_is_kept(self, context, make_body):
        handler = BaseHandler(kind="TestKind", context=context)
        state = ReconcileState(make_body(), kopf.Patch())

        def fail(s):
            raise ReconcilerError("bad").with_condition("Other")

        with pytest.raises(ReconcilerError) as exc_info:
            handler.run_phases(state, [Phase("failing", "Failing", fail)])

        assert exc_info.value.condition_type == "Other"

    def test_requeue_stops_phases(self, context, make_body):
        handler = BaseHandler(kind="TestKind", context=context)
        state = ReconcileState(make_body(), kopf.Patch())
        later = Mock()

        def requeue(s):
            s.requeue = True

        handler.run_phases(state, [Phase("requeue", "Requeue", requeue), Phase("later", "Later", later)])

        later.assert_not_called()
        assert get_condition(state.conditions, "Requeue")["status"] == "True"


class TestHandleReconcilerError:
    """Test cases for recording a failed reconcile."""

    def test_status_and_retry(self, context, make_body, kopf_event):
        handler = BaseHandler(kind="TestKind", context=context)
        patch = kopf.Patch()
        state = ReconcileState(make_body(), patch)
        error = ReconcilerError("Could not create system").with_event("ErrorCreateSystemInStyra")
        error.with_condition("CreatedInStyra")

        with pytest.raises(kopf.TemporaryError, match="Could not create system"):
            handler.handle_reconciler_error(state, error)

        assert patch.status["phase"] == PHASE_FAILED
        assert patch.status["ready"] is False
        assert patch.status["failureMessage"] == "Could not create system"
        assert get_condition(patch.status["conditions"], "CreatedInStyra")["status"] == "False"
        assert kopf_event.call_args.kwargs["reason"] == "ErrorCreateSystemInStyra"
        assert kopf_event.call_args.kwargs["type"] == "Warning"

    def test_user_error_metric(self, context, make_body):
        handler = BaseHandler(kind="UserErrorKind", context=context)
        state = ReconcileState(make_body(), kopf.Patch())
        before = _errors("UserErrorKind", "user_error")

        with pytest.raises(kopf.TemporaryError):
            handler.handle_reconciler_error(
                state, ReconcilerError("Could not find credentials Secret")
            )

        assert _errors("UserErrorKind", "user_error") == before + 1

    def test_secrets_are_sanitized(self, context, make_body):
        handler = BaseHandler(kind="TestKind", context=context)
        patch = kopf.Patch()
        state = ReconcileState(make_body(), patch)

        with pytest.raises(kopf.TemporaryError):
            handler.handle_reconciler_error(
                state, ReconcilerError("call failed: Authorization: Bearer abc.def")
            )

        assert "abc.def" not in patch.status["failureMessage"]


class TestReconcileWithMetrics:
    """Test cases for the metrics wrapper."""

    def test_success(self, context, make_body, kopf_event):
        handler = BaseHandler(kind="TestKind", context=context)
        reconcile = Mock()

        handler.reconcile_with_metrics(make_body(), reconcile)

        reconcile.assert_called_once()
        assert kopf_event.call_args.kwargs["reason"] == "ReconcileStarted"

    def test_temporary_error_reraised(self, context, make_body):
        handler = BaseHandler(kind="TestKind", context=context)

        with pytest.raises(kopf.TemporaryError):
            handler.reconcile_with_metrics(make_body(), Mock(side_effect=kopf.TemporaryError("retry")))

    def test_unexpected_error_reported(self, context, make_body, kopf_event):
        handler = BaseHandler(kind="UnexpectedKind", context=context)
        before = _errors("UnexpectedKind", "ValueError")

        with pytest.raises(ValueError):
            handler.reconcile_with_metrics(make_body(), Mock(side_effect=ValueError("bad")))

        assert _errors("UnexpectedKind", "ValueError") == before + 1
        assert kopf_event.call_args.kwargs["type"] == "Warning"
