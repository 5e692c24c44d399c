"""Tests for datasource diffing and synchronisation."""

from __future__ import annotations

import pytest

from styra_operator.constants import COND_DATASOURCES_UPDATED, EVENT_ERROR_UPSERT_DATASOURCE
from styra_operator.errors import HTTPError, ReconcilerError
from styra_operator.handlers.datasources import (
    declared_datasources,
    diff_datasources,
    reconcile_library_datasources,
    reconcile_system_datasources,
)


class TestDeclaredDatasources:
    """Test cases for building declared datasource ids."""

    def test_prefix_and_description(self):
        declared = declared_datasources("systems/s1", [{"path": "a/b", "description": "d"}, {"path": "/c/"}])
        assert declared == {"systems/s1/a/b": "d", "systems/s1/c": ""}

    def test_empty_paths_skipped(self):
        assert declared_datasources("systems/s1", [{"path": ""}, {}]) == {}

    def test_none(self):
        assert declared_datasources("systems/s1", None) == {}


class TestDiffDatasources:
    """Test cases for the datasource diff."""

    def test_missing_is_created(self):
        actions = diff_datasources({"systems/s/a": "desc"}, [])
        assert actions.upserts == [("systems/s/a", "desc")]
        assert actions.created == {"systems/s/a"}
        assert actions.deletes == []

    def test_wrong_category_is_upserted(self):
        """Test that a datasource of another category is overwritten but not announced."""
        actions = diff_datasources({"systems/s/a": ""}, [{"id": "systems/s/a", "category": "git/rego"}])
        assert actions.upserts == [("systems/s/a", "")]
        assert actions.created == set()

    def test_description_change_is_upserted(self):
        actions = diff_datasources(
            {"systems/s/a": "new"}, [{"id": "systems/s/a", "category": "rest", "description": "old"}]
        )
        assert actions.upserts == [("systems/s/a", "new")]

    def test_description_ignored_when_disabled(self):
        actions = diff_datasources(
            {"libraries/l/a": "new"},
            [{"id": "libraries/l/a", "category": "rest", "description": "old"}],
            compare_description=False,
        )
        assert actions.empty

    def test_undeclared_is_deleted(self):
        actions = diff_datasources({}, [{"id": "systems/s/old", "category": "rest"}])
        assert actions.deletes == ["systems/s/old"]

    def test_optional_and_ignored_are_kept(self):
        """Test that optional and ignored datasources survive."""
        observed = [
            {"id": "systems/s/optional", "category": "rest", "optional": True},
            {"id": "systems/s/ignored/x", "category": "rest"},
            {"id": "", "category": "rest"},
        ]
        actions = diff_datasources({}, observed, is_ignored=lambda ds_id: "/ignored/" in ds_id)
        assert actions.empty

    def test_unknown_observed_never_deletes(self):
        """Test that without an observed set only upserts are produced."""
        actions = diff_datasources({"systems/s/a": ""}, None)
        assert actions.upserts == [("systems/s/a", "")]
        assert actions.deletes == []

    def test_converged_is_empty(self):
        observed = [{"id": "systems/s/a", "category": "rest", "description": "d"}]
        assert diff_datasources({"systems/s/a": "d"}, observed).empty


class TestReconcileSystemDatasources:
    """Test cases for syncing system datasources."""

    def test_applying_twice_is_idempotent(self, das, webhook):
        """Test that a second run against the result of the first changes nothing."""
        spec = [{"path": "a", "description": "first"}, {"path": "b"}]
        das.datasources["systems/s/stale"] = {"id": "systems/s/stale", "category": "rest"}

        observed = list(das.datasources.values())
        first = reconcile_system_datasources(
            das, "s", spec, observed, notify=webhook.system_datasource_changed
        )
        assert [ds_id for ds_id, _ in first.upserts] == ["systems/s/a", "systems/s/b"]
        assert first.deletes == ["systems/s/stale"]

        second = reconcile_system_datasources(
            das, "s", spec, list(das.datasources.values()), notify=webhook.system_datasource_changed
        )
        assert second.empty
        assert webhook.args("system_datasource_changed") == [("s", "systems/s/a"), ("s", "systems/s/b")]

    def test_upsert_body(self, das):
        reconcile_system_datasources(das, "s", [{"path": "a", "description": "d"}], [])
        assert das.args("upsert_datasource") == [("systems/s/a", {"category": "rest", "description": "d"})]

    def test_webhook_failure_warns(self, das, webhook):
        """Test that a failing webhook is reported but does not fail the sync."""
        webhook.fail["system_datasource_changed"] = RuntimeError("boom")
        warnings = []

        reconcile_system_datasources(
            das,
            "s",
            [{"path": "a"}],
            [],
            notify=webhook.system_datasource_changed,
            warn=lambda reason, message: warnings.append((reason, message)),
        )

        assert "systems/s/a" in das.datasources
        assert warnings[0][0] == "ErrorCallWebhook"
        assert "boom" in warnings[0][1]

    def test_upsert_failure(self, das):
        das.fail["upsert_datasource"] = HTTPError(500, "{}")

        with pytest.raises(ReconcilerError) as exc_info:
            reconcile_system_datasources(das, "s", [{"path": "a"}], [])

        assert exc_info.value.event == EVENT_ERROR_UPSERT_DATASOURCE
        assert exc_info.value.condition_type == COND_DATASOURCES_UPDATED


class TestReconcileLibraryDatasources:
    """Test cases for syncing library datasources."""

    def test_upsert_body_and_webhook(self, das, webhook):
        reconcile_library_datasources(
            das, "lib", [{"path": "a"}], [], notify=webhook.library_datasource_changed
        )

        assert das.args("upsert_datasource") == [("libraries/lib/a", {"category": "rest", "enabled": True})]
        assert webhook.args("library_datasource_changed") == [("lib", "libraries/lib/a")]
