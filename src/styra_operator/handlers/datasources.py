"""Datasource diffing and synchronisation with DAS."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from ..constants import (
    COND_DATASOURCES_UPDATED,
    DATASOURCE_CATEGORY_REST,
    EVENT_ERROR_CALL_WEBHOOK,
    EVENT_ERROR_DELETE_DATASOURCE,
    EVENT_ERROR_UPSERT_DATASOURCE,
)
from ..errors import ReconcilerError
from ..services.das.base import DatasourceOps
from ..utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

# Called with (event reason, message) when a best-effort step fails.
WarningCallback = Callable[[str, str], None]


@dataclass
class DatasourceActions:
    """Upserts and deletes needed to converge observed datasources."""

    upserts: list[tuple[str, str]] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)
    created: set[str] = field(default_factory=set)

    @property
    def empty(self) -> bool:
        return not self.upserts and not self.deletes


def diff_datasources(
    declared: dict[str, str],
    observed: list[dict[str, Any]] | None,
    is_ignored: Callable[[str], bool] | None = None,
    compare_description: bool = True,
) -> DatasourceActions:
    """Compute the actions turning ``observed`` into ``declared``.

    Declared datasources are upserted when missing, when their category is
    not ``rest`` or, optionally, when the observed description differs. Observed
    datasources that are not declared are deleted unless they are optional
    or ignored. Without an observed set only upserts are produced.

    Args:
        declared: Datasource id to description
        observed: Datasources currently known to DAS, or None if unknown
        is_ignored: Predicate over datasource ids that must never be deleted
        compare_description: Whether a description change needs an upsert

    Returns:
        Actions in declaration order
    """
    actions = DatasourceActions()
    by_id = {ds.get("id", ""): ds for ds in observed or []}

    for ds_id, description in declared.items():
        existing = by_id.get(ds_id)
        if existing is None:
            actions.upserts.append((ds_id, description))
            actions.created.add(ds_id)
            continue
        if existing.get("category") != DATASOURCE_CATEGORY_REST:
            actions.upserts.append((ds_id, description))
            continue
        if compare_description and existing.get("description", "") != description:
            actions.upserts.append((ds_id, description))

    if observed is None:
        return actions

    for ds in observed:
        ds_id = ds.get("id", "")
        if not ds_id or ds_id in declared:
            continue
        if ds.get("optional"):
            continue
        if is_ignored is not None and is_ignored(ds_id):
            logger.debug(f"Datasource {ds_id} matches an ignore pattern, keeping it")
            continue
        actions.deletes.append(ds_id)

    return actions


def declared_datasources(prefix: str, spec_datasources: list[dict[str, Any]] | None) -> dict[str, str]:
    """Map ``<prefix>/<path>`` ids to descriptions, keeping declaration order."""
    declared: dict[str, str] = {}
    for ds in spec_datasources or []:
        path = ds.get("path", "").strip("/")
        if not path:
            continue
        declared.setdefault(f"{prefix}/{path}", ds.get("description", ""))
    return declared


def apply_datasource_actions(
    das: DatasourceOps,
    actions: DatasourceActions,
    upsert_body: Callable[[str], dict[str, Any]],
    notify: Callable[[str], None] | None = None,
    warn: WarningCallback | None = None,
) -> None:
    """Execute datasource actions against DAS.

    The change notification runs only for newly created datasources and never
    fails the reconcile.

    Raises:
        ReconcilerError: If an upsert or delete fails
    """
    for ds_id, description in actions.upserts:
        logger.info(f"Upserting datasource {ds_id}")
        try:
            das.upsert_datasource(ds_id, upsert_body(description))
        except Exception as e:
            raise (
                ReconcilerError.wrap(e, "Could not upsert datasource")
                .with_event(EVENT_ERROR_UPSERT_DATASOURCE)
                .with_condition(COND_DATASOURCES_UPDATED)
            ) from e

        if notify is None or ds_id not in actions.created:
            continue
        try:
            notify(ds_id)
        except Exception as e:
            message = f"Could not call datasource changed webhook for {ds_id}: {sanitize_exception(e)}"
            logger.warning(message)
            if warn is not None:
                warn(EVENT_ERROR_CALL_WEBHOOK, message)

    for ds_id in actions.deletes:
        logger.info(f"Deleting datasource {ds_id}")
        try:
            das.delete_datasource(ds_id)
        except Exception as e:
            raise (
                ReconcilerError.wrap(e, "Could not delete datasource")
                .with_event(EVENT_ERROR_DELETE_DATASOURCE)
                .with_condition(COND_DATASOURCES_UPDATED)
            ) from e


def reconcile_system_datasources(
    das: DatasourceOps,
    system_id: str,
    spec_datasources: list[dict[str, Any]] | None,
    observed: list[dict[str, Any]] | None,
    is_ignored: Callable[[str], bool] | None = None,
    notify: Callable[[str, str], None] | None = None,
    warn: WarningCallback | None = None,
) -> DatasourceActions:
    """Sync the datasources of a DAS system.

    Args:
        das: Datasource client
        system_id: DAS system id
        spec_datasources: ``spec.datasources`` of the System
        observed: Datasources of the fetched system, or None on first reconcile
        is_ignored: Ignore pattern predicate
        notify: Webhook called with (system id, datasource id) on creation
        warn: Reports best-effort failures

    Returns:
        The applied actions
    """
    declared = declared_datasources(f"systems/{system_id}", spec_datasources)
    actions = diff_datasources(declared, observed, is_ignored)

    def body(description: str) -> dict[str, Any]:
        return {"category": DATASOURCE_CATEGORY_REST, "description": description}

    apply_datasource_actions(
        das,
        actions,
        body,
        notify=(lambda ds_id: notify(system_id, ds_id)) if notify is not None else None,
        warn=warn,
    )
    return actions


def reconcile_library_datasources(
    das: DatasourceOps,
    library_name: str,
    spec_datasources: list[dict[str, Any]] | None,
    observed: list[dict[str, Any]] | None,
    notify: Callable[[str, str], None] | None = None,
    warn: WarningCallback | None = None,
) -> DatasourceActions:
    """Sync the datasources of a DAS library."""
    declared = declared_datasources(f"libraries/{library_name}", spec_datasources)
    actions = diff_datasources(declared, observed, compare_description=False)

    def body(description: str) -> dict[str, Any]:
        return {"category": DATASOURCE_CATEGORY_REST, "enabled": True}

    apply_datasource_actions(
        das,
        actions,
        body,
        notify=(lambda ds_id: notify(library_name, ds_id)) if notify is not None else None,
        warn=warn,
    )
    return actions
