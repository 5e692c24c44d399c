"""Reconciliation of DAS role binding subjects."""

from __future__ import annotations

import logging
from typing import Any

from ..config import SSOConfig
from ..constants import (
    COND_SUBJECTS_UPDATED,
    EVENT_ERROR_CREATE_INVITATION,
    EVENT_ERROR_CREATE_ROLEBINDING,
    EVENT_ERROR_GET_ROLEBINDINGS,
    EVENT_ERROR_GET_USERS,
    EVENT_ERROR_UPDATE_ROLEBINDING,
    ROLE_BINDING_KIND_LIBRARY,
    ROLE_BINDING_KIND_SYSTEM,
    ROLE_LIBRARY_VIEWER,
    SPEC_SUBJECT_KIND_GROUP,
    SPEC_SUBJECT_KIND_USER,
    SUBJECT_KIND_CLAIM,
    SUBJECT_KIND_USER,
)
from ..errors import ReconcilerError
from ..services.das.base import RoleBindingOps, UserOps

logger = logging.getLogger(__name__)

MANAGED_SUBJECT_KINDS = (SUBJECT_KIND_USER, SUBJECT_KIND_CLAIM)


def is_user(subject: dict[str, Any]) -> bool:
    """A spec subject without kind is a user."""
    return subject.get("kind", "") in ("", SPEC_SUBJECT_KIND_USER)


def project_subjects(
    subjects: list[dict[str, Any]] | None,
    sso: SSOConfig | None,
) -> list[dict[str, Any]]:
    """Project spec subjects into DAS role binding subjects.

    Users are deduplicated by name and groups by claim value. Groups are
    dropped when SSO is not configured.

    Args:
        subjects: ``spec.subjects`` of a System or Library
        sso: SSO configuration

    Returns:
        DAS subjects in declaration order
    """
    seen_users: set[str] = set()
    seen_claims: set[str] = set()
    projected: list[dict[str, Any]] = []

    for subject in subjects or []:
        name = subject.get("name", "")
        if is_user(subject):
            if name in seen_users:
                continue
            projected.append({"kind": SUBJECT_KIND_USER, "id": name})
            seen_users.add(name)
        elif subject.get("kind") == SPEC_SUBJECT_KIND_GROUP and sso is not None:
            if name in seen_claims:
                continue
            projected.append(
                {
                    "kind": SUBJECT_KIND_CLAIM,
                    "claim_config": {
                        "identity_provider": sso.identity_provider,
                        "key": sso.jwt_groups_claim,
                        "value": name,
                    },
                }
            )
            seen_claims.add(name)

    return projected


def _subject_identity(subject: dict[str, Any]) -> tuple[Any, ...]:
    kind = subject.get("kind")
    if kind == SUBJECT_KIND_USER:
        return (kind, subject.get("id", ""))
    if kind == SUBJECT_KIND_CLAIM:
        claim = subject.get("claim_config") or {}
        return (
            kind,
            claim.get("identity_provider", ""),
            claim.get("key", ""),
            claim.get("value", ""),
        )
    return (kind, repr(sorted(subject.items())))


def subjects_are_equal(a: list[dict[str, Any]] | None, b: list[dict[str, Any]] | None) -> bool:
    """Compare two subject lists ignoring order.

    The lists are equal when they have the same length and every subject of
    ``a`` matches a subject of ``b`` by kind and identity.
    """
    a = a or []
    b = b or []
    if len(a) != len(b):
        return False
    identities = {_subject_identity(s) for s in b}
    return all(_subject_identity(s) in identities for s in a)


def unmanaged_subjects(subjects: list[dict[str, Any]] | None) -> list[dict[str, Any]]:
    """Return the subjects whose kind the operator does not manage."""
    return [s for s in subjects or [] if s.get("kind") not in MANAGED_SUBJECT_KINDS]


def invite_missing_system_users(das: UserOps, spec_subjects: list[dict[str, Any]] | None) -> None:
    """Invite every declared user that DAS does not know yet.

    Raises:
        ReconcilerError: If users cannot be listed or invited
    """
    try:
        users, from_cache = das.get_users()
    except Exception as e:
        raise (
            ReconcilerError.wrap(e, "Could not get users from Styra API")
            .with_event(EVENT_ERROR_GET_USERS)
            .with_condition(COND_SUBJECTS_UPDATED)
        ) from e
    logger.debug(f"Users response from {'cache' if from_cache else 'Styra API'}")

    known = {user.get("id") for user in users}
    for subject in spec_subjects or []:
        if not is_user(subject):
            continue
        name = subject.get("name", "")
        if name in known:
            continue

        logger.info(f"User {name} does not exist in Styra, creating invitation")
        try:
            das.create_invitation(False, name)
        except Exception as e:
            raise (
                ReconcilerError.wrap(e, "Could not create user in Styra")
                .with_event(EVENT_ERROR_CREATE_INVITATION)
                .with_condition(COND_SUBJECTS_UPDATED)
            ) from e
        das.invalidate_cache()


def _update_binding(das: RoleBindingOps, binding: dict[str, Any], subjects: list[dict[str, Any]]) -> None:
    logger.info(f"Updating rolebinding for role {binding.get('role_id')}")
    try:
        das.update_role_binding_subjects(binding.get("id", ""), subjects)
    except Exception as e:
        raise (
            ReconcilerError.wrap(e, "Could not update Styra role binding")
            .with_event(EVENT_ERROR_UPDATE_ROLEBINDING)
            .with_condition(COND_SUBJECTS_UPDATED)
        ) from e


def reconcile_system_role_bindings(
    das: RoleBindingOps,
    system_id: str,
    spec_subjects: list[dict[str, Any]] | None,
    roles: list[str],
    sso: SSOConfig | None,
) -> None:
    """Sync the role bindings of a DAS system with the declared subjects.

    Every managed role gets exactly the projected subjects plus whatever
    unmanaged subjects it already had. User and claim subjects are removed
    from the bindings of all other roles.

    Args:
        das: Role binding client
        system_id: DAS system id
        spec_subjects: ``spec.subjects`` of the System
        roles: Roles the declared subjects are bound to
        sso: SSO configuration

    Raises:
        ReconcilerError: On any DAS failure
    """
    try:
        bindings = das.list_role_bindings(ROLE_BINDING_KIND_SYSTEM, system_id)
    except Exception as e:
        raise (
            ReconcilerError.wrap(e, "Could not get rolebindings for system in Styra")
            .with_event(EVENT_ERROR_GET_ROLEBINDINGS)
            .with_condition(COND_SUBJECTS_UPDATED)
        ) from e

    by_role = {binding.get("role_id"): binding for binding in bindings}
    projected = project_subjects(spec_subjects, sso)

    for role in roles:
        binding = by_role.get(role)
        if binding is None:
            logger.info(f"Creating rolebinding for role {role}")
            try:
                das.create_role_binding(ROLE_BINDING_KIND_SYSTEM, system_id, role, projected)
            except Exception as e:
                raise (
                    ReconcilerError.wrap(e, "Could not create rolebinding")
                    .with_event(EVENT_ERROR_CREATE_ROLEBINDING)
                    .with_condition(COND_SUBJECTS_UPDATED)
                ) from e
            continue

        desired = unmanaged_subjects(binding.get("subjects")) + projected
        if not subjects_are_equal(binding.get("subjects"), desired):
            _update_binding(das, binding, desired)

    for binding in bindings:
        if binding.get("role_id") in roles:
            continue
        remaining = unmanaged_subjects(binding.get("subjects"))
        if not subjects_are_equal(binding.get("subjects"), remaining):
            _update_binding(das, binding, remaining)


def reconcile_library_subjects(
    das: Any,
    library_id: str,
    spec_subjects: list[dict[str, Any]] | None,
    sso: SSOConfig | None,
) -> None:
    """Sync the LibraryViewer binding of a DAS library with the declared subjects.

    Raises:
        ReconcilerError: On any DAS failure
    """
    for subject in spec_subjects or []:
        if not is_user(subject):
            continue
        name = subject.get("name", "")
        try:
            user = das.get_user(name)
            if user is None:
                logger.info(f"User {name} does not exist in Styra, creating invitation")
                das.create_invitation(False, name)
                das.invalidate_cache()
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not create user in Styra") from e

    try:
        bindings = das.list_role_bindings(ROLE_BINDING_KIND_LIBRARY, library_id)
        for binding in bindings:
            if binding.get("role_id") != ROLE_LIBRARY_VIEWER:
                logger.info(f"Deleting rolebinding for role {binding.get('role_id')}")
                das.delete_role_binding(binding.get("id", ""))
    except Exception as e:
        raise ReconcilerError.wrap(e, "Could not delete rolebindings for Library in Styra") from e

    projected = project_subjects(spec_subjects, sso)
    viewers = [b for b in bindings if b.get("role_id") == ROLE_LIBRARY_VIEWER]
    if not viewers:
        logger.info(f"No rolebindings exist for library {library_id}, creating rolebinding")
        try:
            das.create_role_binding(ROLE_BINDING_KIND_LIBRARY, library_id, ROLE_LIBRARY_VIEWER, projected)
        except Exception as e:
            raise ReconcilerError.wrap(e, "Could not create rolebinding in Styra") from e
        return

    for binding in viewers:
        if not subjects_are_equal(projected, binding.get("subjects")):
            try:
                das.update_role_binding_subjects(binding.get("id", ""), projected)
            except Exception as e:
                raise ReconcilerError.wrap(e, "Could not update Styra role binding") from e
