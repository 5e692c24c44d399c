"""Styra DAS client interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class OPAConfig:
    """Connection details for an OPA taken from the DAS opa-config asset."""

    host_url: str
    token: str
    system_id: str
    system_type: str


class SystemOps(Protocol):
    """Protocol defining DAS system operations."""

    def get_system(self, system_id: str) -> dict[str, Any]:
        """Get a system by id. Raises HTTPError on 404."""
        ...

    def get_system_by_name(self, name: str) -> dict[str, Any] | None:
        """Get a system by display name, or None when no system has that name."""
        ...

    def create_system(self, request: dict[str, Any]) -> dict[str, Any]:
        """Create a system and return its config."""
        ...

    def put_system(
        self,
        system_id: str,
        request: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create or replace a system under a fixed id."""
        ...

    def update_system(self, system_id: str, request: dict[str, Any]) -> dict[str, Any]:
        """Update a system and return its config."""
        ...

    def delete_system(self, system_id: str) -> None:
        """Delete a system; a missing system is not an error."""
        ...

    def get_opa_config(self, system_id: str) -> OPAConfig:
        """Get the OPA connection details of a system."""
        ...

    def delete_policy(self, policy: str) -> None:
        """Delete a policy; a missing policy is not an error."""
        ...


class DatasourceOps(Protocol):
    """Protocol defining DAS datasource operations."""

    def get_datasource(self, datasource_id: str) -> dict[str, Any]:
        ...

    def upsert_datasource(self, datasource_id: str, request: dict[str, Any]) -> None:
        ...

    def delete_datasource(self, datasource_id: str) -> None:
        ...


class SecretOps(Protocol):
    """Protocol defining DAS secret operations."""

    def create_update_secret(
        self,
        secret_id: str,
        name: str,
        secret: str,
        description: str = ...,
    ) -> None:
        ...

    def delete_secret(self, secret_id: str) -> None:
        ...


class RoleBindingOps(Protocol):
    """Protocol defining DAS role binding operations."""

    def list_role_bindings(self, resource_kind: str, resource_id: str) -> list[dict[str, Any]]:
        ...

    def create_role_binding(
        self,
        resource_kind: str,
        resource_id: str,
        role_id: str,
        subjects: list[dict[str, Any]],
    ) -> dict[str, Any]:
        ...

    def update_role_binding_subjects(self, binding_id: str, subjects: list[dict[str, Any]]) -> None:
        ...

    def delete_role_binding(self, binding_id: str) -> None:
        ...


class UserOps(Protocol):
    """Protocol defining DAS user and invitation operations."""

    def get_users(self) -> tuple[list[dict[str, Any]], bool]:
        """Return all users and whether the answer came from cache."""
        ...

    def get_user(self, name: str) -> dict[str, Any] | None:
        """Return a user, or None when the user does not exist."""
        ...

    def create_invitation(self, email: bool, user_id: str) -> None:
        ...

    def invalidate_cache(self) -> None:
        ...


class LibraryOps(Protocol):
    """Protocol defining DAS library and workspace operations."""

    def get_library(self, library_id: str) -> dict[str, Any]:
        ...

    def upsert_library(self, library_id: str, request: dict[str, Any]) -> None:
        ...

    def update_workspace(self, request: dict[str, Any]) -> None:
        ...


class DASClient(
    SystemOps, DatasourceOps, SecretOps, RoleBindingOps, UserOps, LibraryOps, Protocol
):
    """Full DAS client interface."""
