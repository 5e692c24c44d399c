"""HTTP implementation of the Styra DAS client."""

from __future__ import annotations

import logging
from typing import Any

import yaml

from ... import metrics
from ...utils.cache import ExpiringCache
from ..http import APIClient, json_result
from .base import OPAConfig

logger = logging.getLogger(__name__)

USERS_CACHE_KEY = "allUsersResponse"


class StyraDASClient:
    """Client for the Styra DAS REST API.

    The list of users is cached in a shared :class:`ExpiringCache`; callers
    that may have added a user must call :meth:`invalidate_cache`.
    """

    def __init__(
        self,
        address: str,
        token: str,
        cache: ExpiringCache | None = None,
        http: APIClient | None = None,
    ):
        self.http = http or APIClient(address, token, api_type="styra")
        self.cache = cache or ExpiringCache()

    # Systems

    def get_system(self, system_id: str) -> dict[str, Any]:
        response = self.http.request("GET", f"/v1/systems/{system_id}", "get_system")
        return json_result(response) or {}

    def get_system_by_name(self, name: str) -> dict[str, Any] | None:
        response = self.http.request(
            "GET", "/v1/systems", "get_system_by_name", params={"name": name}
        )
        systems = json_result(response) or []
        return systems[0] if systems else None

    def create_system(self, request: dict[str, Any]) -> dict[str, Any]:
        response = self.http.request("POST", "/v1/systems", "create_system", body=request)
        return json_result(response) or {}

    def put_system(
        self,
        system_id: str,
        request: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        response = self.http.request(
            "PUT",
            f"/v1/systems/{system_id}",
            "put_system",
            body=request,
            headers=headers,
            expected=(200, 201),
        )
        return json_result(response) or {}

    def update_system(self, system_id: str, request: dict[str, Any]) -> dict[str, Any]:
        response = self.http.request(
            "PUT", f"/v1/systems/{system_id}", "update_system", body=request
        )
        return json_result(response) or {}

    def delete_system(self, system_id: str) -> None:
        self.http.request(
            "DELETE", f"/v1/systems/{system_id}", "delete_system", expected=(200, 204, 404)
        )

    def get_opa_config(self, system_id: str) -> OPAConfig:
        """Fetch the opa-config asset of a system.

        Args:
            system_id: DAS system id

        Returns:
            Connection details of the first configured service

        Raises:
            HTTPError: If the asset cannot be fetched
            ValueError: If the asset has no services
        """
        response = self.http.request(
            "GET", f"/v1/systems/{system_id}/assets/opa-config", "get_opa_config"
        )
        asset = yaml.safe_load(response.text) or {}
        services = asset.get("services")
        if not services:
            raise ValueError("No services in opa config")

        service = services[0] or {}
        labels = asset.get("labels") or {}
        credentials = service.get("credentials") or {}
        bearer = credentials.get("bearer") or {}
        return OPAConfig(
            host_url=service.get("url", ""),
            token=bearer.get("token", ""),
            system_id=labels.get("system-id", ""),
            system_type=labels.get("system-type", ""),
        )

    def delete_policy(self, policy: str) -> None:
        self.http.request(
            "DELETE", f"/v1/policies/{policy}", "delete_policy", expected=(200, 204, 404)
        )

    # Datasources

    def get_datasource(self, datasource_id: str) -> dict[str, Any]:
        response = self.http.request(
            "GET", f"/v1/datasources/{datasource_id}", "get_datasource"
        )
        return json_result(response) or {}

    def upsert_datasource(self, datasource_id: str, request: dict[str, Any]) -> None:
        self.http.request(
            "PUT", f"/v1/datasources/{datasource_id}", "upsert_datasource", body=request
        )

    def delete_datasource(self, datasource_id: str) -> None:
        self.http.request(
            "DELETE",
            f"/v1/datasources/{datasource_id}",
            "delete_datasource",
            expected=(200, 204, 404),
        )

    # Secrets

    def create_update_secret(
        self,
        secret_id: str,
        name: str,
        secret: str,
        description: str = "Credentials managed by styra-operator",
    ) -> None:
        self.http.request(
            "PUT",
            f"/v1/secrets/{secret_id}",
            "create_update_secret",
            body={"description": description, "name": name, "secret": secret},
        )

    def delete_secret(self, secret_id: str) -> None:
        self.http.request(
            "DELETE", f"/v1/secrets/{secret_id}", "delete_secret", expected=(200, 204, 404)
        )

    # Role bindings

    def list_role_bindings(self, resource_kind: str, resource_id: str) -> list[dict[str, Any]]:
        response = self.http.request(
            "GET",
            "/v2/authz/rolebindings",
            "list_role_bindings",
            params={"resource_kind": resource_kind, "resource_id": resource_id},
        )
        payload = response.json() if response.content else {}
        return payload.get("rolebindings") or []

    def create_role_binding(
        self,
        resource_kind: str,
        resource_id: str,
        role_id: str,
        subjects: list[dict[str, Any]],
    ) -> dict[str, Any]:
        response = self.http.request(
            "POST",
            "/v2/authz/rolebindings",
            "create_role_binding",
            body={
                "resource_filter": {"id": resource_id, "kind": resource_kind},
                "role_id": role_id,
                "subjects": subjects,
            },
        )
        payload = response.json() if response.content else {}
        return payload.get("rolebinding") or {}

    def update_role_binding_subjects(self, binding_id: str, subjects: list[dict[str, Any]]) -> None:
        self.http.request(
            "POST",
            f"/v2/authz/rolebindings/{binding_id}/subjects",
            "update_role_binding_subjects",
            body={"subjects": subjects},
        )

    def delete_role_binding(self, binding_id: str) -> None:
        self.http.request(
            "DELETE",
            f"/v2/authz/rolebindings/{binding_id}",
            "delete_role_binding",
            expected=(200, 204, 404),
        )

    # Users

    def get_users(self) -> tuple[list[dict[str, Any]], bool]:
        """Return all DAS users.

        Returns:
            Tuple of the user list and whether it was served from cache
        """
        cached = self.cache.get(USERS_CACHE_KEY)
        if cached is not None:
            metrics.user_cache_total.labels(result="hit").inc()
            return cached, True

        metrics.user_cache_total.labels(result="miss").inc()
        response = self.http.request("GET", "/v1/users", "get_users")
        users = json_result(response) or []
        self.cache.set(USERS_CACHE_KEY, users)
        return users, False

    def get_user(self, name: str) -> dict[str, Any] | None:
        response = self.http.request(
            "GET", f"/v1/users/{name}", "get_user", expected=(200, 404)
        )
        if response.status_code == 404:
            return None
        return json_result(response) or {"id": name}

    def create_invitation(self, email: bool, user_id: str) -> None:
        self.http.request(
            "POST",
            "/v1/invitations",
            "create_invitation",
            params={"email": "true" if email else "false"},
            body={"user_id": user_id},
        )

    def invalidate_cache(self) -> None:
        self.cache.invalidate_all()

    # Libraries and workspace

    def get_library(self, library_id: str) -> dict[str, Any]:
        response = self.http.request("GET", f"/v1/libraries/{library_id}", "get_library")
        return json_result(response) or {}

    def upsert_library(self, library_id: str, request: dict[str, Any]) -> None:
        self.http.request(
            "PUT", f"/v1/libraries/{library_id}", "upsert_library", body=request
        )

    def update_workspace(self, request: dict[str, Any]) -> None:
        self.http.request("PUT", "/v1/workspace", "update_workspace", body=request)


