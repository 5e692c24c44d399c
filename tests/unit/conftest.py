"""Shared fakes and fixtures for the unit tests."""

from __future__ import annotations

import base64
import copy
import json
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests
from kubernetes import client

from styra_operator.config import GitCredential, ProjectConfig
from styra_operator.errors import HTTPError
from styra_operator.handlers.shared import OperatorContext
from styra_operator.services.das.base import OPAConfig
from styra_operator.services.s3.base import AccessKey


def not_found() -> HTTPError:
    return HTTPError(404, '{"code": "resource_not_found"}')


class Recorder:
    """Records calls and raises configured failures per operation."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail: dict[str, BaseException] = {}

    def _call(self, op: str, *args: Any) -> None:
        self.calls.append((op, args))
        if op in self.fail:
            raise self.fail[op]

    def count(self, op: str) -> int:
        return sum(1 for name, _ in self.calls if name == op)

    def args(self, op: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self.calls if name == op]


class FakeDAS(Recorder):
    """In-memory DAS implementing the client Protocols."""

    def __init__(self) -> None:
        super().__init__()
        self.systems: dict[str, dict[str, Any]] = {}
        self.datasources: dict[str, dict[str, Any]] = {}
        self.secrets: dict[str, tuple[str, str]] = {}
        self.secret_descriptions: dict[str, str] = {}
        self.role_bindings: dict[tuple[str, str], list[dict[str, Any]]] = {}
        self.users: list[str] = []
        self.libraries: dict[str, dict[str, Any]] = {}
        self.opa_token = "opa-token"
        self._next = 0

    def _new_id(self, prefix: str) -> str:
        self._next += 1
        return f"{prefix}-{self._next}"

    def _datasources_under(self, prefix: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(ds) for ds_id, ds in self.datasources.items() if ds_id.startswith(prefix + "/")]

    def _system_view(self, system_id: str) -> dict[str, Any]:
        view = copy.deepcopy(self.systems[system_id])
        view["datasources"] = self._datasources_under(f"systems/{system_id}")
        return view

    # Systems

    def get_system(self, system_id: str) -> dict[str, Any]:
        self._call("get_system", system_id)
        if system_id not in self.systems:
            raise not_found()
        return self._system_view(system_id)

    def get_system_by_name(self, name: str) -> dict[str, Any] | None:
        self._call("get_system_by_name", name)
        for system_id, system in self.systems.items():
            if system.get("name") == name:
                return self._system_view(system_id)
        return None

    def create_system(self, request: dict[str, Any]) -> dict[str, Any]:
        self._call("create_system", request)
        system_id = self._new_id("sys")
        self.systems[system_id] = dict(copy.deepcopy(request), id=system_id)
        return self._system_view(system_id)

    def put_system(
        self,
        system_id: str,
        request: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        self._call("put_system", system_id, request, headers)
        if system_id in self.systems and (headers or {}).get("If-None-Match") == "*":
            raise HTTPError(409, "{}")
        self.systems[system_id] = dict(copy.deepcopy(request), id=system_id)
        return self._system_view(system_id)

    def update_system(self, system_id: str, request: dict[str, Any]) -> dict[str, Any]:
        self._call("update_system", system_id, request)
        self.systems[system_id] = dict(copy.deepcopy(request), id=system_id)
        return self._system_view(system_id)

    def delete_system(self, system_id: str) -> None:
        self._call("delete_system", system_id)
        self.systems.pop(system_id, None)

    def get_opa_config(self, system_id: str) -> OPAConfig:
        self._call("get_opa_config", system_id)
        return OPAConfig(
            host_url=f"https://tenant.styra.com/v1/systems/{system_id}",
            token=self.opa_token,
            system_id=system_id,
            system_type="custom",
        )

    def delete_policy(self, policy: str) -> None:
        self._call("delete_policy", policy)

    # Datasources

    def get_datasource(self, datasource_id: str) -> dict[str, Any]:
        self._call("get_datasource", datasource_id)
        if datasource_id not in self.datasources:
            raise not_found()
        return copy.deepcopy(self.datasources[datasource_id])

    def upsert_datasource(self, datasource_id: str, request: dict[str, Any]) -> None:
        self._call("upsert_datasource", datasource_id, request)
        self.datasources[datasource_id] = dict(copy.deepcopy(request), id=datasource_id)

    def delete_datasource(self, datasource_id: str) -> None:
        self._call("delete_datasource", datasource_id)
        self.datasources.pop(datasource_id, None)

    # Secrets

    def create_update_secret(self, secret_id: str, name: str, secret: str, description: str = "") -> None:
        self._call("create_update_secret", secret_id, name, secret)
        self.secrets[secret_id] = (name, secret)
        self.secret_descriptions[secret_id] = description

    def delete_secret(self, secret_id: str) -> None:
        self._call("delete_secret", secret_id)
        self.secrets.pop(secret_id, None)

    # Role bindings

    def list_role_bindings(self, resource_kind: str, resource_id: str) -> list[dict[str, Any]]:
        self._call("list_role_bindings", resource_kind, resource_id)
        return copy.deepcopy(self.role_bindings.get((resource_kind, resource_id), []))

    def create_role_binding(
        self,
        resource_kind: str,
        resource_id: str,
        role_id: str,
        subjects: list[dict[str, Any]],
    ) -> dict[str, Any]:
        self._call("create_role_binding", resource_kind, resource_id, role_id, subjects)
        binding = {"id": self._new_id("rb"), "role_id": role_id, "subjects": copy.deepcopy(subjects)}
        self.role_bindings.setdefault((resource_kind, resource_id), []).append(binding)
        return copy.deepcopy(binding)

    def _binding(self, binding_id: str) -> tuple[list[dict[str, Any]], dict[str, Any]]:
        for bindings in self.role_bindings.values():
            for binding in bindings:
                if binding["id"] == binding_id:
                    return bindings, binding
        raise not_found()

    def update_role_binding_subjects(self, binding_id: str, subjects: list[dict[str, Any]]) -> None:
        self._call("update_role_binding_subjects", binding_id, subjects)
        _, binding = self._binding(binding_id)
        binding["subjects"] = copy.deepcopy(subjects)

    def delete_role_binding(self, binding_id: str) -> None:
        self._call("delete_role_binding", binding_id)
        bindings, binding = self._binding(binding_id)
        bindings.remove(binding)

    # Users

    def get_users(self) -> tuple[list[dict[str, Any]], bool]:
        self._call("get_users")
        return [{"id": user} for user in self.users], False

    def get_user(self, name: str) -> dict[str, Any] | None:
        self._call("get_user", name)
        return {"id": name} if name in self.users else None

    def create_invitation(self, email: bool, user_id: str) -> None:
        self._call("create_invitation", email, user_id)
        self.users.append(user_id)

    def invalidate_cache(self) -> None:
        self._call("invalidate_cache")

    # Libraries

    def get_library(self, library_id: str) -> dict[str, Any]:
        self._call("get_library", library_id)
        if library_id not in self.libraries:
            raise not_found()
        view = copy.deepcopy(self.libraries[library_id])
        view["datasources"] = self._datasources_under(f"libraries/{library_id}")
        return view

    def upsert_library(self, library_id: str, request: dict[str, Any]) -> None:
        self._call("upsert_library", library_id, request)
        self.libraries[library_id] = dict(copy.deepcopy(request), id=library_id)

    def update_workspace(self, request: dict[str, Any]) -> None:
        self._call("update_workspace", request)


class FakeWebhook(Recorder):
    def system_datasource_changed(self, system_id: str, datasource_id: str) -> None:
        self._call("system_datasource_changed", system_id, datasource_id)

    def library_datasource_changed(self, library_id: str, datasource_id: str) -> None:
        self._call("library_datasource_changed", library_id, datasource_id)


class FakeOCP(Recorder):
    """In-memory self-hosted control plane."""

    def __init__(self) -> None:
        super().__init__()
        self.sources: dict[str, dict[str, Any]] = {}
        self.bundles: dict[str, dict[str, Any]] = {}

    def get_source(self, source_id: str) -> dict[str, Any]:
        self._call("get_source", source_id)
        if source_id not in self.sources:
            raise not_found()
        return copy.deepcopy(self.sources[source_id])

    def put_source(self, source_id: str, request: dict[str, Any]) -> None:
        self._call("put_source", source_id, request)
        self.sources[source_id] = copy.deepcopy(request)

    def delete_source(self, source_id: str) -> None:
        self._call("delete_source", source_id)
        self.sources.pop(source_id, None)

    def put_bundle(self, name: str, request: dict[str, Any]) -> None:
        self._call("put_bundle", name, request)
        self.bundles[name] = copy.deepcopy(request)

    def delete_bundle(self, name: str) -> None:
        self._call("delete_bundle", name)
        if name not in self.bundles:
            raise not_found()
        del self.bundles[name]


class FakeS3Admin(Recorder):
    """In-memory object storage principals."""

    def __init__(self) -> None:
        super().__init__()
        self.users: dict[str, list[AccessKey]] = {}
        self._next = 0

    def _key(self) -> AccessKey:
        self._next += 1
        return AccessKey(access_key_id=f"AKID{self._next}", secret_access_key=f"secret{self._next}")

    def user_exists(self, user_name: str) -> bool:
        self._call("user_exists", user_name)
        return user_name in self.users

    def create_system_bundle_user(self, user_name: str, bucket: str, unique_name: str) -> AccessKey:
        self._call("create_system_bundle_user", user_name, bucket, unique_name)
        key = self._key()
        self.users[user_name] = [key]
        return key

    def set_new_user_secret_key(self, user_name: str) -> AccessKey:
        self._call("set_new_user_secret_key", user_name)
        key = self._key()
        self.users[user_name] = [key]
        return key

    def list_access_keys(self, user_name: str) -> list[str]:
        self._call("list_access_keys", user_name)
        return [key.access_key_id for key in self.users.get(user_name, [])]


def _encode(data: dict[str, str]) -> dict[str, str]:
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


class FakeCoreAPI(Recorder):
    """Stores Secrets and ConfigMaps the way the API server returns them."""

    def __init__(self) -> None:
        super().__init__()
        self.secrets: dict[tuple[str, str], tuple[client.V1ObjectMeta, dict[str, str]]] = {}
        self.configmaps: dict[tuple[str, str], tuple[client.V1ObjectMeta, dict[str, str]]] = {}

    def add_secret(
        self,
        namespace: str,
        name: str,
        data: dict[str, str],
        owner_references: list[Any] | None = None,
    ) -> None:
        meta = client.V1ObjectMeta(name=name, namespace=namespace, owner_references=owner_references)
        self.secrets[(namespace, name)] = (meta, _encode(data))

    def add_configmap(
        self,
        namespace: str,
        name: str,
        data: dict[str, str],
        owner_references: list[Any] | None = None,
    ) -> None:
        meta = client.V1ObjectMeta(name=name, namespace=namespace, owner_references=owner_references)
        self.configmaps[(namespace, name)] = (meta, dict(data))

    def secret_data(self, namespace: str, name: str) -> dict[str, str]:
        _, data = self.secrets[(namespace, name)]
        return {k: base64.b64decode(v).decode("utf-8") for k, v in data.items()}

    def read_namespaced_secret(self, name: str, namespace: str) -> client.V1Secret:
        self._call("read_namespaced_secret", namespace, name)
        if (namespace, name) not in self.secrets:
            raise client.exceptions.ApiException(status=404)
        meta, data = self.secrets[(namespace, name)]
        return client.V1Secret(metadata=meta, data=dict(data))

    def _store_secret(self, namespace: str, body: client.V1Secret) -> None:
        data = dict(body.data or {})
        data.update(_encode(body.string_data or {}))
        self.secrets[(namespace, body.metadata.name)] = (body.metadata, data)

    def create_namespaced_secret(self, namespace: str, body: client.V1Secret, **kwargs: Any) -> client.V1Secret:
        self._call("create_namespaced_secret", namespace, body.metadata.name)
        self._store_secret(namespace, body)
        return body

    def replace_namespaced_secret(
        self, name: str, namespace: str, body: client.V1Secret, **kwargs: Any
    ) -> client.V1Secret:
        self._call("replace_namespaced_secret", namespace, name)
        self._store_secret(namespace, body)
        return body

    def read_namespaced_config_map(self, name: str, namespace: str) -> client.V1ConfigMap:
        self._call("read_namespaced_config_map", namespace, name)
        if (namespace, name) not in self.configmaps:
            raise client.exceptions.ApiException(status=404)
        meta, data = self.configmaps[(namespace, name)]
        return client.V1ConfigMap(metadata=meta, data=dict(data))

    def create_namespaced_config_map(
        self, namespace: str, body: client.V1ConfigMap, **kwargs: Any
    ) -> client.V1ConfigMap:
        self._call("create_namespaced_config_map", namespace, body.metadata.name)
        self.configmaps[(namespace, body.metadata.name)] = (body.metadata, dict(body.data or {}))
        return body

    def replace_namespaced_config_map(
        self, name: str, namespace: str, body: client.V1ConfigMap, **kwargs: Any
    ) -> client.V1ConfigMap:
        self._call("replace_namespaced_config_map", namespace, name)
        self.configmaps[(namespace, name)] = (body.metadata, dict(body.data or {}))
        return body


@pytest.fixture(autouse=True)
def kopf_event():
    """Kubernetes events are recorded instead of posted."""
    with patch("styra_operator.utils.events.kopf.event") as mock_event:
        yield mock_event


@pytest.fixture
def config() -> ProjectConfig:
    return ProjectConfig(
        system_user_roles=["SystemViewer"],
        git_credentials=[
            GitCredential(user="git-user", password="git-pass", repo_prefix="https://github.com/org"),
        ],
    )


@pytest.fixture
def das() -> FakeDAS:
    return FakeDAS()


@pytest.fixture
def webhook() -> FakeWebhook:
    return FakeWebhook()


@pytest.fixture
def core_api() -> FakeCoreAPI:
    return FakeCoreAPI()


@pytest.fixture
def apps_api() -> MagicMock:
    return MagicMock()


@pytest.fixture
def ocp() -> FakeOCP:
    return FakeOCP()


@pytest.fixture
def s3() -> FakeS3Admin:
    return FakeS3Admin()


@pytest.fixture
def context(config, das, webhook, core_api, apps_api, ocp, s3) -> OperatorContext:
    return OperatorContext(
        config=config,
        das=das,
        webhook=webhook,
        core_api=core_api,
        apps_api=apps_api,
        ocp=ocp,
        s3=s3,
    )


@pytest.fixture
def make_body():
    """Build a resource body the way kopf hands it to a handler."""

    def _make(
        kind: str = "System",
        name: str = "test",
        namespace: str | None = "default",
        spec: dict[str, Any] | None = None,
        status: dict[str, Any] | None = None,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
        finalizers: list[str] | None = None,
        deletion_timestamp: str | None = None,
    ) -> dict[str, Any]:
        api_version = "styra.bankdata.dk/v1beta1" if kind == "System" else "styra.bankdata.dk/v1alpha1"
        metadata: dict[str, Any] = {"name": name, "uid": f"uid-{name}"}
        if namespace is not None:
            metadata["namespace"] = namespace
        if labels is not None:
            metadata["labels"] = labels
        if annotations is not None:
            metadata["annotations"] = annotations
        if finalizers is not None:
            metadata["finalizers"] = finalizers
        if deletion_timestamp is not None:
            metadata["deletionTimestamp"] = deletion_timestamp
        return {
            "apiVersion": api_version,
            "kind": kind,
            "metadata": metadata,
            "spec": spec or {},
            "status": status or {},
        }

    return _make


def _response(status_code: int = 200, payload: Any = None, text: str | None = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if text is None:
        text = json.dumps(payload) if payload is not None else ""
    response._content = text.encode("utf-8")
    response.encoding = "utf-8"
    return response


@pytest.fixture
def make_response():
    """Build a ``requests.Response`` with a JSON or raw text body."""
    return _response


@pytest.fixture
def session(make_response):
    """A real session whose ``request`` is mocked."""
    session = requests.Session()
    session.request = MagicMock(return_value=make_response(200, {"result": {}}))
    return session
