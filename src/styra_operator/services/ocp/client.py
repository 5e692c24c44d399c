"""HTTP implementation of the self-hosted control plane client."""

from __future__ import annotations

from typing import Any

from ..http import APIClient, json_result


class OCPClient:
    """Client for the self-hosted control plane ``/v1/sources`` and ``/v1/bundles`` APIs."""

    def __init__(self, address: str, token: str, http: APIClient | None = None):
        self.http = http or APIClient(address, token, api_type="ocp")

    def get_source(self, source_id: str) -> dict[str, Any]:
        response = self.http.request("GET", f"/v1/sources/{source_id}", "get_source")
        return json_result(response) or {}

    def put_source(self, source_id: str, request: dict[str, Any]) -> None:
        self.http.request("PUT", f"/v1/sources/{source_id}", "put_source", body=request)

    def delete_source(self, source_id: str) -> None:
        self.http.request(
            "DELETE", f"/v1/sources/{source_id}", "delete_source", expected=(200, 404)
        )

    def put_bundle(self, name: str, request: dict[str, Any]) -> None:
        self.http.request("PUT", f"/v1/bundles/{name}", "put_bundle", body=request)

    def delete_bundle(self, name: str) -> None:
        self.http.request("DELETE", f"/v1/bundles/{name}", "delete_bundle")
