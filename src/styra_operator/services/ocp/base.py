"""Self-hosted control plane client interface."""

from __future__ import annotations

from typing import Any, Protocol


class ControlPlaneClient(Protocol):
    """Protocol defining source and bundle operations."""

    def get_source(self, source_id: str) -> dict[str, Any]:
        """Get a source. Raises HTTPError on 404."""
        ...

    def put_source(self, source_id: str, request: dict[str, Any]) -> None:
        """Create or replace a source."""
        ...

    def delete_source(self, source_id: str) -> None:
        """Delete a source; a missing source is not an error."""
        ...

    def put_bundle(self, name: str, request: dict[str, Any]) -> None:
        """Create or replace a bundle."""
        ...

    def delete_bundle(self, name: str) -> None:
        """Delete a bundle."""
        ...
