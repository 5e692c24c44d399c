"""Object storage admin interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass
class AccessKey:
    """Access key pair of an object storage principal."""

    access_key_id: str
    secret_access_key: str


class S3AdminClient(Protocol):
    """Protocol defining object storage principal operations."""

    def user_exists(self, user_name: str) -> bool:
        """Check whether a principal exists."""
        ...

    def create_system_bundle_user(self, user_name: str, bucket: str, unique_name: str) -> AccessKey:
        """Create a principal that can read the bundle of one system."""
        ...

    def set_new_user_secret_key(self, user_name: str) -> AccessKey:
        """Replace every access key of a principal with a new one."""
        ...

    def list_access_keys(self, user_name: str) -> list[str]:
        """List the access key ids of a principal."""
        ...
