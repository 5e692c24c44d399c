"""Utilities for reading Kubernetes secrets."""

from __future__ import annotations

import base64
from typing import Any

from kubernetes import client


def decode_secret_data(data: dict[str, Any] | None) -> dict[str, str]:
    """Decode the base64 ``data`` map of a Secret.

    Args:
        data: Raw ``data`` field of a V1Secret

    Returns:
        Mapping of key to decoded string value

    Raises:
        binascii.Error: If a value is not valid base64
    """
    return {
        key: base64.b64decode(value, validate=True).decode("utf-8")
        for key, value in (data or {}).items()
    }


def read_secret_data(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> dict[str, str]:
    """Read and decode all keys of a Kubernetes secret.

    Args:
        api: Kubernetes API client
        namespace: Namespace of the secret
        secret_name: Name of the secret

    Returns:
        Decoded secret data

    Raises:
        client.exceptions.ApiException: If the secret cannot be read
    """
    secret = api.read_namespaced_secret(name=secret_name, namespace=namespace)
    return decode_secret_data(secret.data)


def read_secret_if_exists(
    api: client.CoreV1Api,
    namespace: str,
    secret_name: str,
) -> client.V1Secret | None:
    """Read a secret, returning None when it does not exist."""
    try:
        return api.read_namespaced_secret(name=secret_name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return None
        raise
