"""Object storage credentials for bundle downloads on the self-hosted plane."""

from __future__ import annotations

import hashlib
import logging
from typing import Any

from kubernetes import client

from ..constants import (
    AWS_SECRET_NAME_KEY_ID,
    AWS_SECRET_NAME_REGION,
    AWS_SECRET_NAME_SECRET_KEY,
    COND_S3_CREDENTIALS_UPDATED,
    EVENT_ERROR_S3_CREDENTIALS,
)
from ..errors import ReconcilerError
from ..services.s3.base import AccessKey, S3AdminClient
from ..utils.secrets import decode_secret_data, read_secret_if_exists
from .derived import ensure_owned_secret

logger = logging.getLogger(__name__)

PRINCIPAL_NAME_LENGTH = 20


def principal_name(bucket: str, unique_name: str) -> str:
    """Derive the deterministic principal name for a system bundle."""
    digest = hashlib.sha256(f"{bucket}/{unique_name}".encode("utf-8")).hexdigest()
    return digest[:PRINCIPAL_NAME_LENGTH]


def s3_secret_name(system_name: str) -> str:
    return f"{system_name}-opa-s3"


def _stored_key(data: dict[str, str]) -> AccessKey | None:
    key_id = data.get(AWS_SECRET_NAME_KEY_ID, "")
    secret = data.get(AWS_SECRET_NAME_SECRET_KEY, "")
    if not key_id or not secret:
        return None
    return AccessKey(access_key_id=key_id, secret_access_key=secret)


def resolve_access_key(
    s3: S3AdminClient,
    user_name: str,
    bucket: str,
    unique_name: str,
    stored: dict[str, str],
) -> AccessKey:
    """Return the access key the bundle Secret should hold.

    A missing principal is created. An existing principal whose key is not
    in the Secret, or no longer valid, gets a new key. Otherwise the stored
    key is reused.

    Args:
        s3: Object storage admin client
        user_name: Principal name
        bucket: Bundle bucket
        unique_name: Unique system name
        stored: Decoded data of the existing Secret

    Returns:
        Access key for the Secret
    """
    if not s3.user_exists(user_name):
        logger.info(f"Creating object storage user {user_name} for {unique_name}")
        return s3.create_system_bundle_user(user_name, bucket, unique_name)

    key = _stored_key(stored)
    if key is None:
        logger.info(f"Secret for user {user_name} is missing or incomplete, rotating key")
        return s3.set_new_user_secret_key(user_name)

    if key.access_key_id not in s3.list_access_keys(user_name):
        logger.info(f"Stored key of user {user_name} is no longer valid, rotating key")
        return s3.set_new_user_secret_key(user_name)

    return key


def reconcile_s3_credentials(
    s3: S3AdminClient,
    core_api: client.CoreV1Api,
    owner_body: Any,
    bucket: str,
    region: str,
    unique_name: str,
    labels: dict[str, str] | None = None,
) -> str:
    """Ensure the bundle principal exists and its key is stored in the System's Secret.

    Returns:
        Outcome of the Secret reconcile

    Raises:
        ReconcilerError: If the principal or the Secret cannot be reconciled
    """
    meta = owner_body.get("metadata") or {}
    secret_name = s3_secret_name(meta.get("name", ""))
    user_name = principal_name(bucket, unique_name)

    try:
        existing = read_secret_if_exists(core_api, meta.get("namespace", ""), secret_name)
        stored = decode_secret_data(existing.data) if existing is not None else {}
        key = resolve_access_key(s3, user_name, bucket, unique_name, stored)
    except Exception as e:
        raise (
            ReconcilerError.wrap(e, "Could not reconcile object storage credentials")
            .with_event(EVENT_ERROR_S3_CREDENTIALS)
            .with_condition(COND_S3_CREDENTIALS_UPDATED)
        ) from e

    return ensure_owned_secret(
        core_api,
        owner_body,
        secret_name,
        {
            AWS_SECRET_NAME_KEY_ID: key.access_key_id,
            AWS_SECRET_NAME_SECRET_KEY: key.secret_access_key,
            AWS_SECRET_NAME_REGION: region,
        },
        labels=labels,
        condition=COND_S3_CREDENTIALS_UPDATED,
        event=EVENT_ERROR_S3_CREDENTIALS,
    )
