"""IAM-backed object storage admin client."""

from __future__ import annotations

import json
import logging
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .base import AccessKey

logger = logging.getLogger(__name__)


def bundle_read_policy(bucket: str, unique_name: str) -> dict[str, Any]:
    """Build a read-only policy scoped to ``bundles/<unique_name>/*``.

    Args:
        bucket: Bundle bucket
        unique_name: Unique system name

    Returns:
        IAM policy document
    """
    prefix = f"bundles/{unique_name}"
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket}/{prefix}/*"],
            },
            {
                "Effect": "Allow",
                "Action": ["s3:ListBucket"],
                "Resource": [f"arn:aws:s3:::{bucket}"],
                "Condition": {"StringLike": {"s3:prefix": [f"{prefix}/*"]}},
            },
        ],
    }


class IAMAdminClient:
    """Manages bundle-reader principals through an IAM-compatible endpoint."""

    def __init__(
        self,
        endpoint: str,
        region: str,
        access_key: str,
        secret_key: str,
        iam_client: Any = None,
    ) -> None:
        """Initialize the IAM admin client.

        Args:
            endpoint: IAM endpoint URL
            region: Region used to sign requests
            access_key: Admin access key ID
            secret_key: Admin secret access key
            iam_client: Pre-built boto3 IAM client
        """
        self.iam_client = iam_client or boto3.client(
            "iam",
            endpoint_url=endpoint or None,
            region_name=region or "us-east-1",
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
        )

    def user_exists(self, user_name: str) -> bool:
        try:
            self.iam_client.get_user(UserName=user_name)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NoSuchEntity":
                return False
            logger.error(f"Failed to get user {user_name}: {e}")
            raise

    def create_system_bundle_user(self, user_name: str, bucket: str, unique_name: str) -> AccessKey:
        """Create a principal with read access to one system bundle.

        Args:
            user_name: Principal name
            bucket: Bundle bucket
            unique_name: Unique system name

        Returns:
            Access key of the new principal
        """
        logger.info(f"Creating bundle user {user_name} for {unique_name}")
        self.iam_client.create_user(UserName=user_name)
        self.iam_client.put_user_policy(
            UserName=user_name,
            PolicyName=f"readonly-{bucket}-{unique_name}",
            PolicyDocument=json.dumps(bundle_read_policy(bucket, unique_name)),
        )
        return self._create_access_key(user_name)

    def set_new_user_secret_key(self, user_name: str) -> AccessKey:
        """Rotate the access key of a principal.

        Args:
            user_name: Principal name

        Returns:
            The new access key
        """
        for access_key_id in self.list_access_keys(user_name):
            self.iam_client.delete_access_key(UserName=user_name, AccessKeyId=access_key_id)
            logger.info(f"Deleted access key {access_key_id} for user {user_name}")
        return self._create_access_key(user_name)

    def list_access_keys(self, user_name: str) -> list[str]:
        response = self.iam_client.list_access_keys(UserName=user_name)
        return [key["AccessKeyId"] for key in response.get("AccessKeyMetadata", [])]

    def _create_access_key(self, user_name: str) -> AccessKey:
        response = self.iam_client.create_access_key(UserName=user_name)
        key = response["AccessKey"]
        return AccessKey(
            access_key_id=key["AccessKeyId"],
            secret_access_key=key["SecretAccessKey"],
        )
