"""Tests for Kubernetes secrets utilities."""

from __future__ import annotations

import base64
import binascii
from unittest.mock import Mock

import pytest
from kubernetes import client

from styra_operator.utils.secrets import (
    decode_secret_data,
    read_secret_data,
    read_secret_if_exists,
)


class TestDecodeSecretData:
    """Test cases for decode_secret_data function."""

    def test_base64_values(self):
        encoded = base64.b64encode(b"git-pass").decode("utf-8")
        assert decode_secret_data({"secret": encoded}) == {"secret": "git-pass"}

    def test_invalid_base64_raises(self):
        """Test that a value which is not base64 is an error."""
        with pytest.raises(binascii.Error):
            decode_secret_data({"name": "git-user!"})

    def test_empty(self):
        assert decode_secret_data(None) == {}


class TestReadSecret:
    """Test cases for reading secrets."""

    def test_read_secret_data(self):
        mock_api = Mock()
        mock_api.read_namespaced_secret.return_value = client.V1Secret(
            data={"token": base64.b64encode(b"abc").decode("utf-8")}
        )

        assert read_secret_data(mock_api, "default", "test-opa-token") == {"token": "abc"}
        mock_api.read_namespaced_secret.assert_called_once_with(
            name="test-opa-token", namespace="default"
        )

    def test_read_secret_data_propagates_errors(self):
        mock_api = Mock()
        mock_api.read_namespaced_secret.side_effect = client.exceptions.ApiException(status=404)

        with pytest.raises(client.exceptions.ApiException):
            read_secret_data(mock_api, "default", "missing")

    def test_read_secret_if_exists_missing(self):
        mock_api = Mock()
        mock_api.read_namespaced_secret.side_effect = client.exceptions.ApiException(status=404)

        assert read_secret_if_exists(mock_api, "default", "missing") is None

    def test_read_secret_if_exists_other_error(self):
        mock_api = Mock()
        mock_api.read_namespaced_secret.side_effect = client.exceptions.ApiException(status=403)

        with pytest.raises(client.exceptions.ApiException):
            read_secret_if_exists(mock_api, "default", "forbidden")
