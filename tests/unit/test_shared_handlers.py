"""Tests for shared handler state and Kubernetes helpers."""

from __future__ import annotations

from unittest.mock import patch

from styra_operator.handlers import shared


class TestOperatorContext:
    """Test cases for the operator context."""

    def test_contexts_do_not_share_locks(self, context):
        other = shared.OperatorContext(
            config=context.config,
            das=None,
            webhook=context.webhook,
            core_api=context.core_api,
            apps_api=context.apps_api,
        )
        assert other.locks is not context.locks


class TestLoadKubeConfig:
    """Test cases for kube config loading."""

    @patch("kubernetes.config.load_kube_config")
    @patch("kubernetes.config.load_incluster_config")
    def test_in_cluster(self, mock_incluster, mock_kubeconfig):
        shared.load_kube_config()

        mock_incluster.assert_called_once()
        mock_kubeconfig.assert_not_called()

    @patch("kubernetes.config.load_kube_config")
    @patch("kubernetes.config.load_incluster_config")
    def test_fallback_to_kubeconfig(self, mock_incluster, mock_kubeconfig):
        from kubernetes.config import ConfigException

        mock_incluster.side_effect = ConfigException("not in cluster")

        shared.load_kube_config()

        mock_kubeconfig.assert_called_once()
