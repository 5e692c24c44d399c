"""Tests for OPA and SLP config rendering."""

from __future__ import annotations

import yaml

from styra_operator.builders.opaconfig import (
    build_ocp_opa_config,
    build_opa_config,
    build_opa_config_with_slp,
    build_slp_config,
    deep_merge,
)
from styra_operator.services.das.base import OPAConfig

OPA_CONFIG = OPAConfig(
    host_url="https://tenant.styra.com/v1/systems/sys",
    token="token",
    system_id="sys",
    system_type="custom",
)


class TestDeepMerge:
    """Test cases for merging user overrides."""

    def test_nested_merge(self):
        base = {"a": {"b": 1, "c": 2}, "d": [1]}
        merged = deep_merge(base, {"a": {"c": 3}, "d": [2], "e": True})
        assert merged == {"a": {"b": 1, "c": 3}, "d": [2], "e": True}
        assert base == {"a": {"b": 1, "c": 2}, "d": [1]}

    def test_none_override(self):
        assert deep_merge({"a": 1}, None) == {"a": 1}


class TestBuildOPAConfig:
    """Test cases for the OPA config of a System."""

    def test_direct(self):
        conf = yaml.safe_load(build_opa_config(OPA_CONFIG))

        assert [s["name"] for s in conf["services"]] == ["styra", "styra-bundles"]
        assert conf["services"][1]["url"] == "https://tenant.styra.com/v1/systems/sys/bundles"
        assert conf["services"][0]["credentials"]["bearer"]["token_path"] == "/etc/opa/auth/token"
        assert conf["labels"] == {"system-id": "sys", "system-type": "custom"}
        assert conf["discovery"]["prefix"] == "/systems/sys"
        assert "decision_logs" not in conf

    def test_decision_log_headers_and_custom(self):
        rendered = build_opa_config(
            OPA_CONFIG,
            decision_log_headers=["X-Request-Id"],
            custom_config={"labels": {"team": "a"}, "status": {"console": True}},
        )
        conf = yaml.safe_load(rendered)

        assert conf["decision_logs"]["request_context"]["http"]["headers"] == ["X-Request-Id"]
        assert conf["labels"] == {"system-id": "sys", "system-type": "custom", "team": "a"}
        assert conf["status"] == {"console": True}

    def test_with_slp(self):
        conf = yaml.safe_load(build_opa_config_with_slp(OPA_CONFIG, "http://slp/v1"))

        assert conf["services"] == [{"name": "styra", "url": "http://slp/v1"}]
        assert conf["discovery"] == {"name": "discovery", "service": "styra"}

    def test_slp(self):
        conf = yaml.safe_load(build_slp_config(OPA_CONFIG))

        assert conf["services"][0]["credentials"]["bearer"]["token_path"] == "/etc/slp/auth/token"
        assert conf["discovery"]["resource"] == "/systems/sys/discovery"


class TestBuildOCPConfig:
    """Test cases for the OPA config on the self-hosted plane."""

    def test_without_log_service(self):
        conf = yaml.safe_load(
            build_ocp_opa_config("ns-sys", "https://s3/bucket", "bundles/ns-sys/bundle.tar.gz", {"a": "b"})
        )

        assert conf["services"] == [
            {
                "name": "s3",
                "url": "https://s3/bucket",
                "credentials": {"s3_signing": {"environment_credentials": {}}},
            }
        ]
        assert conf["bundles"] == {"ns-sys": {"service": "s3", "resource": "bundles/ns-sys/bundle.tar.gz"}}
        assert conf["labels"] == {"a": "b"}
        assert "decision_logs" not in conf

    def test_with_log_service(self):
        conf = yaml.safe_load(
            build_ocp_opa_config(
                "ns-sys",
                "https://s3/bucket",
                "bundles/ns-sys/bundle.tar.gz",
                {},
                log_service_url="https://logs",
                log_token_path="/etc/logs/token",
            )
        )

        assert conf["services"][1] == {
            "name": "logs",
            "url": "https://logs",
            "credentials": {"bearer": {"token_path": "/etc/logs/token"}},
        }
        assert conf["decision_logs"] == {"service": "logs"}
