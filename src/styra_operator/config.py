"""Project configuration for the Styra Operator.

The configuration is a YAML document using the same camelCase keys as the
controller's ``ProjectConfig``. It is read once at startup and passed to the
handlers explicitly.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "/etc/styra-operator/config.yaml"


class ConfigError(Exception):
    """Raised when the project configuration is invalid."""


@dataclass
class GitCredential:
    """Default git credential for repositories under ``repo_prefix``."""

    user: str
    password: str
    repo_prefix: str


@dataclass
class SSOConfig:
    identity_provider: str = ""
    jwt_groups_claim: str = ""


@dataclass
class NotificationWebhooks:
    system_datasource_changed: str = ""
    library_datasource_changed: str = ""


@dataclass
class StyraConfig:
    address: str = ""
    token: str = ""
    token_secret_path: str = ""


@dataclass
class SLPRestartConfig:
    enabled: bool = False
    deployment_type: str = ""


@dataclass
class S3AdminCredentials:
    access_key_id: str = ""
    secret_access_key: str = ""


@dataclass
class S3ObjectStorage:
    bucket: str = ""
    url: str = ""
    region: str = ""
    ocp_credential_id: str = ""
    iam_url: str = ""
    admin_credentials: S3AdminCredentials = field(default_factory=S3AdminCredentials)


@dataclass
class DecisionLogService:
    url: str = ""
    token_path: str = ""


@dataclass
class KafkaTLSConfig:
    client_certificate_name: str = ""
    client_certificate: str = ""
    client_key: str = ""
    root_ca: str = ""
    insecure_skip_verify: bool = False


@dataclass
class KafkaConfig:
    brokers: list[str] = field(default_factory=list)
    topic: str = ""
    required_acks: str = ""
    tls: KafkaTLSConfig = field(default_factory=KafkaTLSConfig)


@dataclass
class ExporterConfig:
    """Workspace export of decisions or activity to Kafka."""

    enabled: bool = False
    interval: str = ""
    kafka: KafkaConfig = field(default_factory=KafkaConfig)


@dataclass
class OCPConfig:
    """Settings for the self-hosted control plane."""

    enabled: bool = False
    address: str = ""
    token: str = ""
    token_secret_path: str = ""
    git_credential_id: str = ""
    default_requirements: list[str] = field(default_factory=list)
    s3: S3ObjectStorage = field(default_factory=S3ObjectStorage)
    decision_logs: DecisionLogService = field(default_factory=DecisionLogService)


@dataclass
class ProjectConfig:
    """Operator-wide configuration."""

    controller_class: str = ""
    deletion_protection_default: bool = False
    read_only: bool = False
    enable_delta_bundles_default: bool | None = None
    enable_migrations: bool = False
    datasource_ignore_patterns: list[str] = field(default_factory=list)
    git_credentials: list[GitCredential] = field(default_factory=list)
    log_level: int = 0
    notification_webhooks: NotificationWebhooks = field(default_factory=NotificationWebhooks)
    sso: SSOConfig | None = None
    styra: StyraConfig = field(default_factory=StyraConfig)
    opa_decision_log_headers: list[str] | None = None
    system_prefix: str = ""
    system_suffix: str = ""
    system_user_roles: list[str] = field(default_factory=list)
    slp_restart: SLPRestartConfig = field(default_factory=SLPRestartConfig)
    ocp: OCPConfig = field(default_factory=OCPConfig)
    decisions_exporter: ExporterConfig | None = None
    activity_exporter: ExporterConfig | None = None

    def get_git_credential_for_repo(self, repo_url: str) -> GitCredential | None:
        """Resolve the default git credential for a repository URL.

        The credential with the longest matching ``repo_prefix`` wins. Ties keep
        the order the credentials were configured in.

        Args:
            repo_url: URL of the git repository

        Returns:
            Matching credential, or None when no prefix matches
        """
        ordered = sorted(self.git_credentials, key=lambda c: len(c.repo_prefix), reverse=True)
        for credential in ordered:
            if repo_url.startswith(credential.repo_prefix):
                return credential
        return None

    def matches_ignore_pattern(self, datasource_id: str) -> bool:
        """Check whether a datasource id matches any configured ignore pattern."""
        for pattern in self.datasource_ignore_patterns:
            if re.search(pattern, datasource_id):
                return True
        return False

    def slp_restart_enabled(self) -> bool:
        return self.slp_restart.enabled

    def styra_token(self) -> str:
        """Return the DAS API token, reading it from file if configured."""
        if self.styra.token_secret_path:
            return Path(self.styra.token_secret_path).read_text().strip()
        return self.styra.token

    def ocp_token(self) -> str:
        """Return the self-hosted control plane token."""
        if self.ocp.token_secret_path:
            return Path(self.ocp.token_secret_path).read_text().strip()
        return self.ocp.token


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _parse_exporter(data: Any) -> ExporterConfig | None:
    if not isinstance(data, dict):
        return None
    kafka = _section(data, "kafka")
    tls = _section(kafka, "tls")
    return ExporterConfig(
        enabled=bool(data.get("enabled", False)),
        interval=data.get("interval", ""),
        kafka=KafkaConfig(
            brokers=list(kafka.get("brokers") or []),
            topic=kafka.get("topic", ""),
            required_acks=kafka.get("requiredAcks", ""),
            tls=KafkaTLSConfig(
                client_certificate_name=tls.get("clientCertificateName", ""),
                client_certificate=tls.get("clientCertificate", ""),
                client_key=tls.get("clientKey", ""),
                root_ca=tls.get("rootCA", ""),
                insecure_skip_verify=bool(tls.get("insecureSkipVerify", False)),
            ),
        ),
    )


def parse_config(data: dict[str, Any]) -> ProjectConfig:
    """Build a ProjectConfig from a decoded YAML document.

    Args:
        data: Decoded configuration mapping

    Returns:
        Validated ProjectConfig

    Raises:
        ConfigError: If the configuration is invalid
    """
    styra = _section(data, "styra")
    webhooks = _section(data, "notificationWebhooks")
    pod_restart = _section(data, "podRestart")
    slp_restart = _section(pod_restart, "slpRestart")
    ocp = _section(data, "ocp")
    storage = _section(_section(ocp, "bundleObjectStorage"), "s3")
    admin = _section(storage, "adminCredentials")
    decision_logs = _section(ocp, "decisionLogs")

    sso = None
    if isinstance(data.get("sso"), dict):
        sso = SSOConfig(
            identity_provider=data["sso"].get("identityProvider", ""),
            jwt_groups_claim=data["sso"].get("jwtGroupsClaim", ""),
        )

    headers = (
        _section(_section(_section(_section(data, "opa"), "decision_logs"), "request_context"), "http")
        .get("headers")
    )

    git_credentials = [
        GitCredential(
            user=item.get("user", ""),
            password=item.get("password", ""),
            repo_prefix=item.get("repoPrefix", ""),
        )
        for item in data.get("gitCredentials") or []
    ]

    config = ProjectConfig(
        controller_class=data.get("controllerClass", ""),
        deletion_protection_default=bool(data.get("deletionProtectionDefault", False)),
        read_only=bool(data.get("readOnly", False)),
        enable_delta_bundles_default=data.get("enableDeltaBundlesDefault"),
        enable_migrations=bool(data.get("enableMigrations", False)),
        datasource_ignore_patterns=list(data.get("datasourceIgnorePatterns") or []),
        git_credentials=git_credentials,
        log_level=int(data.get("logLevel", 0)),
        notification_webhooks=NotificationWebhooks(
            system_datasource_changed=webhooks.get("systemDatasourceChanged", ""),
            library_datasource_changed=webhooks.get("libraryDatasourceChanged", ""),
        ),
        sso=sso,
        styra=StyraConfig(
            address=styra.get("address", ""),
            token=styra.get("token", ""),
            token_secret_path=styra.get("tokenSecretPath", ""),
        ),
        opa_decision_log_headers=headers,
        system_prefix=data.get("systemPrefix", ""),
        system_suffix=data.get("systemSuffix", ""),
        system_user_roles=list(data.get("systemUserRoles") or []),
        slp_restart=SLPRestartConfig(
            enabled=bool(slp_restart.get("enabled", False)),
            deployment_type=slp_restart.get("deploymentType", ""),
        ),
        ocp=OCPConfig(
            enabled=bool(ocp.get("enabled", False)),
            address=ocp.get("address", ""),
            token=ocp.get("token", ""),
            token_secret_path=ocp.get("tokenSecretPath", ""),
            git_credential_id=ocp.get("gitCredentialID", ""),
            default_requirements=list(ocp.get("defaultRequirements") or []),
            s3=S3ObjectStorage(
                bucket=storage.get("bucket", ""),
                url=storage.get("url", ""),
                region=storage.get("region", ""),
                ocp_credential_id=storage.get("ocpCredentialID", ""),
                iam_url=storage.get("iamURL", ""),
                admin_credentials=S3AdminCredentials(
                    access_key_id=admin.get("accessKeyID", ""),
                    secret_access_key=admin.get("secretAccessKey", ""),
                ),
            ),
            decision_logs=DecisionLogService(
                url=decision_logs.get("url", ""),
                token_path=decision_logs.get("tokenPath", ""),
            ),
        ),
        decisions_exporter=_parse_exporter(data.get("decisionsExporter")),
        activity_exporter=_parse_exporter(data.get("activityExporter")),
    )
    validate_config(config)
    return config


def validate_config(config: ProjectConfig) -> None:
    """Validate cross-field constraints of the configuration.

    Raises:
        ConfigError: If the configuration is invalid
    """
    if config.styra.token and config.styra.token_secret_path:
        raise ConfigError("styra.token and styra.tokenSecretPath are mutually exclusive")

    for pattern in config.datasource_ignore_patterns:
        try:
            re.compile(pattern)
        except re.error as e:
            raise ConfigError(f"Invalid datasource ignore pattern {pattern!r}: {e}") from e

    for key, exporter in (
        ("decisionsExporter", config.decisions_exporter),
        ("activityExporter", config.activity_exporter),
    ):
        if exporter is not None and not exporter.kafka.tls.client_certificate_name:
            raise ConfigError(f"{key}.kafka.tls.clientCertificateName is required")

    if config.ocp.enabled:
        if not config.ocp.address:
            raise ConfigError("ocp.address is required when ocp is enabled")
        if not config.ocp.s3.bucket:
            raise ConfigError("ocp.bundleObjectStorage.s3.bucket is required when ocp is enabled")


def load_config(path: str | None = None) -> ProjectConfig:
    """Load the project configuration from a YAML file.

    Args:
        path: Path to the config file; defaults to ``STYRA_OPERATOR_CONFIG``

    Returns:
        Parsed configuration, or defaults when the file does not exist
    """
    config_path = path or os.getenv("STYRA_OPERATOR_CONFIG", DEFAULT_CONFIG_PATH)
    if not os.path.exists(config_path):
        logger.warning(f"Config file {config_path} not found, using defaults")
        return ProjectConfig()

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return parse_config(data)
