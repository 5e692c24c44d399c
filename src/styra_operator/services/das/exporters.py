"""Workspace decision and activity exporters in Styra DAS."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ...config import ExporterConfig, ProjectConfig
from ...errors import HTTPError
from ...utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

DECISIONS_EXPORTER = "decisions_exporter"
ACTIVITY_EXPORTER = "activity_exporter"


def exporter_request(exporter: ExporterConfig) -> dict[str, Any]:
    """Build the workspace exporter settings for a Kafka exporter."""
    kafka = exporter.kafka
    return {
        "interval": exporter.interval,
        "kafka": {
            "authentication": "TLS",
            "brokers": list(kafka.brokers),
            "required_acks": kafka.required_acks,
            "topic": kafka.topic,
            "tls": {
                "client_cert": kafka.tls.client_certificate_name,
                "rootca": kafka.tls.root_ca.rstrip("\n"),
                "insecure_skip_verify": kafka.tls.insecure_skip_verify,
            },
        },
    }


def configure_exporter(das: Any, exporter: ExporterConfig | None, key: str) -> None:
    """Apply one exporter to the DAS workspace.

    An enabled exporter uploads the Kafka client certificate as a DAS secret
    and points the workspace at it. A disabled one removes both.

    Args:
        das: DAS client with secret and workspace operations
        exporter: Exporter settings; None leaves the workspace untouched
        key: Workspace field, ``decisions_exporter`` or ``activity_exporter``

    Raises:
        HTTPError: If DAS rejects a request
        requests.RequestException: On transport failure
    """
    if exporter is None:
        logger.info(f"No exporter configuration found for {key}")
        return

    cert_name = exporter.kafka.tls.client_certificate_name
    if not exporter.enabled:
        logger.info(f"Removing exporter {key}")
        das.delete_secret(cert_name)
        das.update_workspace({key: None})
        logger.info(f"Exporter {key} removed")
        return

    logger.info(f"Configuring exporter {key}")
    # The secret name holds the client certificate and the secret the key
    das.create_update_secret(
        cert_name,
        exporter.kafka.tls.client_certificate.rstrip("\n"),
        exporter.kafka.tls.client_key.rstrip("\n"),
        description="Client certificate for Kafka",
    )
    das.update_workspace({key: exporter_request(exporter)})
    logger.info(f"Exporter {key} configured")


def configure_exporters(das: Any, config: ProjectConfig) -> None:
    """Apply the decisions and activity exporters at startup.

    A failure is logged and does not stop the operator.
    """
    for key, exporter in (
        (DECISIONS_EXPORTER, config.decisions_exporter),
        (ACTIVITY_EXPORTER, config.activity_exporter),
    ):
        try:
            configure_exporter(das, exporter, key)
        except (HTTPError, requests.RequestException) as e:
            logger.error(f"Unable to configure {key}: {sanitize_exception(e)}")
