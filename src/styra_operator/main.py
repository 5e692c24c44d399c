"""Main entry point for the Styra Operator."""

from __future__ import annotations

import logging
import os
from typing import Any

import kopf

from . import health
from . import logging as structured_logging
from .config import ProjectConfig, load_config, validate_config
from .handlers.shared import (
    OperatorContext,
    get_apps_api,
    get_core_api,
    load_kube_config,
)
from .services.das.client import StyraDASClient
from .services.das.exporters import configure_exporters
from .services.ocp.client import OCPClient
from .services.s3.iam import IAMAdminClient
from .services.webhook import WebhookClient

logger = logging.getLogger(__name__)


def build_context(config: ProjectConfig) -> OperatorContext:
    """Create the API clients the handlers reconcile with.

    Args:
        config: Validated project configuration

    Returns:
        Operator context holding config and clients
    """
    webhooks = config.notification_webhooks
    context = OperatorContext(
        config=config,
        das=None,
        webhook=WebhookClient(
            system_datasource_changed_url=webhooks.system_datasource_changed,
            library_datasource_changed_url=webhooks.library_datasource_changed,
        ),
        core_api=get_core_api(),
        apps_api=get_apps_api(),
    )

    if config.styra.address:
        context.das = StyraDASClient(config.styra.address, config.styra_token())
    else:
        logger.warning("No Styra address configured, SaaS reconciles will fail")

    if config.ocp.enabled:
        storage = config.ocp.s3
        context.ocp = OCPClient(config.ocp.address, config.ocp_token())
        context.s3 = IAMAdminClient(
            storage.iam_url or storage.url,
            storage.region,
            storage.admin_credentials.access_key_id,
            storage.admin_credentials.secret_access_key,
        )
    return context


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    """Configure the operator."""
    config = load_config()
    validate_config(config)

    # Set up structured JSON logging
    structured_logging.setup_structured_logging(structured_logging.level_from_config(config.log_level))

    # Use AnnotationsProgressStorage to avoid conflicts with status updates
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage()
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage()

    settings.posting.level = 0
    settings.networking.request_timeout = 30.0
    settings.execution.max_workers = 4

    load_kube_config()
    context = build_context(config)
    if context.das is not None:
        configure_exporters(context.das, config)
    memo.context = context

    metrics_port = int(os.getenv("METRICS_PORT", "8080"))
    health.start_metrics_server(metrics_port)
    logger.info(f"Operator configured, metrics served on port {metrics_port}")


# Register the resource handlers
from . import handlers  # noqa: E402,F401


def run() -> None:
    """Run the operator with kopf, watching all namespaces."""
    kopf.run(clusterwide=True)
