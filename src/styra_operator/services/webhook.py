"""Client for the datasource-changed notification webhooks."""

from __future__ import annotations

import logging
from typing import Protocol

import requests

from .http import DEFAULT_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Raised when a webhook call does not return a 2xx status."""


class DatasourceWebhook(Protocol):
    """Protocol for notifying that a datasource changed."""

    def system_datasource_changed(self, system_id: str, datasource_id: str) -> None:
        ...

    def library_datasource_changed(self, library_id: str, datasource_id: str) -> None:
        ...


class WebhookClient:
    """POSTs ``{"systemId", "datasourceId"}`` to the configured URLs.

    An empty URL disables the corresponding notification.
    """

    def __init__(
        self,
        system_datasource_changed_url: str = "",
        library_datasource_changed_url: str = "",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.system_url = system_datasource_changed_url
        self.library_url = library_datasource_changed_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def system_datasource_changed(self, system_id: str, datasource_id: str) -> None:
        self._post(self.system_url, system_id, datasource_id)

    def library_datasource_changed(self, library_id: str, datasource_id: str) -> None:
        self._post(self.library_url, library_id, datasource_id)

    def _post(self, url: str, system_id: str, datasource_id: str) -> None:
        if not url:
            return
        logger.debug(f"Calling datasource changed webhook {url} for {datasource_id}")
        response = self.session.post(
            url,
            json={"systemId": system_id, "datasourceId": datasource_id},
            timeout=self.timeout,
        )
        if not 200 <= response.status_code < 300:
            raise WebhookError(
                "response status code is %d, request body is %s"
                % (response.status_code, response.text)
            )
