"""Shared HTTP session wrapper for the external REST APIs."""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Iterable

import requests

from .. import metrics
from ..errors import HTTPError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))


class APIClient:
    """Thin ``requests.Session`` wrapper with bearer auth and JSON bodies.

    Every call is timed and counted under ``api_type``. Responses whose status
    is not in ``expected`` raise :class:`HTTPError`.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        api_type: str = "http",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_type = api_type
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if token:
            self.session.headers.update({"Authorization": f"Bearer {token}"})

    def request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        expected: Iterable[int] = (200,),
    ) -> requests.Response:
        """Send a request and check its status.

        Args:
            method: HTTP method
            endpoint: Path below the base URL, starting with ``/``
            operation: Operation name used as metrics label
            body: JSON-serialisable request body
            params: Query parameters
            headers: Extra request headers
            expected: Status codes treated as success

        Returns:
            The response

        Raises:
            HTTPError: If the status code is not expected
            requests.RequestException: On transport failure
        """
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"{method} {url}")

        start_time = time.time()
        try:
            response = self.session.request(
                method=method,
                url=url,
                json=body,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException:
            metrics.api_call_total.labels(
                api_type=self.api_type, operation=operation, result="error"
            ).inc()
            raise
        finally:
            metrics.api_call_duration_seconds.labels(
                api_type=self.api_type, operation=operation
            ).observe(time.time() - start_time)

        if response.status_code not in tuple(expected):
            metrics.api_call_total.labels(
                api_type=self.api_type, operation=operation, result="error"
            ).inc()
            raise HTTPError(response.status_code, response.text)

        metrics.api_call_total.labels(
            api_type=self.api_type, operation=operation, result="success"
        ).inc()
        return response

    def close(self) -> None:
        self.session.close()


def json_result(response: requests.Response) -> Any:
    """Return the ``result`` field of a JSON response body."""
    if not response.content:
        return None
    payload = response.json()
    if isinstance(payload, dict):
        return payload.get("result")
    return None
