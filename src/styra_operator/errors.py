"""Error types raised by the reconcilers and API clients."""

from __future__ import annotations

import json

# Messages caused by user input that should not be reported as operator faults.
USER_ERROR_MESSAGES = (
    "the combination of url, branch, commit-sha and path must be unique across all git repos",
    "Could not find credentials Secret",
)


class HTTPError(Exception):
    """Unexpected HTTP status returned by an external API."""

    def __init__(self, status_code: int, body: str) -> None:
        if not _is_json(body):
            body = "invalid JSON response"
        self.status_code = status_code
        self.body = body
        super().__init__(f"HTTP status {status_code}: {body}")

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


def _is_json(body: str) -> bool:
    try:
        json.loads(body)
    except (TypeError, ValueError):
        return False
    return True


def is_not_found(error: BaseException | None) -> bool:
    """Check whether an error, or any error it wraps, is an HTTP 404."""
    http_error = find_http_error(error)
    return http_error is not None and http_error.is_not_found


def is_conflict(error: BaseException | None) -> bool:
    """Check whether an error, or any error it wraps, is an HTTP 409."""
    http_error = find_http_error(error)
    return http_error is not None and http_error.is_conflict


def find_http_error(error: BaseException | None) -> HTTPError | None:
    """Walk the cause chain and return the first HTTPError."""
    while error is not None:
        if isinstance(error, HTTPError):
            return error
        error = error.__cause__
    return None


class ReconcilerError(Exception):
    """Failure of a reconcile phase.

    Carries the Kubernetes event reason to record and the condition type to
    set False on the resource status.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.message = message
        self.cause = cause
        self.event: str = ""
        self.condition_type: str = ""
        super().__init__(message)
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def wrap(cls, cause: BaseException, message: str) -> "ReconcilerError":
        return cls(message, cause)

    def with_event(self, event: str) -> "ReconcilerError":
        self.event = event
        return self

    def with_condition(self, condition_type: str) -> "ReconcilerError":
        self.condition_type = condition_type
        return self

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


def is_user_error(error: BaseException) -> bool:
    """Check whether an error was caused by user input rather than the operator."""
    message = str(error)
    return any(user_message in message for user_message in USER_ERROR_MESSAGES)
