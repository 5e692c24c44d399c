"""Utilities for emitting Kubernetes events."""

from __future__ import annotations

from typing import Any

import kopf

from ..constants import (
    EVENT_REASON_RECONCILE_COMPLETED,
    EVENT_REASON_RECONCILE_FAILED,
    EVENT_REASON_RECONCILE_STARTED,
)


def emit_event(
    body: Any,
    reason: str,
    message: str,
    type_: str = "Normal",
) -> None:
    """Emit a Kubernetes event.

    Args:
        body: Resource body or metadata the event refers to
        reason: Event reason
        message: Event message
        type_: Event type (Normal or Warning)
    """
    kopf.event(
        body,
        reason=reason,
        message=message,
        type=type_,
    )


def emit_warning(body: Any, reason: str, message: str) -> None:
    """Emit a Warning event."""
    emit_event(body, reason, message, type_="Warning")


def emit_reconcile_started(body: Any) -> None:
    """Emit reconcile started event."""
    emit_event(body, EVENT_REASON_RECONCILE_STARTED, "Reconciliation started")


def emit_reconcile_completed(body: Any) -> None:
    emit_event(body, EVENT_REASON_RECONCILE_COMPLETED, "Reconciliation completed")


def emit_reconcile_failed(body: Any, message: str, reason: str = "") -> None:
    """Emit reconcile failed event, using ``reason`` when the error carries one."""
    emit_warning(body, reason or EVENT_REASON_RECONCILE_FAILED, message)
