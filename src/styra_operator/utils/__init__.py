"""Utility functions for the Styra Operator."""

from .cache import ExpiringCache
from .conditions import get_condition, set_condition
from .events import emit_event, emit_warning
from .labels import controller_class_matches, managed_by_labels, owner_reference, uses_ocp
from .locks import KeyedLocks
from .secrets import decode_secret_data, read_secret_data

__all__ = [
    "ExpiringCache",
    "set_condition",
    "get_condition",
    "emit_event",
    "emit_warning",
    "controller_class_matches",
    "managed_by_labels",
    "owner_reference",
    "uses_ocp",
    "KeyedLocks",
    "decode_secret_data",
    "read_secret_data",
]
