"""Error sanitization utilities to prevent credential leakage."""

import re
from typing import Any


# Patterns that might expose credentials
SENSITIVE_PATTERNS = [
    (r"(bearer\s+)[A-Za-z0-9\-\._~\+/=]+", r"\1[REDACTED]"),
    (r"(https?://)[^/\s:@]+:[^/\s@]+@", r"\1[REDACTED]@"),
    (r"(aws_secret_access_key[=:\s]+)[A-Za-z0-9/+=]+", r"\1[REDACTED]"),
]

# Fields to redact completely
SENSITIVE_FIELDS = {
    "password",
    "secret",
    "token",
    "secret_access_key",
    "secretaccesskey",
}


def sanitize_error_message(message: str) -> str:
    """Sanitize error message to remove credentials.

    Args:
        message: Original error message

    Returns:
        Sanitized error message with credentials redacted
    """
    sanitized = message

    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    for field in SENSITIVE_FIELDS:
        sanitized = re.sub(
            rf"(\"?{field}\"?\s*[:=]\s*)\"?[^\s,;\)\"}}]+\"?",
            r"\1[REDACTED]",
            sanitized,
            flags=re.IGNORECASE,
        )

    return sanitized


def sanitize_exception(error: BaseException) -> str:
    """Sanitize exception message.

    Args:
        error: Exception object

    Returns:
        Sanitized error message
    """
    return sanitize_error_message(str(error))


def sanitize_dict(data: dict[str, Any], sensitive_keys: set[str] | None = None) -> dict[str, Any]:
    """Sanitize dictionary by redacting sensitive fields.

    Args:
        data: Dictionary to sanitize
        sensitive_keys: Additional keys to redact (merged with SENSITIVE_FIELDS)

    Returns:
        Sanitized dictionary with sensitive values redacted
    """
    all_sensitive = SENSITIVE_FIELDS | (sensitive_keys or set())
    sanitized: dict[str, Any] = {}

    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in all_sensitive):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_dict(value, sensitive_keys)
        elif isinstance(value, str):
            sanitized[key] = sanitize_error_message(value)
        else:
            sanitized[key] = value

    return sanitized
