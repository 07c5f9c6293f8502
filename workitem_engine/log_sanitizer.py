"""
Log sanitization for backend errors.

Backend exceptions can echo request URLs and headers. The personal access
token travels as the password of HTTP basic auth, so both the Authorization
header and any userinfo embedded in a URL are redacted before logging.
"""

import re
from typing import Optional


REDACTED = '***REDACTED***'

SENSITIVE_PATTERNS = [
    (re.compile(r'(https?://)[^/\s:@]*:[^/\s@]+@', re.IGNORECASE), r'\1' + REDACTED + '@'),
    (re.compile(r'(basic\s+)([a-zA-Z0-9+/]+=*)', re.IGNORECASE), r'\1' + REDACTED),
    (re.compile(r'(bearer\s+)([a-zA-Z0-9\-._~+/]+=*)', re.IGNORECASE), r'\1' + REDACTED),
    (re.compile(r'(authorization["\']?\s*[:=]\s*["\']?)(?!basic\s|bearer\s)([^"\'\s]+)', re.IGNORECASE),
     r'\1' + REDACTED),
    (re.compile(r'(password["\']?\s*[:=]\s*["\']?)([^"\'\s]+)', re.IGNORECASE), r'\1' + REDACTED),
    (re.compile(r'(token["\']?\s*[:=]\s*["\']?)([^"\'\s]+)', re.IGNORECASE), r'\1' + REDACTED),
    (re.compile(r'(pat["\']?\s*[:=]\s*["\']?)([^"\'\s]+)', re.IGNORECASE), r'\1' + REDACTED),
]


def sanitize_log_message(message: Optional[str]) -> Optional[str]:
    """
    Redact credentials from a log message.

    Args:
        message: The log message to sanitize

    Returns:
        The message with credential-like values replaced
    """
    if not message:
        return message

    sanitized = message
    for pattern, replacement in SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)

    return sanitized


def safe_log_error(error: Exception, context: str = "") -> str:
    """
    Format an exception for logging without leaking credentials.

    Args:
        error: The exception
        context: What was being attempted (e.g. "Relation lookup for 42")

    Returns:
        "<context>: <ErrorType>: <sanitized message>"
    """
    sanitized_error = sanitize_log_message(str(error))
    error_type = type(error).__name__

    if context:
        return f"{context}: {error_type}: {sanitized_error}"
    return f"{error_type}: {sanitized_error}"
