from __future__ import annotations

from collections.abc import Mapping

REDACTED = "***REDACTED***"


_SENSITIVE_HEADER_NAMES = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
}

# Header names containing any of these fragments are masked as well.
_SENSITIVE_FRAGMENTS = ("token", "secret", "auth", "cookie", "session")


def sanitize_headers_for_log(
    headers: Mapping[str, str], *, mask_token: str = REDACTED
) -> dict[str, str]:
    """
    Copy request headers for logging with credentials and session
    identifiers masked.
    """
    sanitized: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in _SENSITIVE_HEADER_NAMES or any(
            fragment in lower_name for fragment in _SENSITIVE_FRAGMENTS
        ):
            sanitized[name] = mask_token
        else:
            sanitized[name] = value
    return sanitized


__all__ = ["REDACTED", "sanitize_headers_for_log"]
