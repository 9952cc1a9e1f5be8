"""
Session identifiers and decoy ("honeypot") field names.

A session id is 16 bytes from the OS CSPRNG rendered as 32 lowercase hex
characters. The decoy field name carries the whole id after a fixed prefix,
so two live sessions can only share a decoy name if they share an id.
"""

from __future__ import annotations

import re
import secrets

SESSION_ID_BYTES = 16
SESSION_ID_LENGTH = SESSION_ID_BYTES * 2
DEFAULT_DECOY_PREFIX = "_hp_"

_SESSION_ID_RE = re.compile(rf"^[0-9a-f]{{{SESSION_ID_LENGTH}}}$")


def new_session_id() -> str:
    return secrets.token_hex(SESSION_ID_BYTES)


def is_valid_session_id(value: str | None) -> bool:
    return bool(value) and _SESSION_ID_RE.fullmatch(value) is not None


def decoy_field_name(session_id: str, prefix: str = DEFAULT_DECOY_PREFIX) -> str:
    return f"{prefix}{session_id}"


def is_decoy_field_name(name: str, prefix: str = DEFAULT_DECOY_PREFIX) -> bool:
    """
    True for any name shaped like a decoy: the prefix followed by hex.

    Names issued by older deployments used a short id slice, so the suffix
    length is not fixed.
    """
    if not name.startswith(prefix):
        return False
    suffix = name[len(prefix):]
    return bool(suffix) and all(c in "0123456789abcdefABCDEF" for c in suffix)


__all__ = [
    "DEFAULT_DECOY_PREFIX",
    "SESSION_ID_LENGTH",
    "decoy_field_name",
    "is_decoy_field_name",
    "is_valid_session_id",
    "new_session_id",
]
