"""
Decoy-field spam check.

A submission is spam when the active session's decoy field carries a value,
or when any other decoy-shaped field does: a scraper replaying a cached page
fills the decoy name issued to an earlier session. Only decoy-shaped fields
are ever looked at.
"""

from __future__ import annotations

from collections.abc import Mapping

from formshield.security.tokens import DEFAULT_DECOY_PREFIX, is_decoy_field_name


def _filled(value: object) -> bool:
    return value is not None and str(value).strip() != ""


def find_filled_decoys(
    fields: Mapping[str, str],
    active_decoy_name: str,
    *,
    prefix: str = DEFAULT_DECOY_PREFIX,
) -> list[str]:
    """
    Names of decoy fields that carry a non-blank value, active decoy first.
    """
    filled: list[str] = []
    if active_decoy_name and _filled(fields.get(active_decoy_name)):
        filled.append(active_decoy_name)
    for name, value in fields.items():
        if name == active_decoy_name or not is_decoy_field_name(name, prefix):
            continue
        if _filled(value):
            filled.append(name)
    return filled


def is_spam(
    fields: Mapping[str, str],
    active_decoy_name: str,
    *,
    prefix: str = DEFAULT_DECOY_PREFIX,
) -> bool:
    if active_decoy_name and _filled(fields.get(active_decoy_name)):
        return True
    return any(
        _filled(value)
        for name, value in fields.items()
        if is_decoy_field_name(name, prefix)
    )


__all__ = ["find_filled_decoys", "is_spam"]
