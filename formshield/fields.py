"""
Ordered, size-bounded container for client-submitted form fields.

Clients post arbitrary keys (the decoy name changes per session), so the raw
payload is normalised into `SubmittedFields` before any check looks at it.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any


class FieldLimitExceeded(ValueError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


def _coerce(name: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise FieldLimitExceeded(name, f"Field '{name}' must be a scalar value")


class SubmittedFields(Mapping[str, str]):
    """Read-only ordered mapping of field name -> string value."""

    __slots__ = ("_items",)

    def __init__(self, items: Mapping[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(items or {})

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        max_fields: int = 50,
        max_name_length: int = 100,
        max_value_length: int = 10000,
    ) -> "SubmittedFields":
        if len(payload) > max_fields:
            raise FieldLimitExceeded(
                "_form", f"Too many fields: {len(payload)} > {max_fields}"
            )
        items: dict[str, str] = {}
        for raw_name, raw_value in payload.items():
            name = str(raw_name)
            if not name or len(name) > max_name_length:
                raise FieldLimitExceeded(name[:max_name_length], "Invalid field name length")
            value = _coerce(name, raw_value)
            if len(value) > max_value_length:
                raise FieldLimitExceeded(name, f"Field '{name}' is too long")
            items[name] = value
        return cls(items)

    def __getitem__(self, key: str) -> str:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"SubmittedFields({list(self._items)!r})"


__all__ = ["FieldLimitExceeded", "SubmittedFields"]
