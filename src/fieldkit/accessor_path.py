"""Accessor paths for dynamic fields (``dynamicFields.<name>``)."""

from __future__ import annotations

from dataclasses import dataclass

DYNAMIC_ROOT = "dynamicFields"
SEPARATOR = "."
DYNAMIC_PREFIX = DYNAMIC_ROOT + SEPARATOR


@dataclass
class AccessorPathError(Exception):
    message: str
    path: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.message} (path={self.path!r})"


def is_dynamic_accessor(key: object) -> bool:
    """True for any key under the dynamic root, well-formed or not."""
    return isinstance(key, str) and key.startswith(DYNAMIC_PREFIX)


def parse_dynamic_accessor(key: str) -> str:
    """Return the field name of ``dynamicFields.<name>``.

    Exactly one non-empty segment is allowed after the root.
    """
    if not is_dynamic_accessor(key):
        raise AccessorPathError("Not a dynamic accessor", key)
    name = key[len(DYNAMIC_PREFIX) :]
    if not name:
        raise AccessorPathError("Missing field name", key)
    if SEPARATOR in name:
        raise AccessorPathError("Nested accessor segments are not supported", key)
    if name != name.strip():
        raise AccessorPathError("Field name has surrounding whitespace", key)
    return name


def try_parse_dynamic_accessor(key: object) -> str | None:
    if not isinstance(key, str):
        return None
    try:
        return parse_dynamic_accessor(key)
    except AccessorPathError:
        return None


def dynamic_accessor(name: str) -> str:
    if not isinstance(name, str) or not name or SEPARATOR in name:
        raise AccessorPathError("Invalid field name", str(name))
    return DYNAMIC_PREFIX + name
