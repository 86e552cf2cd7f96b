"""Entity-kind namespacing for dynamic fields on a shared backing record.

Kids, parents, staff and generic contacts are all stored as one ``contact``
record with a ``type`` discriminator. Their dynamic field bags live in the
same physical ``dynamicFields`` map, so every key is written as
``"<prefix>.<name>"``; each kind only ever sees its own prefix.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping

NAMESPACE_SEPARATOR = "."
DYNAMIC_FIELD_MAX_KEYS = 100


class EntityKind(str, Enum):
    KID = "kid"
    PARENT = "parent"
    CONTACT = "contact"
    STAFF = "staff"
    ACCOUNT = "account"
    TEAM = "team"
    FORM = "form"

    @property
    def shares_backing(self) -> bool:
        return self in NAMESPACE_PREFIXES

    @property
    def prefix(self) -> str | None:
        return NAMESPACE_PREFIXES.get(self)


# Stable identifiers; never reuse a prefix for a different kind.
NAMESPACE_PREFIXES: Dict[EntityKind, str] = {
    EntityKind.KID: "kid",
    EntityKind.PARENT: "parent",
    EntityKind.CONTACT: "contact",
    EntityKind.STAFF: "staff",
}

if len(set(NAMESPACE_PREFIXES.values())) != len(NAMESPACE_PREFIXES):  # pragma: no cover - import-time guard
    raise RuntimeError("namespace prefixes must be unique per entity kind")


@dataclass
class DynamicFieldsError(Exception):
    code: str
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.code}: {self.message}"


def parse_entity_kind(value: Any) -> EntityKind:
    if isinstance(value, EntityKind):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        # route segments are often plural ("kids")
        for candidate in (text, text[:-1] if text.endswith("s") else None):
            if not candidate:
                continue
            try:
                return EntityKind(candidate)
            except ValueError:
                continue
    raise ValueError(f"Unknown entity kind: {value!r}")


def _key_prefix(kind: EntityKind) -> str | None:
    prefix = NAMESPACE_PREFIXES.get(kind)
    return f"{prefix}{NAMESPACE_SEPARATOR}" if prefix else None


def namespaced_key(name: str, kind: EntityKind) -> str:
    key_prefix = _key_prefix(kind)
    return f"{key_prefix}{name}" if key_prefix else name


def namespace(bag: Mapping[str, Any] | None, kind: EntityKind) -> Dict[str, Any] | None:
    """Prefix every key of ``bag`` for ``kind``.

    Returns ``None`` for an absent or empty bag so no empty sub-object is
    ever put on the wire.
    """
    if not bag:
        return None
    key_prefix = _key_prefix(kind)
    if key_prefix is None:
        return dict(bag)
    return {f"{key_prefix}{key}": value for key, value in bag.items()}


def denamespace(bag: Mapping[str, Any] | None, kind: EntityKind) -> Dict[str, Any]:
    """Select ``kind``'s keys from a backing bag and strip the prefix."""
    if not bag or not isinstance(bag, Mapping):
        return {}
    key_prefix = _key_prefix(kind)
    if key_prefix is None:
        return dict(bag)
    out: Dict[str, Any] = {}
    for key, value in bag.items():
        if isinstance(key, str) and key.startswith(key_prefix) and len(key) > len(key_prefix):
            out[key[len(key_prefix) :]] = value
    return out


def read_exact(bag: Mapping[str, Any] | None, kind: EntityKind, name: str, default: Any = None) -> Any:
    if not bag:
        return default
    return bag.get(namespaced_key(name, kind), default)


def find_namespace_drift(bag: Mapping[str, Any] | None, kind: EntityKind, names: Iterable[str]) -> List[dict]:
    """Report values for ``names`` stored anywhere but their exact key.

    A key counts as drifted when its tail equals one of ``names``, the exact
    key is absent, and the key is unprefixed or carries a prefix that belongs
    to no entity kind. Another kind's key in a shared bag is its own data.
    Nothing is moved or copied.
    """
    if not bag or not _key_prefix(kind):
        return []
    known_prefixes = set(NAMESPACE_PREFIXES.values())
    issues: List[dict] = []
    for name in names:
        expected = namespaced_key(name, kind)
        if expected in bag:
            continue
        for key in bag.keys():
            if not isinstance(key, str) or key == expected:
                continue
            head, _, tail = key.rpartition(NAMESPACE_SEPARATOR)
            if tail != name or head in known_prefixes:
                continue
            issues.append(
                {
                    "code": "NAMESPACE_DRIFT",
                    "message": f"Value for {name} found at {key}, expected {expected}",
                    "path": key,
                    "detail": {"expected": expected, "field": name},
                }
            )
    return issues


def ensure_valid_dynamic_fields(bag: Any) -> Dict[str, Any] | None:
    if bag is None:
        return None
    if not isinstance(bag, Mapping):
        raise DynamicFieldsError("DYNAMIC_FIELDS_INVALID", "dynamicFields must be a plain object")
    if len(bag) > DYNAMIC_FIELD_MAX_KEYS:
        raise DynamicFieldsError(
            "DYNAMIC_FIELDS_TOO_MANY",
            f"dynamicFields exceeded the maximum of {DYNAMIC_FIELD_MAX_KEYS} keys",
        )
    return dict(bag)
