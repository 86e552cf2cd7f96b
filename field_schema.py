"""Field definition snapshots for one (organization, entity kind)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple

from fieldkit.accessor_path import SEPARATOR, dynamic_accessor
from field_types import FieldType, UnknownFieldType, get_type_spec, parse_field_type
from namespaces import EntityKind


Issue = Dict[str, Any]


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class FieldDefinitionError(Exception):
    issues: List[Issue]

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return "; ".join(f"{i['code']}: {i['message']}" for i in self.issues)


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    label: str
    type: FieldType
    required: bool = False
    choices: Tuple[str, ...] = ()
    default_value: Any = None
    column_header: str | None = None

    @property
    def spec(self):
        return get_type_spec(self.type)

    @property
    def accessor(self) -> str:
        return dynamic_accessor(self.name)

    def to_dict(self) -> dict:
        out: dict = {
            "name": self.name,
            "label": self.label,
            "type": self.type.value,
            "required": self.required,
        }
        if self.choices:
            out["choices"] = list(self.choices)
        if self.default_value is not None:
            out["defaultValue"] = self.default_value
        if self.column_header:
            out["header"] = self.column_header
        return out


def normalize_choices(raw: Any) -> Tuple[str, ...]:
    """Trim, drop blanks and duplicates; a newline-separated string is accepted."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        raw = raw.splitlines()
    if not isinstance(raw, (list, tuple)):
        return ()
    seen: list[str] = []
    for item in raw:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


def reconcile_field_order(names: Iterable[str], order: Iterable[str] | None) -> List[str]:
    """Saved order first (stale names dropped), then new names in declaration order."""
    declared = list(dict.fromkeys(names))
    declared_set = set(declared)
    ordered: List[str] = []
    for name in order or []:
        if name in declared_set and name not in ordered:
            ordered.append(name)
    ordered.extend(name for name in declared if name not in ordered)
    return ordered


def _definition_items(raw: Any) -> List[Tuple[str | None, Any]]:
    if isinstance(raw, Mapping):
        return [(str(key), value) for key, value in raw.items()]
    if isinstance(raw, list):
        return [(None, value) for value in raw]
    return []


def parse_field_definitions(raw: Any) -> List[FieldDefinition]:
    """Build definitions from a ``{name: def}`` mapping or a list of defs.

    All invariant violations are collected and raised together.
    """
    issues: List[Issue] = []
    definitions: List[FieldDefinition] = []
    seen: set[str] = set()
    if raw is not None and not isinstance(raw, (Mapping, list)):
        raise FieldDefinitionError([_issue("FIELDS_INVALID", "fields must be an object or a list", "fields")])

    for idx, (key, item) in enumerate(_definition_items(raw)):
        path = f"fields.{key}" if key is not None else f"fields[{idx}]"
        if not isinstance(item, Mapping):
            issues.append(_issue("FIELD_INVALID", "field definition must be an object", path))
            continue
        name = item.get("name", key)
        name = name.strip() if isinstance(name, str) else ""
        if not name:
            issues.append(_issue("FIELD_NAME_REQUIRED", "field name is required", path))
            continue
        if SEPARATOR in name:
            issues.append(_issue("FIELD_NAME_INVALID", f"field name must not contain '{SEPARATOR}': {name}", path))
            continue
        if name in seen:
            issues.append(_issue("FIELD_NAME_DUPLICATE", f"duplicate field name: {name}", path))
            continue
        seen.add(name)
        try:
            ftype = parse_field_type(item.get("type"))
        except UnknownFieldType as exc:
            issues.append(_issue("FIELD_TYPE_UNKNOWN", str(exc), path, {"type": item.get("type")}))
            continue
        spec = get_type_spec(ftype)
        choices = normalize_choices(item.get("choices")) if spec.has_choices else ()
        if spec.has_choices and not choices:
            issues.append(_issue("FIELD_CHOICES_REQUIRED", f"{ftype.value} field {name} needs at least one choice", path))
            continue
        label = item.get("label")
        label = label.strip() if isinstance(label, str) and label.strip() else name
        header = item.get("header")
        header = header.strip() if isinstance(header, str) and header.strip() else None
        default_value = item.get("defaultValue", item.get("default_value"))
        if default_value is not None:
            default_value = spec.coerce(default_value)
        definitions.append(
            FieldDefinition(
                name=name,
                label=label,
                type=ftype,
                required=bool(item.get("required", False)),
                choices=choices,
                default_value=default_value,
                column_header=header,
            )
        )
    if issues:
        raise FieldDefinitionError(issues)
    return definitions


@dataclass(frozen=True)
class ColumnOption:
    value: str
    label: str


@dataclass(frozen=True)
class ColumnMeta:
    """Display metadata for one table column, keyed on ``kind``."""

    kind: str
    options: Tuple[ColumnOption, ...] = ()
    editable: bool = True
    is_dynamic: bool = False
    is_array: bool = False
    definition: FieldDefinition | None = None

    @property
    def is_date(self) -> bool:
        return self.kind == "date"

    @property
    def is_time(self) -> bool:
        return self.kind == "time"

    @property
    def is_money(self) -> bool:
        return self.kind == "money"

    def to_dict(self) -> dict:
        out = {
            "kind": self.kind,
            "editable": self.editable,
            "isDynamic": self.is_dynamic,
            "isArray": self.is_array,
        }
        if self.options:
            out["options"] = [{"value": o.value, "label": o.label} for o in self.options]
        return out


@dataclass(frozen=True)
class ColumnSpec:
    key: str
    header: str
    meta: ColumnMeta
    name: str | None = None
    label: str | None = None

    @property
    def is_array(self) -> bool:
        return self.meta.is_array

    def header_candidates(self) -> List[str]:
        return [c for c in (self.label, self.name, self.header) if isinstance(c, str) and c]

    def to_dict(self) -> dict:
        return {"id": self.key, "accessorKey": self.key, "header": self.header, "meta": self.meta.to_dict()}


def column_for(definition: FieldDefinition) -> ColumnSpec:
    spec = definition.spec
    options = tuple(ColumnOption(value=c, label=c) for c in definition.choices) if spec.has_choices else ()
    meta = ColumnMeta(
        kind=spec.column_kind,
        options=options,
        editable=True,
        is_dynamic=True,
        is_array=spec.is_array,
        definition=definition,
    )
    return ColumnSpec(
        key=definition.accessor,
        header=definition.column_header or definition.label,
        meta=meta,
        name=definition.name,
        label=definition.label,
    )


def core_column(key: str, header: str, kind: str = "text", is_array: bool = False, editable: bool = True) -> ColumnSpec:
    """Column for a fixed core attribute (relationship lists set ``is_array``)."""
    return ColumnSpec(
        key=key,
        header=header,
        meta=ColumnMeta(kind=kind, editable=editable, is_array=is_array),
        name=key,
        label=header,
    )


@dataclass(frozen=True)
class FieldSchema:
    """Immutable snapshot of one entity kind's dynamic fields, in display order."""

    entity_kind: EntityKind
    definitions: Tuple[FieldDefinition, ...] = ()
    _by_name: Dict[str, FieldDefinition] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {d.name: d for d in self.definitions})

    def get(self, name: str) -> FieldDefinition | None:
        return self._by_name.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self.definitions)

    def __len__(self) -> int:
        return len(self.definitions)

    @property
    def names(self) -> List[str]:
        return [d.name for d in self.definitions]

    def columns(self) -> List[ColumnSpec]:
        return [column_for(d) for d in self.definitions]


def load_field_schema(config: Any, entity_kind: EntityKind) -> FieldSchema:
    """Build a snapshot from ``{"fields": ..., "fieldOrder": [...]}``.

    A bare mapping or list of definitions is accepted as ``fields``.
    """
    if isinstance(config, Mapping) and ("fields" in config or "fieldOrder" in config):
        raw_fields = config.get("fields")
        order = config.get("fieldOrder")
    else:
        raw_fields = config
        order = None
    definitions = parse_field_definitions(raw_fields or {})
    by_name = {d.name: d for d in definitions}
    ordered = reconcile_field_order(by_name.keys(), order if isinstance(order, list) else None)
    return FieldSchema(entity_kind=entity_kind, definitions=tuple(by_name[n] for n in ordered))


def schema_to_config(schema: FieldSchema) -> dict:
    return {
        "fields": {d.name: d.to_dict() for d in schema.definitions},
        "fieldOrder": schema.names,
    }
