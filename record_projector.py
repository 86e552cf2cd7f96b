"""Projection between form values and wire payloads.

Submit direction splits a flat values object into core attributes and a
``dynamicFields`` sub-object; edit-seed direction turns a persisted record
back into form values. Spreadsheet import rows and export rows go through the
same per-type rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from fieldkit.accessor_path import DYNAMIC_ROOT, is_dynamic_accessor, try_parse_dynamic_accessor
from fieldkit.dates import format_date_for_display, to_iso_date
from field_schema import ColumnSpec, FieldDefinition, FieldSchema
from namespaces import denamespace, find_namespace_drift, namespace
from schema_validate import build_validator

logger = logging.getLogger("fieldkit.projector")

EXPORT_EXCLUDED_KEYS = {"_id", "id", "organizationId", "select", "edit"}
EXPORT_MISSING = "-"
CHECKBOX_EXPORT_TRUE = "V"


def project_dynamic_value(definition: FieldDefinition | None, value: Any) -> Any:
    """Canonical wire value for one dynamic field.

    Optional empty values become ``None`` (explicit clear), arrays stay arrays
    even when empty, unknown fields pass through untouched.
    """
    if definition is None:
        return value
    spec = definition.spec
    coerced = spec.coerce(value)
    if spec.is_array:
        return coerced
    if spec.is_empty(coerced) and not definition.required:
        return None
    return coerced


def _project_core_value(key: str, value: Any, core_date_keys: Iterable[str]) -> Any:
    if key in core_date_keys and isinstance(value, str) and value.strip():
        return to_iso_date(value) or value
    return value


def project_submission(
    values: Mapping[str, Any] | None,
    schema: FieldSchema,
    core_date_keys: Iterable[str] = (),
    keep_unknown: bool = True,
) -> Dict[str, Any]:
    """Split form values into ``{...core, dynamicFields?}``.

    ``dynamicFields`` is present only when at least one dynamic key was
    present in ``values``. Malformed accessors are dropped.
    """
    core_dates = set(core_date_keys)
    payload: Dict[str, Any] = {}
    dynamic: Dict[str, Any] = {}

    def _put_dynamic(name: str, raw: Any) -> None:
        definition = schema.get(name)
        if definition is None and not keep_unknown:
            logger.info("projector_unknown_field_dropped field=%s kind=%s", name, schema.entity_kind.value)
            return
        dynamic[name] = project_dynamic_value(definition, raw)

    source = values or {}
    # accessor keys override the nested map, matching extract_dynamic_values
    nested = source.get(DYNAMIC_ROOT)
    if isinstance(nested, Mapping):
        for name, raw in nested.items():
            _put_dynamic(str(name), raw)
    for key, value in source.items():
        if key == DYNAMIC_ROOT:
            continue
        if is_dynamic_accessor(key):
            name = try_parse_dynamic_accessor(key)
            if name is None:
                logger.info("projector_malformed_accessor key=%s", key)
                continue
            _put_dynamic(name, value)
            continue
        payload[key] = _project_core_value(key, value, core_dates)

    if dynamic:
        payload[DYNAMIC_ROOT] = dynamic
    return payload


def namespace_payload(payload: Dict[str, Any], schema: FieldSchema) -> Dict[str, Any]:
    """Prefix the ``dynamicFields`` sub-object for kinds on a shared backing record."""
    if DYNAMIC_ROOT not in payload or not schema.entity_kind.shares_backing:
        return payload
    out = dict(payload)
    namespaced = namespace(out.pop(DYNAMIC_ROOT), schema.entity_kind)
    if namespaced is not None:
        out[DYNAMIC_ROOT] = namespaced
    return out


def _seed_dynamic_value(definition: FieldDefinition, bag: Mapping[str, Any]) -> Any:
    spec = definition.spec
    value = bag.get(definition.name)
    if value is None:
        value = definition.default_value if definition.default_value is not None else spec.empty_value()
    elif spec.is_array:
        value = spec.coerce(value)
    if spec.is_date:
        return format_date_for_display(value)
    return value


def seed_form_values(
    record: Mapping[str, Any] | None,
    schema: FieldSchema,
    core_date_keys: Iterable[str] = (),
) -> Dict[str, Any]:
    """Form initial values for editing ``record`` as ``schema.entity_kind``."""
    record = record or {}
    core_dates = set(core_date_keys)
    out: Dict[str, Any] = {}
    for key, value in record.items():
        if key == DYNAMIC_ROOT:
            continue
        out[key] = format_date_for_display(value) if key in core_dates else value

    backing = record.get(DYNAMIC_ROOT)
    bag = denamespace(backing, schema.entity_kind)
    for issue in find_namespace_drift(backing, schema.entity_kind, schema.names):
        logger.warning("namespace_drift kind=%s key=%s expected=%s", schema.entity_kind.value, issue["path"], issue["detail"]["expected"])
    for definition in schema.definitions:
        out[definition.accessor] = _seed_dynamic_value(definition, bag)
    return out


@dataclass
class SubmitResult:
    ok: bool
    payload: Dict[str, Any] | None
    errors: List[dict] = field(default_factory=list)


def submit_record(
    values: Mapping[str, Any] | None,
    schema: FieldSchema,
    core_date_keys: Iterable[str] = (),
) -> SubmitResult:
    """Validate, project and namespace form values for one persistence call."""
    result = build_validator(schema.definitions).validate_dynamic_values(values)
    if not result.ok:
        return SubmitResult(ok=False, payload=None, errors=result.errors)
    payload = project_submission(values, schema, core_date_keys)
    return SubmitResult(ok=True, payload=namespace_payload(payload, schema))


def transform_import_row(
    row: Mapping[str, Any],
    schema: FieldSchema,
    core_date_keys: Iterable[str] = (),
    array_keys: Iterable[str] = (),
) -> Dict[str, Any]:
    """Spreadsheet row (keyed by matched column key) -> create payload.

    Blank cells are omitted rather than cleared. Relationship list columns are
    split on commas.
    """
    core_dates = set(core_date_keys)
    arrays = set(array_keys)
    payload: Dict[str, Any] = {}
    dynamic: Dict[str, Any] = {}
    for key, raw in row.items():
        value = raw.strip() if isinstance(raw, str) else raw
        if value is None or value == "":
            continue
        if is_dynamic_accessor(key):
            name = try_parse_dynamic_accessor(key)
            if name is None:
                continue
            definition = schema.get(name)
            dynamic[name] = definition.spec.coerce(value) if definition else value
            continue
        if key in arrays and isinstance(value, str):
            payload[key] = [part.strip() for part in value.split(",") if part.strip()]
            continue
        payload[key] = _project_core_value(key, value, core_dates)
    if dynamic:
        payload[DYNAMIC_ROOT] = dynamic
    return namespace_payload(payload, schema)


def _export_cell(column: ColumnSpec, value: Any) -> Any:
    if value is None:
        return EXPORT_MISSING
    kind = column.meta.kind
    if kind == "checkbox":
        return CHECKBOX_EXPORT_TRUE if value is True else ""
    if kind == "date":
        return format_date_for_display(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return value


def export_rows(
    records: Iterable[Mapping[str, Any]],
    columns: Sequence[ColumnSpec],
    schema: FieldSchema,
) -> Tuple[List[str], List[List[Any]]]:
    """Header row plus one row per record, in column order."""
    visible = [c for c in columns if c.key not in EXPORT_EXCLUDED_KEYS]
    header = [c.header or c.key for c in visible]
    rows: List[List[Any]] = []
    for record in records:
        bag = denamespace(record.get(DYNAMIC_ROOT), schema.entity_kind)
        row = []
        for column in visible:
            if column.meta.is_dynamic:
                value = bag.get(column.name)
            else:
                value = record.get(column.key)
            row.append(_export_cell(column, value))
        rows.append(row)
    return header, rows
