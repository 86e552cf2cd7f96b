"""Multi-record update and import fan-out.

Each record is an independent persistence call: a bulk update is neither
atomic nor ordered, and partial success is reported rather than rolled back.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Sequence

from fieldkit.accessor_path import DYNAMIC_ROOT, is_dynamic_accessor, parse_dynamic_accessor
from field_schema import FieldSchema
from record_projector import namespace_payload, project_dynamic_value
from schema_validate import ValidationError, build_validator

logger = logging.getLogger("fieldkit.bulk")

DEFAULT_IMPORT_ERROR_LIMIT = 5

UpdateFn = Callable[[str, Dict[str, Any]], Awaitable[Any]]
CreateFn = Callable[[Dict[str, Any]], Awaitable[Any]]


def _import_error_limit() -> int:
    raw = os.getenv("FIELDKIT_IMPORT_ERROR_LIMIT", "").strip()
    return int(raw) if raw.isdigit() else DEFAULT_IMPORT_ERROR_LIMIT


def _normalize_id_list(value: Any) -> List[Any]:
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple, set)) else [value]
    return [item for item in items if item is not None and str(item).strip() != ""]


def build_bulk_patch(
    field_key: str,
    value: Any,
    schema: FieldSchema,
    array_keys: Iterable[str] = (),
) -> Dict[str, Any]:
    """Patch object applying one value to one field.

    Dynamic keys become a namespaced ``dynamicFields`` sub-object with the same
    rule check and per-type projection as a single-record submit, raising
    ``ValidationError`` for a value the form would reject. Relationship list
    keys keep their array shape.
    """
    if is_dynamic_accessor(field_key):
        name = parse_dynamic_accessor(field_key)
        definition = schema.get(name)
        if definition is not None:
            build_validator([definition]).check({name: value})
        projected = project_dynamic_value(definition, value)
        return namespace_payload({DYNAMIC_ROOT: {name: projected}}, schema)
    if field_key in set(array_keys):
        return {field_key: _normalize_id_list(value)}
    return {field_key: value}


def _unique_ids(ids: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for record_id in ids or []:
        if record_id is None:
            continue
        text = str(record_id).strip()
        if text and text not in out:
            out.append(text)
    return out


def _failure_message(result: Any) -> str | None:
    if isinstance(result, KeyError) and result.args:
        return str(result.args[0])
    if isinstance(result, BaseException):
        return str(result) or result.__class__.__name__
    # an error envelope, not a record that happens to carry an error attribute
    if isinstance(result, Mapping) and "_id" not in result:
        if result.get("ok") is False or result.get("error"):
            return str(result.get("error") or "update failed")
    return None


@dataclass
class BulkResult:
    ok: bool
    succeeded: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    message: str = ""
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "succeeded": list(self.succeeded),
            "failures": [{"id": rid, "message": msg} for rid, msg in self.failures.items()],
            "message": self.message,
        }


async def dispatch_bulk_update(
    field_key: str,
    value: Any,
    ids: Sequence[Any],
    update: UpdateFn,
    schema: FieldSchema,
    array_keys: Iterable[str] = (),
) -> BulkResult:
    """Apply one patch to every id concurrently; no call waits for another."""
    targets = _unique_ids(ids)
    if not targets:
        return BulkResult(ok=True, message="No records selected")
    try:
        patch = build_bulk_patch(field_key, value, schema, array_keys)
    except ValidationError as exc:
        logger.info("bulk_update_rejected field=%s total=%s", field_key, len(targets))
        return BulkResult(ok=False, message=str(exc), errors=list(exc.result.errors))
    results = await asyncio.gather(
        *(update(record_id, dict(patch)) for record_id in targets),
        return_exceptions=True,
    )
    succeeded: List[str] = []
    failures: Dict[str, str] = {}
    for record_id, result in zip(targets, results):
        message = _failure_message(result)
        if message is None:
            succeeded.append(record_id)
        else:
            failures[record_id] = message
    if failures:
        logger.warning(
            "bulk_update_partial field=%s total=%s failed=%s",
            field_key,
            len(targets),
            len(failures),
        )
        message = f"Updated {len(succeeded)} of {len(targets)} records; {len(failures)} failed"
    else:
        logger.info("bulk_update_done field=%s total=%s", field_key, len(targets))
        message = f"Updated {len(succeeded)} records"
    return BulkResult(ok=not failures, succeeded=succeeded, failures=failures, message=message)


@dataclass
class ImportSummary:
    success_count: int = 0
    failure_count: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "errors": list(self.errors),
        }


async def dispatch_bulk_create(
    payloads: Sequence[Dict[str, Any]],
    create: CreateFn,
    error_limit: int | None = None,
) -> ImportSummary:
    """Create one record per import row, in row order."""
    limit = _import_error_limit() if error_limit is None else error_limit
    summary = ImportSummary()
    for index, payload in enumerate(payloads):
        try:
            result = await create(payload)
        except Exception as exc:
            result = exc
        message = _failure_message(result)
        if message is None:
            summary.success_count += 1
            continue
        summary.failure_count += 1
        if len(summary.errors) < limit:
            summary.errors.append(f"row {index + 1}: {message}")
    if summary.failure_count:
        logger.warning(
            "bulk_create_partial rows=%s created=%s failed=%s",
            len(payloads),
            summary.success_count,
            summary.failure_count,
        )
    else:
        logger.info("bulk_create_done rows=%s", len(payloads))
    return summary
