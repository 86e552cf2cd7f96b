"""FastAPI surface over the dynamic field engine."""

from __future__ import annotations

import logging
import os
import re
import sys
from pathlib import Path
from typing import Dict, List

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fieldkit.accessor_path import AccessorPathError
from app.attachments import LocalStorage, SupabaseStorage, get_storage
from app.spreadsheet import read_sheet, write_sheet
from app.stores import MemoryFieldConfigStore, MemoryRecordStore
from bulk_dispatch import dispatch_bulk_create, dispatch_bulk_update
from field_schema import ColumnSpec, FieldDefinitionError, FieldSchema, core_column, load_field_schema, schema_to_config
from header_match import HeaderMatcher, ImportFileError
from namespaces import DynamicFieldsError, EntityKind, find_namespace_drift, parse_entity_kind
from record_projector import export_rows, seed_form_values, submit_record, transform_import_row
from upload_orchestrator import FormUploads, NoPreview, UploadFile as AssetFile, UploadStatus

app = FastAPI(title="Fieldkit")
logger = logging.getLogger("fieldkit")
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_REGEX = r"http://localhost:\d+|http://127\.0\.0\.1:\d+"
_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("FIELDKIT_CORS_ORIGINS", "").split(",")
    if origin.strip()
}

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=_LOCAL_CORS_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

field_configs = MemoryFieldConfigStore()
records = MemoryRecordStore()
storage: SupabaseStorage | LocalStorage | None = None

_PERSON_COLUMNS = (
    core_column("firstname", "First name"),
    core_column("lastname", "Last name"),
    core_column("idNumber", "ID number"),
    core_column("birthdate", "Birth date", kind="date"),
)
_CONTACT_COLUMNS = (
    core_column("firstname", "First name"),
    core_column("lastname", "Last name"),
    core_column("phone", "Phone", kind="phone"),
    core_column("email", "Email", kind="email"),
)
_NAMED_COLUMNS = (core_column("name", "Name"),)

CORE_COLUMNS: Dict[EntityKind, tuple] = {
    EntityKind.KID: _PERSON_COLUMNS + (core_column("linked_parents", "Parents", is_array=True),),
    EntityKind.PARENT: _PERSON_COLUMNS
    + (
        core_column("phone", "Phone", kind="phone"),
        core_column("email", "Email", kind="email"),
        core_column("linked_kids", "Kids", is_array=True),
    ),
    EntityKind.CONTACT: _CONTACT_COLUMNS,
    EntityKind.STAFF: _CONTACT_COLUMNS + (core_column("role", "Role"),),
    EntityKind.ACCOUNT: _NAMED_COLUMNS,
    EntityKind.TEAM: _NAMED_COLUMNS,
    EntityKind.FORM: _NAMED_COLUMNS,
}

_EXPORT_FILENAME_RE = re.compile(r"[^A-Za-z0-9_-]+")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    return _issues_response([{"code": code, "message": message, "path": path, "detail": detail}], status=status)


def _issues_response(errors: List[dict], status: int = 400) -> JSONResponse:
    body = {"ok": False, "errors": errors, "warnings": []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _storage() -> SupabaseStorage | LocalStorage:
    return storage or get_storage()


def _resolve_kind(kind: str) -> EntityKind | JSONResponse:
    try:
        return parse_entity_kind(kind)
    except ValueError:
        return _error_response("ENTITY_KIND_UNKNOWN", f"Unknown entity kind: {kind}", "kind", status=404)


def _load_schema(org_id: str, kind: EntityKind) -> FieldSchema:
    return load_field_schema(field_configs.get(org_id, kind), kind)


def _core_columns(kind: EntityKind) -> tuple:
    return CORE_COLUMNS.get(kind, ())


def _core_date_keys(kind: EntityKind) -> List[str]:
    return [c.key for c in _core_columns(kind) if c.meta.is_date]


def _array_keys(kind: EntityKind) -> List[str]:
    return [c.key for c in _core_columns(kind) if c.is_array]


def _all_columns(kind: EntityKind, schema: FieldSchema) -> List[ColumnSpec]:
    return list(_core_columns(kind)) + schema.columns()


def _form_values(body: dict) -> dict:
    values = body.get("values", body)
    return values if isinstance(values, dict) else {}


# ---- Field configuration ----


@app.get("/orgs/{org_id}/fields/{kind}")
async def get_fields(org_id: str, kind: str):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    schema = _load_schema(org_id, entity_kind)
    return _ok_response(
        {
            **schema_to_config(schema),
            "columns": [c.to_dict() for c in _all_columns(entity_kind, schema)],
        }
    )


@app.put("/orgs/{org_id}/fields/{kind}")
async def put_fields(org_id: str, kind: str, request: Request):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    try:
        body = await request.json()
    except ValueError:
        body = None
    # only an explicit "fields" member may replace (or clear) the stored config
    if not isinstance(body, dict) or not isinstance(body.get("fields"), (dict, list)):
        return _error_response("FIELDS_INVALID", "body must be a JSON object with a fields object or list", "fields")
    try:
        schema = load_field_schema(body, entity_kind)
    except FieldDefinitionError as exc:
        return _issues_response(exc.issues)
    config = field_configs.put(org_id, entity_kind, schema_to_config(schema))
    logger.info("field_config_saved org=%s kind=%s fields=%s", org_id, entity_kind.value, len(schema))
    return _ok_response(config)


# ---- Records ----


@app.post("/orgs/{org_id}/records/{kind}")
async def create_record(org_id: str, kind: str, request: Request):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    schema = _load_schema(org_id, entity_kind)
    result = submit_record(_form_values(await _safe_json(request)), schema, _core_date_keys(entity_kind))
    if not result.ok:
        return _issues_response(result.errors)
    try:
        record = await records.create(org_id, entity_kind, result.payload)
    except DynamicFieldsError as exc:
        return _error_response(exc.code, exc.message, "dynamicFields")
    return _ok_response({"record": record}, status=201)


@app.patch("/orgs/{org_id}/records/{kind}/{record_id}")
async def update_record(org_id: str, kind: str, record_id: str, request: Request):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    schema = _load_schema(org_id, entity_kind)
    result = submit_record(_form_values(await _safe_json(request)), schema, _core_date_keys(entity_kind))
    if not result.ok:
        return _issues_response(result.errors)
    try:
        record = await records.update(org_id, entity_kind, record_id, result.payload)
    except KeyError:
        return _error_response("RECORD_NOT_FOUND", "Record not found", "id", status=404)
    except DynamicFieldsError as exc:
        return _error_response(exc.code, exc.message, "dynamicFields")
    return _ok_response({"record": record})


@app.get("/orgs/{org_id}/records/{kind}/{record_id}/form")
async def get_record_form(org_id: str, kind: str, record_id: str):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    record = await records.get(org_id, entity_kind, record_id)
    if record is None:
        return _error_response("RECORD_NOT_FOUND", "Record not found", "id", status=404)
    schema = _load_schema(org_id, entity_kind)
    drift = find_namespace_drift(record.get("dynamicFields"), entity_kind, schema.names)
    values = seed_form_values(record, schema, _core_date_keys(entity_kind))
    return _ok_response(
        {"values": values, "fields": [d.to_dict() for d in schema.definitions]},
        warnings=drift,
    )


@app.post("/orgs/{org_id}/records/{kind}/bulk_update")
async def bulk_update(org_id: str, kind: str, request: Request):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    body = await _safe_json(request)
    field_key = body.get("field")
    if not isinstance(field_key, str) or not field_key.strip():
        return _error_response("FIELD_REQUIRED", "field is required", "field")
    ids = body.get("ids")
    if not isinstance(ids, list):
        return _error_response("IDS_REQUIRED", "ids must be a list", "ids")
    schema = _load_schema(org_id, entity_kind)

    async def _update(record_id: str, patch: dict) -> dict:
        return await records.update(org_id, entity_kind, record_id, patch)

    try:
        result = await dispatch_bulk_update(
            field_key.strip(),
            body.get("value"),
            ids,
            _update,
            schema,
            _array_keys(entity_kind),
        )
    except AccessorPathError as exc:
        return _error_response("FIELD_INVALID", exc.message, "field")
    if result.errors:
        return _issues_response(result.errors)
    return _ok_response(result.to_dict(), status=200 if result.ok else 207)


@app.post("/orgs/{org_id}/records/{kind}/import")
async def import_records(org_id: str, kind: str, file: UploadFile = File(...)):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    schema = _load_schema(org_id, entity_kind)
    data = await file.read()
    try:
        sheet = read_sheet(file.filename or "", data)
        preview = HeaderMatcher.from_columns(_all_columns(entity_kind, schema)).read_rows(sheet)
    except ImportFileError as exc:
        return _issues_response([exc.as_issue()])
    payloads = [
        transform_import_row(row, schema, _core_date_keys(entity_kind), _array_keys(entity_kind))
        for row in preview.rows
    ]

    async def _create(payload: dict) -> dict:
        return await records.create(org_id, entity_kind, payload)

    summary = await dispatch_bulk_create(payloads, _create)
    return _ok_response(
        {**summary.to_dict(), "unmatchedHeaders": preview.unmatched_headers, "skippedRows": preview.skipped_rows}
    )


@app.get("/orgs/{org_id}/records/{kind}/export")
async def export_records(org_id: str, kind: str):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    schema = _load_schema(org_id, entity_kind)
    header, rows = export_rows(
        await records.list(org_id, entity_kind),
        _all_columns(entity_kind, schema),
        schema,
    )
    filename = _EXPORT_FILENAME_RE.sub("_", f"{entity_kind.value}s_export") + ".xlsx"
    return Response(
        content=write_sheet(header, rows),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---- Uploads ----


@app.post("/orgs/{org_id}/uploads/{kind}/{field_name}")
async def upload_asset(org_id: str, kind: str, field_name: str, file: UploadFile = File(...), label: str | None = Form(None)):
    entity_kind = _resolve_kind(kind)
    if isinstance(entity_kind, JSONResponse):
        return entity_kind
    definition = _load_schema(org_id, entity_kind).get(field_name)
    if definition is None:
        return _error_response("FIELD_UNKNOWN", f"Unknown field: {field_name}", field_name, status=404)
    if not definition.spec.is_asset:
        return _error_response("FIELD_NOT_ASSET", f"{definition.label} does not accept files", field_name)
    asset = AssetFile(
        filename=file.filename or "upload",
        content=await file.read(),
        content_type=file.content_type,
    )
    uploads = FormUploads(_storage(), entity_kind, preview_factory=NoPreview)
    try:
        state = await uploads.upload(field_name, asset, definition.type, label=label or definition.label)
    finally:
        uploads.close()
    if state.status != UploadStatus.SUCCEEDED:
        return _error_response("UPLOAD_FAILED", state.error or "Upload failed", field_name)
    return _ok_response({"field": field_name, "url": state.url})
