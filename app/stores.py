"""In-memory field configuration and record stores."""

from __future__ import annotations

import copy
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from fieldkit.accessor_path import DYNAMIC_ROOT
from namespaces import EntityKind, ensure_valid_dynamic_fields

CONTACT_BACKING = "contact"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MemoryFieldConfigStore:
    """``tableFieldDefinitions`` per organization; writes replace the whole kind."""

    def __init__(self) -> None:
        self._configs: Dict[str, Dict[str, dict]] = {}

    def get(self, org_id: str, kind: EntityKind) -> dict:
        config = self._configs.get(org_id, {}).get(kind.value)
        return copy.deepcopy(config) if config else {"fields": {}, "fieldOrder": []}

    def put(self, org_id: str, kind: EntityKind, config: dict) -> dict:
        self._configs.setdefault(org_id, {})[kind.value] = copy.deepcopy(config)
        return copy.deepcopy(config)


def _backing(kind: EntityKind) -> str:
    return CONTACT_BACKING if kind.shares_backing else kind.value


def _merge_dynamic(current: Any, patch: Any) -> Dict[str, Any] | None:
    """Per-key merge; a ``None`` value clears that key."""
    patch = ensure_valid_dynamic_fields(patch)
    if patch is None:
        return current
    merged = dict(current or {})
    for key, value in patch.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = copy.deepcopy(value)
    return ensure_valid_dynamic_fields(merged)


class MemoryRecordStore:
    """Records for every entity kind.

    Kids, parents, staff and contacts share one ``contact`` bucket with a
    ``type`` discriminator, so their ``dynamicFields`` maps are physically the
    same map.
    """

    def __init__(self) -> None:
        self._records: Dict[str, Dict[str, Dict[str, dict]]] = {}

    def _bucket(self, org_id: str, kind: EntityKind) -> Dict[str, dict]:
        return self._records.setdefault(org_id, {}).setdefault(_backing(kind), {})

    def _visible(self, record: dict, kind: EntityKind) -> bool:
        return not kind.shares_backing or record.get("type") == kind.value

    async def create(self, org_id: str, kind: EntityKind, data: dict) -> dict:
        record = copy.deepcopy(data)
        record.pop(DYNAMIC_ROOT, None)
        dynamic = _merge_dynamic(None, data.get(DYNAMIC_ROOT))
        if dynamic:
            record[DYNAMIC_ROOT] = dynamic
        record["_id"] = str(uuid.uuid4())
        record["organizationId"] = org_id
        if kind.shares_backing:
            record["type"] = kind.value
        record["createdAt"] = record["updatedAt"] = _now()
        self._bucket(org_id, kind)[record["_id"]] = record
        return copy.deepcopy(record)

    async def update(self, org_id: str, kind: EntityKind, record_id: str, patch: dict) -> dict:
        bucket = self._bucket(org_id, kind)
        current = bucket.get(record_id)
        if current is None or not self._visible(current, kind):
            raise KeyError("record not found")
        record = copy.deepcopy(current)
        for key, value in patch.items():
            if key in ("_id", "organizationId", "type", "createdAt"):
                continue
            if key == DYNAMIC_ROOT:
                merged = _merge_dynamic(record.get(DYNAMIC_ROOT), value)
                if merged:
                    record[DYNAMIC_ROOT] = merged
                else:
                    record.pop(DYNAMIC_ROOT, None)
                continue
            record[key] = copy.deepcopy(value)
        record["updatedAt"] = _now()
        bucket[record_id] = record
        return copy.deepcopy(record)

    async def get(self, org_id: str, kind: EntityKind, record_id: str) -> dict | None:
        record = self._bucket(org_id, kind).get(record_id)
        if record is None or not self._visible(record, kind):
            return None
        return copy.deepcopy(record)

    async def list(self, org_id: str, kind: EntityKind) -> List[dict]:
        return [copy.deepcopy(r) for r in self._bucket(org_id, kind).values() if self._visible(r, kind)]
