import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryRecordStore
from bulk_dispatch import build_bulk_patch, dispatch_bulk_create, dispatch_bulk_update
from schema_validate import ValidationError
from field_schema import load_field_schema
from namespaces import EntityKind


def _schema(kind=EntityKind.KID):
    return load_field_schema(
        {
            "color": {"type": "SELECT", "choices": ["red", "blue"]},
            "tags": {"type": "MULTI_SELECT", "choices": ["a", "b"]},
            "fee": {"type": "MONEY"},
            "shirtSize": {"type": "SELECT", "label": "Shirt size", "required": True, "choices": ["S", "M"]},
            "age": {"type": "NUMBER", "label": "Age"},
        },
        kind,
    )


class TestBuildBulkPatch(unittest.TestCase):
    def test_dynamic_key_is_namespaced(self) -> None:
        self.assertEqual(
            build_bulk_patch("dynamicFields.fee", "1,500", _schema()),
            {"dynamicFields": {"kid.fee": 1500}},
        )
        self.assertEqual(
            build_bulk_patch("dynamicFields.color", "", _schema()),
            {"dynamicFields": {"kid.color": None}},
        )
        self.assertEqual(
            build_bulk_patch("dynamicFields.color", "red", _schema(EntityKind.TEAM)),
            {"dynamicFields": {"color": "red"}},
        )

    def test_array_values(self) -> None:
        self.assertEqual(build_bulk_patch("dynamicFields.tags", "a", _schema()), {"dynamicFields": {"kid.tags": ["a"]}})
        self.assertEqual(
            build_bulk_patch("linked_parents", "p1", _schema(), array_keys=["linked_parents"]),
            {"linked_parents": ["p1"]},
        )
        self.assertEqual(
            build_bulk_patch("linked_parents", ["p1", "", None], _schema(), array_keys=["linked_parents"]),
            {"linked_parents": ["p1"]},
        )
        self.assertEqual(
            build_bulk_patch("linked_parents", None, _schema(), array_keys=["linked_parents"]),
            {"linked_parents": []},
        )

    def test_core_key_passes_through(self) -> None:
        self.assertEqual(build_bulk_patch("lastname", "Levi", _schema()), {"lastname": "Levi"})

    def test_values_the_form_rejects_are_refused(self) -> None:
        cases = (
            ("dynamicFields.shirtSize", "", "Shirt size is required"),
            ("dynamicFields.shirtSize", "XXL", "Shirt size must be one of"),
            ("dynamicFields.age", "old", "Age must be a number"),
        )
        for key, value, message in cases:
            with self.subTest(key=key, value=value):
                with self.assertRaises(ValidationError) as ctx:
                    build_bulk_patch(key, value, _schema())
                self.assertTrue(str(ctx.exception).startswith(message))

    def test_valid_required_value_is_patched(self) -> None:
        self.assertEqual(
            build_bulk_patch("dynamicFields.shirtSize", "M", _schema()),
            {"dynamicFields": {"kid.shirtSize": "M"}},
        )
        self.assertEqual(build_bulk_patch("dynamicFields.age", "7", _schema()), {"dynamicFields": {"kid.age": 7}})


class TestDispatchBulkUpdate(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = MemoryRecordStore()
        self.ids = []
        for idx in range(5):
            record = await self.store.create("org1", EntityKind.KID, {"firstname": f"Kid {idx}"})
            self.ids.append(record["_id"])

    async def test_partial_failure_is_reported_not_rolled_back(self) -> None:
        failing = self.ids[2]

        async def _update(record_id: str, patch: dict) -> dict:
            if record_id == failing:
                raise RuntimeError("write conflict")
            return await self.store.update("org1", EntityKind.KID, record_id, patch)

        with self.assertLogs("fieldkit.bulk", level="WARNING"):
            result = await dispatch_bulk_update("dynamicFields.color", "red", self.ids, _update, _schema())
        self.assertFalse(result.ok)
        self.assertEqual(result.failures, {failing: "write conflict"})
        self.assertEqual(sorted(result.succeeded), sorted(i for i in self.ids if i != failing))
        self.assertEqual(result.message, "Updated 4 of 5 records; 1 failed")
        for record_id in self.ids:
            record = await self.store.get("org1", EntityKind.KID, record_id)
            expected = None if record_id == failing else "red"
            self.assertEqual((record.get("dynamicFields") or {}).get("kid.color"), expected)

    async def test_error_result_counts_as_failure(self) -> None:
        async def _update(record_id: str, patch: dict) -> dict:
            return {"error": "denied"} if record_id == self.ids[0] else {"ok": True}

        result = await dispatch_bulk_update("lastname", "Levi", self.ids[:2], _update, _schema())
        self.assertEqual(result.failures, {self.ids[0]: "denied"})
        self.assertEqual(result.succeeded, [self.ids[1]])

    async def test_invalid_value_dispatches_nothing(self) -> None:
        async def _update(record_id: str, patch: dict) -> dict:
            raise AssertionError("must not be called")

        result = await dispatch_bulk_update("dynamicFields.shirtSize", "XXL", self.ids, _update, _schema())
        self.assertFalse(result.ok)
        self.assertEqual(result.succeeded, [])
        self.assertEqual(result.failures, {})
        self.assertEqual(result.errors[0]["path"], "shirtSize")
        self.assertTrue(result.message.startswith("Shirt size must be one of"))

    async def test_record_with_error_attribute_is_a_success(self) -> None:
        async def _update(record_id: str, patch: dict) -> dict:
            return await self.store.update("org1", EntityKind.KID, record_id, {**patch, "error": "stale flag"})

        result = await dispatch_bulk_update("lastname", "Levi", self.ids[:2], _update, _schema())
        self.assertTrue(result.ok)
        self.assertEqual(sorted(result.succeeded), sorted(self.ids[:2]))

    async def test_missing_record_message(self) -> None:
        async def _update(record_id: str, patch: dict) -> dict:
            return await self.store.update("org1", EntityKind.KID, record_id, patch)

        with self.assertLogs("fieldkit.bulk", level="WARNING"):
            result = await dispatch_bulk_update("lastname", "Levi", ["missing"], _update, _schema())
        self.assertEqual(result.failures, {"missing": "record not found"})

    async def test_blank_and_duplicate_ids_dropped(self) -> None:
        seen = []

        async def _update(record_id: str, patch: dict) -> dict:
            seen.append((record_id, patch))
            return {}

        result = await dispatch_bulk_update("lastname", "Levi", ["a", "", None, "a", "b"], _update, _schema())
        self.assertTrue(result.ok)
        self.assertEqual(sorted(r for r, _ in seen), ["a", "b"])
        self.assertEqual(result.message, "Updated 2 records")

    async def test_no_ids(self) -> None:
        async def _update(record_id: str, patch: dict) -> dict:
            raise AssertionError("must not be called")

        result = await dispatch_bulk_update("lastname", "x", [], _update, _schema())
        self.assertTrue(result.ok)
        self.assertEqual(result.succeeded, [])


class TestDispatchBulkCreate(unittest.IsolatedAsyncioTestCase):
    async def test_rows_numbered_and_limited(self) -> None:
        created = []

        async def _create(payload: dict) -> dict:
            if payload.get("bad"):
                raise ValueError(f"bad row {payload['n']}")
            created.append(payload["n"])
            return payload

        payloads = [{"n": n, "bad": n % 2 == 0} for n in range(1, 9)]
        summary = await dispatch_bulk_create(payloads, _create, error_limit=2)
        self.assertEqual(created, [1, 3, 5, 7])
        self.assertEqual(summary.success_count, 4)
        self.assertEqual(summary.failure_count, 4)
        self.assertEqual(summary.errors, ["row 2: bad row 2", "row 4: bad row 4"])
        self.assertEqual(summary.to_dict()["successCount"], 4)

    async def test_default_limit_from_env(self) -> None:
        async def _create(payload: dict) -> dict:
            return {"error": "nope"}

        previous = os.environ.get("FIELDKIT_IMPORT_ERROR_LIMIT")
        os.environ["FIELDKIT_IMPORT_ERROR_LIMIT"] = "3"
        try:
            summary = await dispatch_bulk_create([{}] * 6, _create)
        finally:
            if previous is None:
                os.environ.pop("FIELDKIT_IMPORT_ERROR_LIMIT", None)
            else:
                os.environ["FIELDKIT_IMPORT_ERROR_LIMIT"] = previous
        self.assertEqual(summary.failure_count, 6)
        self.assertEqual(len(summary.errors), 3)


if __name__ == "__main__":
    unittest.main()
