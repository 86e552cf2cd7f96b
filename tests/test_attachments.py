import os
import sys
import tempfile
import unittest
from pathlib import Path

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.attachments import LocalStorage, StorageError, SupabaseStorage, get_storage
from upload_orchestrator import UploadFile


class TestSupabaseStorage(unittest.IsolatedAsyncioTestCase):
    def _storage(self, handler) -> SupabaseStorage:
        return SupabaseStorage(
            base_url="https://proj.supabase.co/",
            service_key="service-key",
            bucket="uploads",
            transport=httpx.MockTransport(handler),
        )

    async def test_upload_returns_public_url(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = request.content
            return httpx.Response(200, json={"Key": "uploads/x"})

        storage = self._storage(handler)
        url = await storage.upload(
            UploadFile("me.png", b"png-bytes", "image/png"),
            "uploads/kids/dynamic-fields/photo/1_abc.png",
        )
        self.assertEqual(seen["method"], "POST")
        self.assertEqual(
            seen["url"],
            "https://proj.supabase.co/storage/v1/object/uploads/uploads/kids/dynamic-fields/photo/1_abc.png",
        )
        self.assertEqual(seen["headers"]["x-upsert"], "true")
        self.assertEqual(seen["headers"]["content-type"], "image/png")
        self.assertEqual(seen["headers"]["authorization"], "Bearer service-key")
        self.assertEqual(seen["body"], b"png-bytes")
        self.assertEqual(
            url,
            "https://proj.supabase.co/storage/v1/object/public/uploads/uploads/kids/dynamic-fields/photo/1_abc.png",
        )

    async def test_rejected_upload_raises_storage_error(self) -> None:
        storage = self._storage(lambda request: httpx.Response(413, text="too large"))
        with self.assertRaises(StorageError) as ctx:
            await storage.upload(UploadFile("a.png", b"1", "image/png"), "uploads/a.png")
        self.assertEqual(ctx.exception.code, "STORAGE_UPLOAD_FAILED")
        self.assertNotIn("too large", ctx.exception.message)

    async def test_transport_error_wrapped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("boom", request=request)

        storage = self._storage(handler)
        with self.assertRaises(StorageError) as ctx:
            await storage.upload(UploadFile("a.png", b"1", "image/png"), "uploads/a.png")
        self.assertEqual(ctx.exception.code, "STORAGE_UNAVAILABLE")

    async def test_delete_tolerates_missing_object(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, str(request.url)))
            return httpx.Response(404)

        storage = self._storage(handler)
        await storage.delete("https://proj.supabase.co/storage/v1/object/public/uploads/uploads/a.png")
        self.assertEqual(calls, [("DELETE", "https://proj.supabase.co/storage/v1/object/uploads/uploads/a.png")])
        await storage.delete("https://elsewhere.test/a.png")
        self.assertEqual(len(calls), 1)

    async def test_delete_server_error_raises(self) -> None:
        storage = self._storage(lambda request: httpx.Response(500))
        with self.assertRaises(StorageError):
            await storage.delete("https://proj.supabase.co/storage/v1/object/public/uploads/a.png")


class TestLocalStorage(unittest.IsolatedAsyncioTestCase):
    async def test_write_and_delete(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            storage = LocalStorage(root=tmp, public_base_url="/files")
            url = await storage.upload(UploadFile("a.txt", b"hello", "text/plain"), "uploads/kids/doc/a.txt")
            self.assertEqual(url, "/files/uploads/kids/doc/a.txt")
            target = Path(tmp) / "uploads" / "kids" / "doc" / "a.txt"
            self.assertEqual(target.read_bytes(), b"hello")
            await storage.delete(url)
            self.assertFalse(target.exists())
            await storage.delete(url)

    async def test_path_traversal_is_flattened(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            storage = LocalStorage(root=tmp, public_base_url="/files")
            url = await storage.upload(UploadFile("a.txt", b"x"), "../../etc/a.txt")
            self.assertEqual(url, "/files/etc/a.txt")
            self.assertTrue((Path(tmp) / "etc" / "a.txt").exists())


class TestGetStorage(unittest.TestCase):
    def test_picks_backend_from_env(self) -> None:
        saved = {k: os.environ.get(k) for k in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY")}
        try:
            os.environ.pop("SUPABASE_URL", None)
            os.environ.pop("SUPABASE_SERVICE_ROLE_KEY", None)
            self.assertIsInstance(get_storage(), LocalStorage)
            os.environ["SUPABASE_URL"] = "https://proj.supabase.co"
            os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "key"
            self.assertIsInstance(get_storage(), SupabaseStorage)
        finally:
            for key, value in saved.items():
                if value is None:
                    os.environ.pop(key, None)
                else:
                    os.environ[key] = value


if __name__ == "__main__":
    unittest.main()
