import unittest
from unittest import mock

import requests

from calky.errors import StoreError
from calky.models import StoreConfig
from calky.store_client import ICS_CONTENT_TYPE, HttpBlobStore, StoreLayout


def _response(status: int, body: bytes = b"") -> mock.Mock:
    response = mock.Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.content = body
    return response


class StoreLayoutTests(unittest.TestCase):
    def test_paths(self) -> None:
        layout = StoreLayout("pub/calky/")
        self.assertEqual(layout.index(), "/pub/calky/index.json")
        self.assertEqual(layout.collection("c1"), "/pub/calky/cal/c1/")
        self.assertEqual(layout.props("c1"), "/pub/calky/cal/c1/props.json")
        self.assertEqual(layout.document("c1"), "/pub/calky/cal/c1/calendar.ics")
        self.assertEqual(layout.etag("c1"), "/pub/calky/cal/c1/etag.txt")


class HttpBlobStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch("calky.store_client.requests.Session")
        self.session_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.session = self.session_cls.return_value
        self.store = HttpBlobStore(StoreConfig(base_url="https://blobs.example.org/", token="secret", timeout_seconds=5))

    def test_get_sends_cache_busting_headers(self) -> None:
        self.session.request.return_value = _response(200, "BEGIN:VCALENDAR €".encode("utf-8"))

        response = self.store.get("/pub/calky/cal/c1/calendar.ics")

        self.assertTrue(response.ok)
        self.assertEqual(response.text, "BEGIN:VCALENDAR €")
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("GET", "https://blobs.example.org/pub/calky/cal/c1/calendar.ics"))
        self.assertIn("t", kwargs["params"])
        self.assertEqual(kwargs["headers"]["Cache-Control"], "no-cache")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["timeout"], 5)

    def test_error_response_has_no_body(self) -> None:
        self.session.request.return_value = _response(404, b"not found")
        response = self.store.get("missing")
        self.assertFalse(response.ok)
        self.assertEqual(response.status, 404)
        self.assertEqual(response.text, "")

    def test_put_sends_if_match_only_when_given(self) -> None:
        self.session.request.return_value = _response(201)

        self.store.put("/doc.ics", "BODY", ICS_CONTENT_TYPE, if_match='W/"1"')
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["headers"]["If-Match"], 'W/"1"')
        self.assertEqual(kwargs["headers"]["Content-Type"], ICS_CONTENT_TYPE)
        self.assertEqual(kwargs["data"], b"BODY")

        self.store.put("/doc.ics", "BODY", ICS_CONTENT_TYPE)
        _, kwargs = self.session.request.call_args
        self.assertNotIn("If-Match", kwargs["headers"])

    def test_transport_errors_become_store_errors(self) -> None:
        self.session.request.side_effect = requests.ConnectionError("connection refused")
        with self.assertRaises(StoreError) as ctx:
            self.store.delete("/doc.ics")
        self.assertIn("ConnectionError", str(ctx.exception))
        self.assertTrue(ctx.exception.user_message.startswith("Storage error:"))

    def test_missing_base_url(self) -> None:
        store = HttpBlobStore(StoreConfig())
        self.assertFalse(store.is_configured())
        with self.assertRaises(StoreError):
            store.get("/index.json")


if __name__ == "__main__":
    unittest.main()
