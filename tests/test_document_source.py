import json
import os
import sys
import tempfile
import unittest

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.document_source import fetch_document, load_document, load_document_file


DOCUMENT = {"employees": {"schema": {"name": {"type": "string"}}, "data": [{"id": 1, "name": "Bob"}]}}
URL = "http://grids.test/document.json"


def _transport(status: int = 200, body: bytes = b"") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=body)

    return httpx.MockTransport(handler)


class TestFetchDocument(unittest.TestCase):
    def test_fetches_json_object(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=DOCUMENT)

        document, issues = fetch_document(URL, transport=httpx.MockTransport(handler))
        self.assertEqual(document, DOCUMENT)
        self.assertEqual(issues, [])
        self.assertEqual(seen[0].headers["accept"], "application/json")

    def test_http_error_status(self) -> None:
        document, issues = fetch_document(URL, transport=_transport(500, b"boom"))
        self.assertEqual(document, {})
        self.assertEqual(issues[0]["code"], "DOCUMENT_UNREACHABLE")
        self.assertEqual(issues[0]["path"], URL)

    def test_non_json_and_non_object_bodies(self) -> None:
        for body in (b"<html>", b"[1, 2]"):
            document, issues = fetch_document(URL, transport=_transport(200, body))
            self.assertEqual(document, {})
            self.assertEqual(issues[0]["code"], "DOCUMENT_INVALID")

    def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with self.assertLogs("datagrid.source", level="WARNING"):
            document, issues = fetch_document(URL, transport=httpx.MockTransport(handler))
        self.assertEqual(document, {})
        self.assertEqual(issues[0]["code"], "DOCUMENT_UNREACHABLE")


class TestLoadDocumentFile(unittest.TestCase):
    def test_reads_file_with_bom(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "grids.json")
            with open(path, "w", encoding="utf-8-sig") as fh:
                json.dump(DOCUMENT, fh)
            document, issues = load_document_file(path)
        self.assertEqual(document, DOCUMENT)
        self.assertEqual(issues, [])

    def test_missing_and_broken_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            document, issues = load_document_file(os.path.join(tmp, "nope.json"))
            self.assertEqual((document, issues[0]["code"]), ({}, "DOCUMENT_MISSING"))
            broken = os.path.join(tmp, "broken.json")
            with open(broken, "w", encoding="utf-8") as fh:
                fh.write("{not json")
            document, issues = load_document_file(broken)
            self.assertEqual((document, issues[0]["code"]), ({}, "DOCUMENT_INVALID"))


class TestLoadDocument(unittest.TestCase):
    def test_url_wins_over_path(self) -> None:
        transport = _transport(200, json.dumps(DOCUMENT).encode("utf-8"))
        document, issues = load_document(path="/does/not/exist.json", url=URL, transport=transport)
        self.assertEqual(document, DOCUMENT)
        self.assertEqual(issues, [])

    def test_unconfigured(self) -> None:
        document, issues = load_document()
        self.assertEqual(document, {})
        self.assertEqual(issues[0]["code"], "DOCUMENT_UNCONFIGURED")


if __name__ == "__main__":
    unittest.main()
