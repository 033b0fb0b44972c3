from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Tuple

import httpx

logger = logging.getLogger("datagrid.source")


def _issue(code: str, message: str, path: str | None = None) -> dict:
    return {"code": code, "message": message, "path": path, "detail": None}


def load_document_file(path: str | Path) -> Tuple[dict, list[dict]]:
    """Read a grid document from disk; a missing or broken file yields an empty document."""
    file_path = Path(path)
    if not file_path.exists():
        logger.warning("document_missing path=%s", file_path)
        return {}, [_issue("DOCUMENT_MISSING", f"Document not found: {file_path}", str(file_path))]
    try:
        data = json.loads(file_path.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as exc:
        logger.warning("document_unreadable path=%s error=%s", file_path, exc)
        return {}, [_issue("DOCUMENT_INVALID", f"Document could not be parsed: {exc}", str(file_path))]
    if not isinstance(data, dict):
        return {}, [_issue("DOCUMENT_INVALID", "Document must be a JSON object", str(file_path))]
    return data, []


def fetch_document(url: str, timeout: float = 10.0, transport: httpx.BaseTransport | None = None) -> Tuple[dict, list[dict]]:
    """Fetch a grid document over HTTP; failures degrade to an empty document with an issue."""
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            res = client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as exc:
        logger.warning("document_fetch_failed url=%s error=%s", url, exc)
        return {}, [_issue("DOCUMENT_UNREACHABLE", f"Document fetch failed: {exc}", url)]
    if res.status_code >= 400:
        logger.warning("document_fetch_failed url=%s status=%s", url, res.status_code)
        return {}, [_issue("DOCUMENT_UNREACHABLE", f"Document fetch returned {res.status_code}", url)]
    try:
        data = res.json()
    except ValueError as exc:
        logger.warning("document_invalid url=%s error=%s", url, exc)
        return {}, [_issue("DOCUMENT_INVALID", "Document response is not JSON", url)]
    if not isinstance(data, dict):
        return {}, [_issue("DOCUMENT_INVALID", "Document must be a JSON object", url)]
    logger.info("document_fetched url=%s bytes=%s", url, len(res.content))
    return data, []


def load_document(path: str | None = None, url: str | None = None, transport: httpx.BaseTransport | None = None) -> Tuple[dict, list[dict]]:
    if url:
        return fetch_document(url, transport=transport)
    if path:
        return load_document_file(path)
    return {}, [_issue("DOCUMENT_UNCONFIGURED", "No document path or URL configured")]
