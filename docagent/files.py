"""Serving uploaded files safely and describing the files a request referenced."""

from __future__ import annotations

import json
import mimetypes
import os
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

FILE_MISSING_NAME = "文件已过期或不存在"
REFERENCE_FUNCTIONS = ("file", "formfile")

_TEXT_PLAIN = "text/plain; charset=utf-8"
_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
)
_HTML_PREFIXES = (b"<!doctype html", b"<html", b"<head", b"<body")
_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


class InvalidPathError(Exception):
    """A requested path is missing or points outside the upload directory."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class FileReference:
    """A file attached to an earlier request, with its original name."""

    file_id: str
    filename: str
    function: str


def resolve_upload_path(base_dir: str, path: str) -> str:
    """Return the absolute location of ``path`` inside ``base_dir``.

    Leading slashes are ignored; paths that escape the directory are refused.
    """
    if not path:
        raise InvalidPathError("missing path", 400)
    base = os.path.normpath(base_dir)
    rel = os.path.normpath(path.lstrip("/\\"))
    full = os.path.join(base, rel)
    try:
        rel_check = os.path.relpath(full, base)
    except ValueError:
        raise InvalidPathError("invalid path", 403) from None
    if rel_check.startswith(".."):
        raise InvalidPathError("invalid path", 403)
    return full


def _sniff(head: bytes) -> str:
    for signature, content_type in _SIGNATURES:
        if head.startswith(signature):
            return content_type
    lowered = head.lstrip(b"\t\n\x0c\r ").lower()
    if any(lowered.startswith(prefix) for prefix in _HTML_PREFIXES):
        return "text/html; charset=utf-8"
    if any(byte in _BINARY_BYTES for byte in head):
        return "application/octet-stream"
    return _TEXT_PLAIN


def guess_content_type(path: str, head: bytes = b"") -> str:
    """Return the content type from the extension, or by sniffing ``head``."""
    ext = os.path.splitext(path)[1]
    if ext:
        content_type, _encoding = mimetypes.guess_type("file" + ext)
        if content_type:
            return content_type
    return _sniff(head)


def _decode_refs(metadata: str) -> Optional[List[dict]]:
    try:
        decoded: Any = json.loads(metadata)
    except ValueError:
        return None
    if decoded is None:
        return []
    if not isinstance(decoded, list):
        return None
    refs = []
    for item in decoded:
        if item is None:
            item = {}
        if not isinstance(item, dict):
            return None
        ref_type = item.get("type") or ""
        file_id = item.get("file_id") or ""
        if not isinstance(ref_type, str) or not isinstance(file_id, str):
            return None
        refs.append({"type": ref_type, "file_id": file_id})
    return refs


def parse_history_references(
    metadata: Optional[str],
    lookup_filename: Callable[[str], Optional[str]],
) -> List[FileReference]:
    """Return the file references stored in a history record's metadata.

    ``lookup_filename`` maps a stored name to the uploaded file name; when it
    fails or returns None the file is reported as expired. Malformed metadata
    yields no references.
    """
    if not metadata:
        return []
    refs = _decode_refs(metadata)
    if not refs:
        return []
    result: List[FileReference] = []
    for ref in refs:
        function = ref["type"]
        if function not in REFERENCE_FUNCTIONS:
            continue
        try:
            filename = lookup_filename(ref["file_id"])
        except Exception:
            filename = None
        result.append(
            FileReference(
                file_id=ref["file_id"],
                filename=filename if filename is not None else FILE_MISSING_NAME,
                function=function,
            )
        )
    return result