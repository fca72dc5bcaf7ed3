"""Signed download links for rendered documents and their verification."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote_plus

from docagent.markdown import (
    CONTENT_TYPES,
    DEFAULT_DOC_NO,
    DEFAULT_TITLE,
    apply_line_alignments,
    decorate_gov_header_and_body,
    normalize_type,
    preprocess_markdown,
    run_pandoc,
)
from docagent.tool import generate_ulid

DEFAULT_EXPIRE_SECONDS = 600


class DownloadError(Exception):
    """A public download request was refused; ``status`` is the HTTP status to send."""

    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class DownloadLink:
    """A stored rendered file together with its signed public URL."""

    filename: str
    content_type: str
    path: str
    url: str


def sign_hmac(data: str, key: str) -> str:
    """Return the unpadded URL-safe base64 HMAC-SHA256 of ``data``."""
    digest = hmac.new(key.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def build_download_url(base_url: str, name: str, exp: int, sig: str) -> str:
    """Return the public download URL carrying the file name, expiry and signature."""
    base = base_url.rstrip("/")
    return f"{base}?path={quote_plus(name, safe='')}&exp={exp}&sig={sig}"


def verify_download(path: str, exp: int, sig: str, key: str, now: Optional[int] = None) -> None:
    """Raise DownloadError when the link has expired or the signature does not match."""
    if now is None:
        now = int(time.time())
    if now > exp:
        raise DownloadError("link expired", 403)
    want = sign_hmac(f"{path}|{exp}", key)
    if not hmac.compare_digest(want.encode("utf-8"), sig.encode("utf-8")):
        raise DownloadError("invalid signature", 403)


def resolve_public_file(
    upload_dir: str,
    path: str,
    exp: int,
    sig: str,
    key: str,
    now: Optional[int] = None,
) -> str:
    """Verify a signed request and return the absolute path of the requested file.

    Only bare file names inside ``upload_dir`` are served.
    """
    verify_download(path, exp, sig, key, now)
    name = os.path.basename(os.path.normpath(path))
    if name != path or "/" in name or "\\" in name:
        raise DownloadError("invalid path", 400)
    full = os.path.join(upload_dir, name)
    if not os.path.isfile(full):
        raise FileNotFoundError(full)
    return full


def convert_markdown_link(
    markdown: str,
    doc_type: str,
    upload_dir: str,
    base_url: str,
    sign_key: str,
    expire_seconds: int = DEFAULT_EXPIRE_SECONDS,
    font_dir: str = "",
    align_lua: str = "",
    gov_lua: str = "",
    now: Optional[int] = None,
) -> DownloadLink:
    """Render markdown, store it under ``upload_dir`` and return a signed link to it."""
    kind = normalize_type(doc_type)
    md = preprocess_markdown(markdown.replace("\r\n", "\n"))
    md = apply_line_alignments(md)
    md = decorate_gov_header_and_body(md, kind, DEFAULT_TITLE, DEFAULT_DOC_NO)

    data = run_pandoc(md, kind, font_dir, align_lua, gov_lua, DEFAULT_TITLE, DEFAULT_DOC_NO)

    os.makedirs(upload_dir, exist_ok=True)
    name = generate_ulid() + "." + kind
    with open(os.path.join(upload_dir, name), "wb") as fh:
        fh.write(data)

    if expire_seconds <= 0:
        expire_seconds = DEFAULT_EXPIRE_SECONDS
    if now is None:
        now = int(time.time())
    exp = now + expire_seconds
    sig = sign_hmac(f"{name}|{exp}", sign_key)

    return DownloadLink(
        filename="export." + kind,
        content_type=CONTENT_TYPES[kind],
        path=name,
        url=build_download_url(base_url, name, exp, sig),
    )