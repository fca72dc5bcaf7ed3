import os
import subprocess
from pathlib import Path
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest

from docagent.download import (
    DownloadError,
    DownloadLink,
    build_download_url,
    convert_markdown_link,
    resolve_public_file,
    sign_hmac,
    verify_download,
)
from docagent.markdown import ConversionError

SIGN_KEY = "secret"
NOW = 1_700_000_000


def _fake_pandoc(output=b"rendered"):
    def run(cmd, **kwargs):
        Path(cmd[cmd.index("-o") + 1]).write_bytes(output)
        return subprocess.CompletedProcess(cmd, 0, b"", b"")

    return run


def test_sign_hmac_is_unpadded_urlsafe():
    sig = sign_hmac("file.pdf|100", SIGN_KEY)
    assert len(sig) == 43
    assert "=" not in sig and "+" not in sig and "/" not in sig
    assert sig == sign_hmac("file.pdf|100", SIGN_KEY)
    assert sig != sign_hmac("file.pdf|101", SIGN_KEY)
    assert sig != sign_hmac("file.pdf|100", "token")


def test_build_download_url_escapes_name():
    url = build_download_url("https://files.example.com/dl/", "a b.pdf", 100, "xyz")
    assert url == "https://files.example.com/dl?path=a+b.pdf&exp=100&sig=xyz"


def test_verify_download_expired():
    sig = sign_hmac("f.pdf|10", SIGN_KEY)
    with pytest.raises(DownloadError, match="expired") as info:
        verify_download("f.pdf", 10, sig, SIGN_KEY, now=11)
    assert info.value.status == 403


def test_verify_download_bad_signature():
    with pytest.raises(DownloadError, match="signature") as info:
        verify_download("f.pdf", NOW + 5, "bogus", SIGN_KEY, now=NOW)
    assert info.value.status == 403


def test_resolve_public_file_accepts_valid_link(tmp_path):
    (tmp_path / "f.pdf").write_bytes(b"x")
    exp = NOW
    sig = sign_hmac(f"f.pdf|{exp}", SIGN_KEY)
    assert resolve_public_file(str(tmp_path), "f.pdf", exp, sig, SIGN_KEY, now=NOW) == os.path.join(
        str(tmp_path), "f.pdf"
    )


def test_resolve_public_file_rejects_traversal(tmp_path):
    path = "../f.pdf"
    sig = sign_hmac(f"{path}|{NOW}", SIGN_KEY)
    with pytest.raises(DownloadError) as info:
        resolve_public_file(str(tmp_path), path, NOW, sig, SIGN_KEY, now=NOW)
    assert info.value.status == 400


def test_resolve_public_file_missing(tmp_path):
    sig = sign_hmac(f"none.pdf|{NOW}", SIGN_KEY)
    with pytest.raises(FileNotFoundError):
        resolve_public_file(str(tmp_path), "none.pdf", NOW, sig, SIGN_KEY, now=NOW)


def test_convert_markdown_link_round_trip(tmp_path):
    upload = tmp_path / "uploads"
    with patch("docagent.markdown.subprocess.run", side_effect=_fake_pandoc(b"PDFDATA")):
        link = convert_markdown_link(
            "Title\nbody", "PDF", str(upload), "https://files.example.com/dl/", SIGN_KEY, 0, now=NOW
        )
    assert isinstance(link, DownloadLink)
    assert link.filename == "export.pdf"
    assert link.content_type == "application/pdf"
    assert link.path.endswith(".pdf") and len(link.path) == 30
    assert (upload / link.path).read_bytes() == b"PDFDATA"

    parts = urlsplit(link.url)
    assert parts.path == "/dl"
    query = parse_qs(parts.query)
    assert query["path"] == [link.path]
    exp = int(query["exp"][0])
    assert exp == NOW + 600
    resolved = resolve_public_file(str(upload), query["path"][0], exp, query["sig"][0], SIGN_KEY, now=exp)
    assert resolved == os.path.join(str(upload), link.path)


def test_convert_markdown_link_custom_expiry(tmp_path):
    with patch("docagent.markdown.subprocess.run", side_effect=_fake_pandoc()):
        link = convert_markdown_link("x", "docx", str(tmp_path), "https://files.example.com", SIGN_KEY, 30, now=NOW)
    query = parse_qs(urlsplit(link.url).query)
    assert int(query["exp"][0]) == NOW + 30
    assert link.filename == "export.docx"
    with pytest.raises(DownloadError):
        resolve_public_file(str(tmp_path), link.path, NOW + 30, query["sig"][0], SIGN_KEY, now=NOW + 31)


def test_convert_markdown_link_rejects_type(tmp_path):
    with pytest.raises(ConversionError):
        convert_markdown_link("x", "odt", str(tmp_path), "https://files.example.com", SIGN_KEY)