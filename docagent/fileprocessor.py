"""Plain-text extraction from uploaded text, docx, xlsx, pptx and PDF-derived text."""

from __future__ import annotations

import posixpath
import re
import xml.etree.ElementTree as ET
import zipfile
from typing import Dict, Iterator, List, Union

_CELL_REF = re.compile(r"^([A-Za-z]+)(\d+)$")


def _local(tag: str) -> str:
    return tag.rpartition("}")[2] if isinstance(tag, str) else ""


def _attr(element: ET.Element, name: str) -> str:
    for key, value in element.attrib.items():
        if _local(key) == name:
            return value
    return ""


def _chardata(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _text_runs(element: ET.Element) -> Iterator[str]:
    """Yield the character data of every ``t`` element, outermost first."""
    if _local(element.tag) == "t":
        yield _chardata(element)
        return
    for child in element:
        yield from _text_runs(child)


def read_text_file(path: str) -> str:
    """Return a file's contents decoded as UTF-8."""
    with open(path, "rb") as fh:
        return fh.read().decode("utf-8", errors="replace")


def read_docx_file(path: str) -> str:
    """Return the concatenated text runs of a .docx document."""
    with zipfile.ZipFile(path) as archive:
        try:
            document = archive.read("word/document.xml")
        except KeyError:
            raise ValueError("document.xml not found in docx") from None
    return "".join(_text_runs(ET.fromstring(document)))


def extract_text_from_slide_xml(data: Union[bytes, str]) -> str:
    """Return the concatenated text runs of one slide's XML."""
    return "".join(_text_runs(ET.fromstring(data)))


def read_pptx_file(path: str) -> str:
    """Return the text of every slide of a .pptx, one slide per line."""
    parts: List[str] = []
    with zipfile.ZipFile(path) as archive:
        for info in archive.infolist():
            name = info.filename
            if not (name.startswith("ppt/slides/slide") and name.endswith(".xml")):
                continue
            try:
                parts.append(extract_text_from_slide_xml(archive.read(info)) + "\n")
            except (ET.ParseError, OSError, zipfile.BadZipFile):
                continue
    return "".join(parts)


def _rich_text(element: ET.Element) -> str:
    parts = []
    for child in element:
        kind = _local(child.tag)
        if kind == "t":
            parts.append(child.text or "")
        elif kind == "r":
            parts.extend(t.text or "" for t in child if _local(t.tag) == "t")
    return "".join(parts)


def _shared_strings(archive: zipfile.ZipFile) -> List[str]:
    try:
        data = archive.read("xl/sharedStrings.xml")
    except KeyError:
        return []
    root = ET.fromstring(data)
    return [_rich_text(si) for si in root if _local(si.tag) == "si"]


def _sheet_paths(archive: zipfile.ZipFile) -> List[str]:
    try:
        workbook = ET.fromstring(archive.read("xl/workbook.xml"))
        rels = ET.fromstring(archive.read("xl/_rels/workbook.xml.rels"))
    except KeyError:
        raise ValueError("workbook not found in xlsx") from None
    targets = {rel.get("Id", ""): rel.get("Target", "") for rel in rels if _local(rel.tag) == "Relationship"}
    paths = []
    for element in workbook.iter():
        if _local(element.tag) != "sheet":
            continue
        target = targets.get(_attr(element, "id"))
        if not target:
            continue
        if target.startswith("/"):
            paths.append(target.lstrip("/"))
        else:
            paths.append(posixpath.normpath(posixpath.join("xl", target)))
    return paths


def _column_number(letters: str) -> int:
    number = 0
    for letter in letters.upper():
        number = number * 26 + (ord(letter) - ord("A") + 1)
    return number


def _cell_value(cell: ET.Element, shared: List[str]) -> str:
    kind = cell.get("t", "n")
    if kind == "inlineStr":
        return "".join(_rich_text(child) for child in cell if _local(child.tag) == "is")
    raw = next((child.text or "" for child in cell if _local(child.tag) == "v"), "")
    if kind == "s":
        return shared[int(raw)] if raw else ""
    if kind == "b":
        return "TRUE" if raw == "1" else "FALSE"
    return raw


def _sheet_rows(data: bytes, shared: List[str]) -> List[List[str]]:
    root = ET.fromstring(data)
    cells: Dict[int, Dict[int, str]] = {}
    row_number = 0
    for row in root.iter():
        if _local(row.tag) != "row":
            continue
        row_number = int(row.get("r") or row_number + 1)
        column = 0
        for cell in row:
            if _local(cell.tag) != "c":
                continue
            match = _CELL_REF.match(cell.get("r", ""))
            column = _column_number(match.group(1)) if match else column + 1
            value = _cell_value(cell, shared)
            if value:
                cells.setdefault(row_number, {})[column] = value
    if not cells:
        return []
    rows = []
    for number in range(1, max(cells) + 1):
        values = cells.get(number, {})
        width = max(values, default=0)
        rows.append([values.get(col, "") for col in range(1, width + 1)])
    return rows


def read_xlsx_file(path: str) -> str:
    """Return every sheet's rows as tab-separated lines."""
    lines: List[str] = []
    with zipfile.ZipFile(path) as archive:
        shared = _shared_strings(archive)
        for sheet in _sheet_paths(archive):
            try:
                rows = _sheet_rows(archive.read(sheet), shared)
            except (KeyError, ET.ParseError, ValueError, IndexError):
                continue
            lines.extend("\t".join(row) + "\n" for row in rows)
    return "".join(lines)


def clean_pdf_text(raw: str) -> str:
    """Join wrapped PDF lines into paragraphs separated by blank lines."""
    paragraphs: List[str] = []
    current: List[str] = []
    for line in raw.split("\n"):
        stripped = line.strip()
        if stripped:
            current.append(stripped)
        elif current:
            paragraphs.append(" ".join(current) + "\n\n")
            current = []
    if current:
        paragraphs.append(" ".join(current))
    return "".join(paragraphs)