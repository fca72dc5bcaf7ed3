import xml.etree.ElementTree as ET
import zipfile

import pytest

from docagent.fileprocessor import (
    clean_pdf_text,
    extract_text_from_slide_xml,
    read_docx_file,
    read_pptx_file,
    read_text_file,
    read_xlsx_file,
)

W_NS = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
A_NS = "http://schemas.openxmlformats.org/drawingml/2006/main"
S_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_NS = "http://schemas.openxmlformats.org/package/2006/relationships"


def _zip(path, members):
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in members.items():
            archive.writestr(name, content)
    return str(path)


def test_read_text_file_round_trip(tmp_path):
    target = tmp_path / "notes.md"
    target.write_text("标题\nline two\n", encoding="utf-8")
    assert read_text_file(str(target)) == "标题\nline two\n"


def test_read_docx_joins_text_runs(tmp_path):
    document = (
        f'<w:document xmlns:w="{W_NS}"><w:body>'
        "<w:p><w:r><w:t>Hello </w:t></w:r><w:r><w:t>World</w:t></w:r></w:p>"
        "<w:p><w:r><w:t>关于</w:t></w:r></w:p>"
        "</w:body></w:document>"
    )
    path = _zip(tmp_path / "a.docx", {"word/document.xml": document})
    assert read_docx_file(path) == "Hello World关于"


def test_read_docx_without_document_xml(tmp_path):
    path = _zip(tmp_path / "a.docx", {"word/other.xml": "<x/>"})
    with pytest.raises(ValueError):
        read_docx_file(path)


def test_read_docx_not_a_zip(tmp_path):
    target = tmp_path / "bad.docx"
    target.write_bytes(b"not a zip")
    with pytest.raises(zipfile.BadZipFile):
        read_docx_file(str(target))


def _slide(*texts):
    runs = "".join(f"<a:p><a:r><a:t>{t}</a:t></a:r></a:p>" for t in texts)
    return f'<p:sld xmlns:p="urn:p" xmlns:a="{A_NS}"><p:cSld>{runs}</p:cSld></p:sld>'


def test_extract_text_from_slide_xml():
    assert extract_text_from_slide_xml(_slide("One", "Two")) == "OneTwo"


def test_extract_text_from_bad_slide_xml():
    with pytest.raises(ET.ParseError):
        extract_text_from_slide_xml("<p:sld")


def test_read_pptx_one_line_per_slide(tmp_path):
    path = _zip(
        tmp_path / "deck.pptx",
        {
            "ppt/slides/slide1.xml": _slide("First"),
            "ppt/slides/slide2.xml": _slide("Second", "Part"),
            "ppt/slides/_rels/slide1.xml.rels": "<Relationships/>",
            "ppt/slides/slide3.xml": "<broken",
            "ppt/slideLayouts/slideLayout1.xml": _slide("Layout"),
        },
    )
    assert read_pptx_file(path) == "First\nSecondPart\n"


def test_read_xlsx_rows(tmp_path):
    workbook = (
        f'<workbook xmlns="{S_NS}" xmlns:r="{R_NS}"><sheets>'
        '<sheet name="S1" sheetId="1" r:id="rId1"/></sheets></workbook>'
    )
    rels = (
        f'<Relationships xmlns="{PKG_NS}">'
        '<Relationship Id="rId1" Type="worksheet" Target="worksheets/sheet1.xml"/>'
        "</Relationships>"
    )
    shared = f'<sst xmlns="{S_NS}"><si><t>name</t></si><si><r><t>Bo</t></r><r><t>b</t></r></si></sst>'
    sheet = (
        f'<worksheet xmlns="{S_NS}"><sheetData>'
        '<row r="1"><c r="A1" t="s"><v>0</v></c><c r="B1" t="inlineStr"><is><t>age</t></is></c></row>'
        '<row r="2"><c r="A2" t="s"><v>1</v></c><c r="C2"><v>42</v></c></row>'
        "</sheetData></worksheet>"
    )
    path = _zip(
        tmp_path / "t.xlsx",
        {
            "xl/workbook.xml": workbook,
            "xl/_rels/workbook.xml.rels": rels,
            "xl/sharedStrings.xml": shared,
            "xl/worksheets/sheet1.xml": sheet,
        },
    )
    assert read_xlsx_file(path) == "name\tage\nBob\t\t42\n"


def test_read_xlsx_without_workbook(tmp_path):
    path = _zip(tmp_path / "t.xlsx", {"xl/other.xml": "<x/>"})
    with pytest.raises(ValueError):
        read_xlsx_file(path)


def test_clean_pdf_text_joins_lines_into_paragraphs():
    raw = "  first line \nsecond line\n\n\n third \n"
    assert clean_pdf_text(raw) == "first line second line\n\nthird\n\n"


def test_clean_pdf_text_without_trailing_blank():
    assert clean_pdf_text("a\nb") == "a b"


def test_clean_pdf_text_blank_input():
    assert clean_pdf_text("\n \n\t\n") == ""