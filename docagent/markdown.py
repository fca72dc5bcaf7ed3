"""Markdown preprocessing and conversion to PDF or DOCX through pandoc."""

from __future__ import annotations

import os
import re
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

PANDOC_TIMEOUT_SECONDS = 60

DEFAULT_TITLE = "某某县人民政府文件"
DEFAULT_DOC_NO = "某政【2025】1号"

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}

_NUMBER_RUN = re.compile(r"[0-9.]+")
_TEX_SPECIAL = re.compile(r"[%$#&_{}^~]")
_TEX_ESCAPES = {
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "&": r"\&",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "^": r"\^{}",
    "~": r"\~{}",
}

_PDF_HEADER_TEMPLATE = r"""{\centering {\fontsize{36pt}{42pt}\selectfont\textcolor{red}{%s}}\par}
\vspace{4pt}
{\centering {\large %s}\par}
{\color{red}\rule{\linewidth}{1.2pt}}
\vspace{8pt}
"""

_DOCX_HEADER_TEMPLATE = """
::: {.GovTitle}
%s
:::

::: {.GovDocNo}
%s
:::

::: {.GovRedLine}
 
:::
"""

_PDF_HEADER_INCLUDES = (
    r"header-includes=\usepackage[slantfont,boldfont]{xeCJK}\usepackage{microtype}"
    r"\usepackage{xcolor}\tolerance=1000\emergencystretch=3em\sloppy"
)


class ConversionError(Exception):
    """The requested conversion is not supported or pandoc failed."""


@dataclass(frozen=True)
class InfoItem:
    """One labelled piece of document information, such as a title or document number."""

    type: str
    content: str


@dataclass(frozen=True)
class ConvertedFile:
    """A rendered document ready to be sent to the client."""

    filename: str
    content_type: str
    data: bytes


def normalize_type(value: str) -> str:
    """Return the output type in lower case; only ``pdf`` and ``docx`` are accepted."""
    kind = value.strip().lower()
    if kind not in CONTENT_TYPES:
        raise ConversionError("type must be pdf or docx")
    return kind


def preprocess_markdown(src: str) -> str:
    """Normalise line endings, expand literal ``\\n`` and escape dotted numbers."""
    if not src:
        return src
    text = src.replace("\r\n", "\n").replace("\\n", "\n")
    return escape_number_dots_outside_code(text)


def escape_number_dots_outside_code(text: str) -> str:
    """Escape dotted number runs on every line outside fenced code blocks.

    Each line of the result ends with a newline.
    """
    lines: List[str] = []
    in_fence = False
    for line in text.split("\n"):
        if line.strip().startswith("```"):
            in_fence = not in_fence
            lines.append(line)
        elif in_fence:
            lines.append(line)
        else:
            lines.append(escape_number_dots(line))
    return "".join(line + "\n" for line in lines)


def _escape_run(match: "re.Match[str]") -> str:
    token = match.group(0)
    if "." in token and token != ".":
        return token.replace(".", "\\.")
    return token


def escape_number_dots(line: str) -> str:
    """Escape every ``.`` inside runs of digits and dots, e.g. ``1.2.3.``."""
    return _NUMBER_RUN.sub(_escape_run, line)


def wrap_align_div(line: str, align: str) -> str:
    """Wrap a line in a pandoc fenced div carrying an ``align`` attribute."""
    low = line.strip().lower()
    if low.startswith(":::") and "align=" in low:
        return line
    return f"::: {{align={align}}}\n{line}\n:::"


def apply_line_alignments(src: str) -> str:
    """Centre the first non-empty line and right-align the last two."""
    if not src:
        return src
    lines = src.split("\n")
    non_empty = [i for i, line in enumerate(lines) if line.strip()]
    if not non_empty:
        return src

    first = non_empty[0]
    lines[first] = wrap_align_div(lines[first], "center")
    if len(non_empty) >= 2:
        last = non_empty[-1]
        lines[last] = wrap_align_div(lines[last], "right")
    if len(non_empty) >= 3:
        second_last = non_empty[-2]
        lines[second_last] = wrap_align_div(lines[second_last], "right")
    return "\n".join(lines)


def pick_title_doc_no(items: Iterable[InfoItem]) -> Tuple[str, str]:
    """Return ``(title, doc_no)`` from the items; later entries win, blanks are ignored."""
    title = doc_no = ""
    for item in items:
        kind = item.type.strip().lower()
        value = item.content.strip()
        if not value:
            continue
        if kind == "title":
            title = value
        elif kind == "docno":
            doc_no = value
    return title, doc_no


def _html_escape(text: str) -> str:
    return (
        text.replace("&", "&amp;")
        .replace("'", "&#39;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&#34;")
    )


def decorate_gov_header_and_body(src: str, doc_type: str, title: str, doc_no: str) -> str:
    """Prepend the red official header for DOCX output; PDF gets it from pandoc instead."""
    header = ""
    if doc_type == "docx":
        header = _DOCX_HEADER_TEMPLATE % (_html_escape(title), _html_escape(doc_no))
    return header + "\n" + src


def _tex_escape(text: str) -> str:
    return _TEX_SPECIAL.sub(lambda m: _TEX_ESCAPES[m.group(0)], text)


def build_pdf_header_tex(title: str, doc_no: str) -> str:
    """Return the LaTeX that draws the red title, document number and rule."""
    return _PDF_HEADER_TEMPLATE % (_tex_escape(title), _tex_escape(doc_no))


def build_pandoc_font_args(font_dir: str, platform: Optional[str] = None) -> List[str]:
    """Return pandoc ``-V`` font options, preferring font files found in ``font_dir``."""
    norm_dir = (font_dir or "").replace("\\", "/")
    if norm_dir and not norm_dir.endswith("/"):
        norm_dir += "/"

    if norm_dir:
        if os.path.exists(norm_dir + "DENG.TTF"):
            options = "Path=" + norm_dir + ",Extension=.TTF"
            if os.path.exists(norm_dir + "DENGB.TTF"):
                options += ",BoldFont=DENGB.TTF"
            return ["-V", "mainfont=DENG", "-V", "mainfontoptions=" + options]
        if os.path.exists(norm_dir + "SIMHEI.TTF"):
            return [
                "-V",
                "mainfont=SIMHEI",
                "-V",
                "mainfontoptions=Path=" + norm_dir + ",Extension=.TTF",
            ]

    system = platform if platform is not None else sys.platform
    if system.startswith("win"):
        return ["-V", "mainfont=Microsoft YaHei"]
    if system == "darwin":
        return ["-V", "mainfont=PingFang SC"]
    return ["-V", "mainfont=Noto Sans CJK SC"]


def _write_temp(text: str, prefix: str, suffix: str) -> str:
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
        fh.write(text)
    return path


def _remove_quietly(path: Optional[str]) -> None:
    if path:
        try:
            os.remove(path)
        except OSError:
            pass


def run_pandoc(
    markdown: str,
    doc_type: str,
    font_dir: str = "",
    align_lua: str = "",
    gov_lua: str = "",
    title: str = "",
    doc_no: str = "",
) -> bytes:
    """Render markdown to ``pdf`` or ``docx`` with pandoc and return the file's bytes."""
    md_path = _write_temp(markdown, "md2-" + time.strftime("%Y%m%d%H%M%S") + "-", ".md")
    out_path = md_path + "." + doc_type
    include_path: Optional[str] = None
    try:
        args = ["-f", "markdown+fenced_divs", "-o", out_path, "--wrap=preserve"]
        if doc_type == "pdf":
            args.insert(0, "--pdf-engine=xelatex")
            args += build_pandoc_font_args(font_dir)
            args += [
                "-V", "geometry:top=20mm,left=20mm,right=20mm,bottom=20mm",
                "-V", "indent=0",
                "-V", "linestretch=1.2",
                "-V", "CJKmainfontoptions=AutoFakeBold,AutoFakeSlant",
                "-V", _PDF_HEADER_INCLUDES,
                "--pdf-engine-opt=-halt-on-error",
                "--pdf-engine-opt=-interaction=nonstopmode",
            ]
            include_path = _write_temp(build_pdf_header_tex(title, doc_no), "inc-", ".tex")
            args.append("--include-before-body=" + include_path)
            args.append("--lua-filter=" + align_lua)
        elif doc_type == "docx":
            args.append("--lua-filter=" + align_lua)
            args.append("--lua-filter=" + gov_lua)
        args.append(md_path)

        try:
            result = subprocess.run(
                ["pandoc", *args],
                capture_output=True,
                timeout=PANDOC_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.TimeoutExpired) as err:
            raise ConversionError(f"pandoc failed: {err}") from err
        if result.returncode != 0:
            stderr = (result.stderr or b"").decode("utf-8", errors="replace")
            raise ConversionError(
                f"pandoc failed: exit status {result.returncode}\nstderr: {stderr}"
            )
        try:
            with open(out_path, "rb") as fh:
                return fh.read()
        except OSError as err:
            raise ConversionError(f"reading pandoc output failed: {err}") from err
    finally:
        _remove_quietly(include_path)
        _remove_quietly(out_path)
        _remove_quietly(md_path)


def convert_markdown(
    markdown: str,
    doc_type: str,
    information: Iterable[InfoItem] = (),
    font_dir: str = "",
    align_lua: str = "",
    gov_lua: str = "",
) -> ConvertedFile:
    """Convert markdown into an official-style PDF or DOCX document."""
    kind = normalize_type(doc_type)
    md = apply_line_alignments(preprocess_markdown(markdown))
    title, doc_no = pick_title_doc_no(information)
    title = title or DEFAULT_TITLE
    doc_no = doc_no or DEFAULT_DOC_NO
    md = decorate_gov_header_and_body(md, kind, title, doc_no)
    data = run_pandoc(md, kind, font_dir, align_lua, gov_lua, title, doc_no)
    return ConvertedFile(filename="export." + kind, content_type=CONTENT_TYPES[kind], data=data)