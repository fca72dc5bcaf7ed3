"""Prompt construction for chat, resume and edit requests, including file references."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from docagent.fileprocessor import (
    read_docx_file,
    read_pptx_file,
    read_text_file,
    read_xlsx_file,
)
from docagent.llmapi import LLMApiRequest, LLMMessage, LLMParameters

log = logging.getLogger(__name__)

DEFAULT_OCR_LANG = "chi_sim+eng"
TITLE_MAX_LENGTH = 15
HISTORY_LIMIT = 10
OCR_MAX_CHARS = 3000
FILE_MAX_BYTES = 5000

OCR_TRUNCATED = "...(OCR内容已截断)"
FILE_TRUNCATED = "...(已截断)"

_IMAGE_RE = re.compile(r"\.(jpg|jpeg|png)$", re.IGNORECASE)
_DOC_RE = re.compile(r"\.(txt|md|csv|docx|pdf|xlsx|pptx)$", re.IGNORECASE)
_BLANKS = re.compile(r"[ \t\r\f]+")

_READERS: Dict[str, Callable[[str], str]] = {
    ".txt": read_text_file,
    ".md": read_text_file,
    ".csv": read_text_file,
    ".docx": read_docx_file,
    ".xlsx": read_xlsx_file,
    ".pptx": read_pptx_file,
}

OcrFunc = Callable[[str], str]


@dataclass(frozen=True)
class Reference:
    """A file the user attached to a request; ``file_id`` is its stored name."""

    type: str
    file_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "file_id": self.file_id}


@dataclass(frozen=True)
class HistoryMessage:
    """An earlier message of the conversation, oldest first in a history."""

    role: str
    content: str


def generate_title(prompt: str) -> str:
    """Return a conversation title: the first 15 characters, with ``...`` if cut."""
    if len(prompt) > TITLE_MAX_LENGTH:
        return prompt[:TITLE_MAX_LENGTH] + "..."
    return prompt


def ocr_image(image_path: str, lang: str = DEFAULT_OCR_LANG) -> str:
    """Recognise the text of an image with tesseract and collapse runs of blanks."""
    if not lang:
        lang = DEFAULT_OCR_LANG
    cmd = ["tesseract", image_path, "stdout", "-l", lang, "--psm", "3"]
    result = subprocess.run(cmd, capture_output=True)
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode("utf-8", errors="replace")
        log.error("tesseract ocr failed, stderr: %s", stderr)
        raise subprocess.CalledProcessError(result.returncode, cmd, result.stdout, result.stderr)
    text = (result.stdout or b"").decode("utf-8", errors="replace").strip()
    return _BLANKS.sub(" ", text)


def _ext(path: str) -> str:
    index = path.rfind(".")
    if index == -1 or "/" in path[index:]:
        return ""
    return path[index:]


def read_reference_file(path: str) -> str:
    """Return the text of a supported document, chosen by its extension."""
    ext = _ext(path).lower()
    reader = _READERS.get(ext)
    if reader is None:
        raise ValueError(f"no text extractor for {ext or 'files without extension'}")
    return reader(path)


def _truncate_bytes(content: str, limit: int) -> str:
    raw = content.encode("utf-8")
    if len(raw) <= limit:
        return content
    return raw[:limit].decode("utf-8", errors="replace") + FILE_TRUNCATED


def collect_reference_contents(
    upload_dir: str,
    references: Iterable[Reference],
    ocr: Optional[OcrFunc] = None,
) -> List[str]:
    """Return one prompt section per readable ``file`` reference; others are skipped."""
    if ocr is None:
        ocr = lambda path: ocr_image(path, DEFAULT_OCR_LANG)  # noqa: E731
    contents: List[str] = []
    for ref in references:
        if ref.type != "file":
            continue
        local_path = os.path.join(upload_dir, ref.file_id.lstrip("/"))
        ext = _ext(ref.file_id).lower()

        if _IMAGE_RE.search(ref.file_id):
            try:
                text = ocr(local_path)
            except Exception as err:
                log.error("image OCR failed: file_id=%s err=%s", ref.file_id, err)
                continue
            if not text.strip():
                continue
            if len(text) > OCR_MAX_CHARS:
                text = text[:OCR_MAX_CHARS] + OCR_TRUNCATED
            contents.append(f"一张图片（{ext}）识别到的文字：\n{text}")
        elif _DOC_RE.search(ref.file_id):
            try:
                content = read_reference_file(local_path)
            except Exception as err:
                log.error("reading file failed: file_id=%s err=%s", ref.file_id, err)
                continue
            content = _truncate_bytes(content, FILE_MAX_BYTES)
            contents.append(f"一份{ext}文件内容如下：\n{content}")
    return contents


def build_chat_prompt(flag_code: str, document_type: str, information: str) -> str:
    """Return the base prompt asking for a document of the given type."""
    return f"{flag_code}请写一篇{document_type}，基本信息：{information}"


def process_references(
    prompt: str,
    upload_dir: str,
    references: Iterable[Reference],
    ocr: Optional[OcrFunc] = None,
) -> str:
    """Append the contents of referenced files to a chat prompt."""
    contents = collect_reference_contents(upload_dir, references, ocr)
    if contents:
        prompt += "\n\n用户提供了以下文件内容作为参考：\n" + "\n\n".join(contents)
    return prompt


def enrich_prompt_with_references(
    base_prompt: str,
    upload_dir: str,
    references: Sequence[Reference],
    ocr: Optional[OcrFunc] = None,
) -> str:
    """Append referenced files to a resume prompt as sample documents to imitate."""
    if not references:
        return base_prompt
    contents = collect_reference_contents(upload_dir, references, ocr)
    if contents:
        base_prompt += (
            "\n\n参考用户给的实例公文的风格和格式，实例公文的内容如下：\n" + "\n\n".join(contents)
        )
    return base_prompt


def _api_history(history: Sequence[HistoryMessage]) -> List[LLMMessage]:
    recent = list(history)[-HISTORY_LIMIT:]
    return [LLMMessage(role=msg.role, content=msg.content, content_type="text") for msg in recent]


def build_chat_request(
    flow_id: str,
    user_id: int,
    conversation_id: str,
    prompt: str,
    history: Sequence[HistoryMessage] = (),
    img_url: str = "",
) -> LLMApiRequest:
    """Return a streaming chat request carrying the last ten history messages."""
    return LLMApiRequest(
        flow_id=flow_id,
        uid=str(user_id),
        parameters=LLMParameters(agent_user_input=prompt, img=img_url),
        stream=True,
        chat_id=conversation_id,
        history=_api_history(history),
    )


def build_resume_request(
    flow_id: str,
    flag_code: str,
    user_id: int,
    conversation_id: str,
    document_type: str,
    content: str,
    history: Sequence[HistoryMessage] = (),
    upload_dir: str = "",
    references: Sequence[Reference] = (),
    ocr: Optional[OcrFunc] = None,
) -> LLMApiRequest:
    """Return a request that writes the final document from the user's edited outline."""
    base_prompt = f"请根据用户给的内容清单中的内容生成一篇{document_type}"
    enriched = enrich_prompt_with_references(base_prompt, upload_dir, references, ocr)
    enriched = f"{enriched}\n\n清单内容如下：{content.strip()}"
    if flag_code:
        enriched = flag_code + enriched
    return build_chat_request(flow_id, user_id, conversation_id, enriched, history, "")


def build_edit_request(flow_id: str, user_id: int, original: str, prompt: str) -> LLMApiRequest:
    """Return a request that rewrites ``original`` following the user's instructions."""
    text = f"修改：请根据以下提示修改文档内容：\n\n原文：\n{original}\n\n修改提示：{prompt}"
    return LLMApiRequest(
        flow_id=flow_id,
        uid=str(user_id),
        parameters=LLMParameters(agent_user_input=text),
        stream=True,
    )