# docagent

Helpers for a service that writes official documents with a large language
model. Each module handles one step of that job:

- `docagent.fileprocessor` – plain text from `.txt`, `.docx`, `.xlsx` and
  `.pptx` files (`read_text_file`, `read_docx_file`, `read_xlsx_file`,
  `read_pptx_file`, `extract_text_from_slide_xml`), and `clean_pdf_text`,
  which joins wrapped lines of text taken from a PDF into paragraphs.
- `docagent.prompts` – builds the prompt and request sent to the model:
  `build_chat_prompt`, `process_references`, `enrich_prompt_with_references`,
  `build_chat_request`, `build_resume_request`, `build_edit_request`.
  Referenced images are read with the `tesseract` command (`ocr_image`);
  `generate_title` makes a short title for a new conversation.
- `docagent.llmapi` – the request and response shapes of the model API
  (`LLMApiRequest`, `LLMApiResponse`, `LLMResumeApiRequest`, ...).
- `docagent.xingchen` – `XingChenClient`, which posts requests, reads the
  server-sent event stream and passes every text chunk to a callback; errors
  are raised as `LLMApiError` or `LLMApiCancel`.
- `docagent.sse` – formats server-sent events (`format_sse`, `sse_comment`)
  and turns a stream of `StreamEvent` objects into SSE frames
  (`relay_events`), ending with an `error` frame when the stream fails.
- `docagent.markdown` – prepares Markdown (number escaping, alignment of the
  first and last lines, the official red header) and renders it to PDF or
  DOCX with `pandoc` (`convert_markdown`, `run_pandoc`).
- `docagent.download` – stores a rendered file and returns an HMAC-signed,
  expiring link (`convert_markdown_link`); `verify_download` and
  `resolve_public_file` check such a link.
- `docagent.files` – safe resolution of paths inside the upload directory
  (`resolve_upload_path`), content-type guessing (`guess_content_type`) and
  decoding of stored file references (`parse_history_references`).
- `docagent.tokens` – HS256 access tokens (`generate_token`, `get_jwt_token`).
- `docagent.ctxdata` – the user id from token claims (`uid_from_claims`).
- `docagent.tool` – MD5 helpers, random strings, ULIDs and an
  upload-directory cleaner (`clean_once`, `start_file_cleaner`).

## Installing

```
pip install .
```

Rendering documents needs `pandoc` (and `xelatex` for PDF) on the `PATH`;
image references need `tesseract`.

## Examples

Tidy text copied from a PDF:

```python
from docagent.fileprocessor import clean_pdf_text

clean_pdf_text("First line\nsecond line\n\nNext paragraph")
# 'First line second line\n\nNext paragraph'
```

Issue and check a download link:

```python
from docagent.download import sign_hmac, build_download_url, verify_download

name, exp = "report.pdf", 1_900_000_000
sig = sign_hmac(f"{name}|{exp}", "secret")
url = build_download_url("https://files.example.com/public/file", name, exp, sig)
verify_download(name, exp, sig, "secret", now=1_800_000_000)
```

Stream a chat through the model API:

```python
from docagent.xingchen import XingChenClient, XingChenConfig
from docagent.prompts import build_chat_prompt, build_chat_request

config = XingChenConfig(
    flow_id="flow",
    api_url="https://llm.example.com/chat",
    api_key="placeholder",
    api_secret="secret",
)
client = XingChenClient(config)
prompt = build_chat_prompt("", "notice", "meeting on Monday")
request = build_chat_request(config.flow_id, 1, "conv-1", prompt, [], "")
reply = client.stream_chat(request.to_json(), lambda chunk: print(chunk, end=""))
```

## What the package does not do

- It has no HTTP or RPC server and no command-line program; the functions
  are meant to be called from a service of your own.
- It keeps no storage: conversations, messages, documents, users and file
  records are not saved anywhere. Where a record is needed, the caller
  passes a callback (`on_deleted` in `clean_once`, `lookup_filename` in
  `parse_history_references`).
- It has no user registration or login; `docagent.tokens` only issues
  tokens for a user id you supply.
- It does not read PDF files itself; only `clean_pdf_text` is offered for
  text already taken from a PDF, so `.pdf` references are skipped when
  prompts are built.

## Tests

```
pip install .[test]
pytest
```