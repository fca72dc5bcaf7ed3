"""Client for the streaming workflow chat API."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union

import requests

from docagent.llmapi import LLMApiResponse

log = logging.getLogger(__name__)

_DATA_PREFIX = "data: "

ChunkCallback = Callable[[str], Optional[bool]]


class LLMApiError(Exception):
    """The API answered with an error or its stream could not be read."""


class LLMApiCancel(Exception):
    """The API could not be reached or the client stopped receiving."""


@dataclass
class XingChenConfig:
    """Endpoints and credentials of the workflow API."""

    flow_id: str = ""
    api_url: str = ""
    api_resume_url: str = ""
    api_key: str = ""
    api_secret: str = ""
    upload_url: str = ""
    flag_code1: str = ""
    flag_code2: str = ""
    timeout: Optional[float] = None


def _normalize_line(line: Union[str, bytes]) -> str:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    if line.endswith("\n"):
        line = line[:-1]
    if line.endswith("\r"):
        line = line[:-1]
    return line


class XingChenClient:
    """Sends chat requests and relays the streamed answer chunk by chunk."""

    def __init__(self, config: XingChenConfig, session: Optional[Any] = None) -> None:
        self.config = config
        self.session = session if session is not None else requests.Session()

    def auth_token(self) -> str:
        """Return the Authorization header value."""
        return f"Bearer {self.config.api_key}:{self.config.api_secret}"

    def _timeout(self) -> Optional[float]:
        return self.config.timeout or None

    def upload_image(self, file_path: str) -> str:
        """Upload an image and return the URL the API stored it under."""
        with open(file_path, "rb") as fh:
            response = self.session.post(
                self.config.upload_url,
                files={"file": (os.path.basename(file_path), fh)},
                headers={"Authorization": self.auth_token()},
                timeout=self._timeout(),
            )
        try:
            result = response.json()
        finally:
            response.close()
        if not isinstance(result, dict):
            raise ValueError("upload response must be an object")
        code = result.get("code") or 0
        if code != 0:
            raise LLMApiError(f"upload failed code={code}: {result.get('message', '')}")
        data = result.get("data") or {}
        return data.get("url", "") if isinstance(data, dict) else ""

    def process_stream(self, lines: Iterable[Union[str, bytes]], on_chunk: ChunkCallback) -> str:
        """Read server-sent ``data:`` lines and return the assembled reply.

        ``on_chunk`` receives each non-empty text increment; returning True
        stops the stream and yields an empty reply.
        """
        parts = []
        try:
            for raw in lines:
                line = _normalize_line(raw)
                if not line.startswith(_DATA_PREFIX):
                    continue
                payload = line[len(_DATA_PREFIX):]
                try:
                    frame = LLMApiResponse.from_dict(json.loads(payload))
                except ValueError as err:
                    log.error("failed to unmarshal llm stream line: %s, error: %s", payload, err)
                    continue

                if frame.code != 0:
                    raise LLMApiError(
                        f"LLM API error response: code={frame.code}, message={frame.message}"
                    )

                if frame.choices and frame.choices[0].delta.content:
                    try:
                        stop = on_chunk(frame.choices[0].delta.content)
                    except Exception as err:
                        raise LLMApiCancel(f"failed to send message chunk to client: {err}") from err
                    if stop is True:
                        return ""

                if frame.choices:
                    parts.append(frame.choices[0].delta.content)
                    if frame.choices[0].finish_reason == "stop":
                        break
        except (requests.RequestException, OSError) as err:
            raise LLMApiError(f"error reading llm stream: {err}") from err
        return "".join(parts)

    def _stream_request(self, url: str, body: Union[bytes, str]) -> Any:
        headers = {
            "Content-Type": "application/json",
            "Authorization": self.auth_token(),
            "Accept": "text/event-stream",
        }
        data = body.encode("utf-8") if isinstance(body, str) else body
        try:
            response = self.session.post(
                url, data=data, headers=headers, stream=True, timeout=self._timeout()
            )
        except requests.RequestException as err:
            raise LLMApiCancel(f"failed to call llm api: {err}") from err
        if response.status_code != 200:
            try:
                text = response.text
            except Exception:
                text = ""
            finally:
                response.close()
            raise LLMApiError(
                f"llm api returned non-200 status: {response.status_code}, body: {text}"
            )
        return response

    def _stream(self, url: str, body: Union[bytes, str], on_chunk: ChunkCallback) -> str:
        response = self._stream_request(url, body)
        try:
            return self.process_stream(response.iter_lines(), on_chunk)
        finally:
            response.close()

    def stream_chat(self, body: Union[bytes, str], on_chunk: ChunkCallback) -> str:
        """Send a chat request and stream the reply through ``on_chunk``."""
        return self._stream(self.config.api_url, body, on_chunk)

    def stream_resume(self, body: Union[bytes, str], on_chunk: ChunkCallback) -> str:
        """Send a resume request and stream the reply through ``on_chunk``."""
        return self._stream(self.config.api_resume_url, body, on_chunk)