import json

import pytest
import requests

from docagent.xingchen import LLMApiCancel, LLMApiError, XingChenClient, XingChenConfig


def frame(content="", finish="", code=0):
    return "data: " + json.dumps(
        {"code": code, "message": "m", "choices": [{"delta": {"content": content}, "finish_reason": finish}]}
    )


class FakeResponse:
    def __init__(self, status_code=200, lines=(), text="", payload=None):
        self.status_code = status_code
        self._lines = list(lines)
        self.text = text
        self._payload = payload
        self.closed = False

    def iter_lines(self):
        return iter(line.encode("utf-8") for line in self._lines)

    def json(self):
        return self._payload

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def make_client(session=None):
    config = XingChenConfig(
        flow_id="flow",
        api_url="http://localhost/chat",
        api_resume_url="http://localhost/resume",
        api_key="placeholder",
        api_secret="secret",
        upload_url="http://localhost/upload",
    )
    return XingChenClient(config, session or FakeSession())


def test_auth_token():
    assert make_client().auth_token() == "Bearer placeholder:secret"


def test_process_stream_collects_and_stops_at_finish():
    chunks = []
    lines = ["", ": comment", frame("Hel"), "data: {broken", frame("lo", finish="stop"), frame("ignored")]
    reply = make_client().process_stream(lines, chunks.append)
    assert reply == "Hello"
    assert chunks == ["Hel", "lo"]


def test_process_stream_handles_crlf_bytes():
    reply = make_client().process_stream([(frame("a") + "\r\n").encode()], lambda c: None)
    assert reply == "a"


def test_process_stream_raises_on_error_code():
    with pytest.raises(LLMApiError):
        make_client().process_stream([frame("x"), frame(code=10001)], lambda c: None)


def test_process_stream_wraps_callback_failure():
    def fail(_chunk):
        raise RuntimeError("client gone")

    with pytest.raises(LLMApiCancel):
        make_client().process_stream([frame("x")], fail)


def test_process_stream_stop_request_returns_empty():
    assert make_client().process_stream([frame("x"), frame("y")], lambda c: True) == ""


def test_stream_chat_posts_to_chat_url():
    response = FakeResponse(lines=[frame("one"), frame("two", finish="stop")])
    session = FakeSession(response)
    chunks = []
    reply = make_client(session).stream_chat(b'{"flow_id":"flow"}', chunks.append)
    assert reply == "onetwo"
    assert chunks == ["one", "two"]
    url, kwargs = session.calls[0]
    assert url == "http://localhost/chat"
    assert kwargs["headers"]["Accept"] == "text/event-stream"
    assert kwargs["headers"]["Authorization"] == "Bearer placeholder:secret"
    assert kwargs["data"] == b'{"flow_id":"flow"}'
    assert response.closed


def test_stream_resume_posts_to_resume_url():
    session = FakeSession(FakeResponse(lines=[frame("r", finish="stop")]))
    assert make_client(session).stream_resume("{}", lambda c: None) == "r"
    assert session.calls[0][0] == "http://localhost/resume"


def test_stream_chat_non_200_raises_api_error():
    response = FakeResponse(status_code=500, text="boom")
    with pytest.raises(LLMApiError) as info:
        make_client(FakeSession(response)).stream_chat(b"{}", lambda c: None)
    assert "boom" in str(info.value)
    assert response.closed


def test_stream_chat_connection_failure_raises_cancel():
    session = FakeSession(error=requests.ConnectionError("refused"))
    with pytest.raises(LLMApiCancel):
        make_client(session).stream_chat(b"{}", lambda c: None)


def test_upload_image_returns_url(tmp_path):
    image = tmp_path / "pic.png"
    image.write_bytes(b"\x89PNG")
    session = FakeSession(FakeResponse(payload={"code": 0, "message": "", "data": {"url": "http://localhost/p.png"}}))
    assert make_client(session).upload_image(str(image)) == "http://localhost/p.png"
    url, kwargs = session.calls[0]
    assert url == "http://localhost/upload"
    assert kwargs["files"]["file"][0] == "pic.png"


def test_upload_image_failure_code(tmp_path):
    image = tmp_path / "pic.png"
    image.write_bytes(b"x")
    session = FakeSession(FakeResponse(payload={"code": 7, "message": "bad"}))
    with pytest.raises(LLMApiError):
        make_client(session).upload_image(str(image))


def test_upload_image_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        make_client().upload_image(str(tmp_path / "absent.png"))