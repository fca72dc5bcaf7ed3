"""Request and response bodies exchanged with the workflow chat API."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _get_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _get_int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer")
    return value


def _get_obj(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"field {key!r} must be an object")
    return value


@dataclass
class LLMParameters:
    """Inputs handed to the start node of the workflow."""

    agent_user_input: str = ""
    img: str = ""

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"AGENT_USER_INPUT": self.agent_user_input}
        if self.img:
            result["img"] = self.img
        return result


@dataclass
class LLMExt:
    """Caller identification sent alongside a request."""

    bot_id: str = ""
    caller: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"bot_id": self.bot_id, "caller": self.caller}


@dataclass
class LLMMessage:
    """One earlier turn of the conversation."""

    role: str
    content: str
    content_type: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content_type": self.content_type, "content": self.content}


@dataclass
class LLMApiRequest:
    """Body of a chat request to the workflow API."""

    flow_id: str
    uid: str
    parameters: LLMParameters = field(default_factory=LLMParameters)
    ext: LLMExt = field(default_factory=LLMExt)
    stream: bool = False
    chat_id: str = ""
    history: List[LLMMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Return the request as a JSON-ready dict; empty chat id and history are left out."""
        result: Dict[str, Any] = {
            "flow_id": self.flow_id,
            "uid": self.uid,
            "parameters": self.parameters.to_dict(),
            "ext": self.ext.to_dict(),
            "stream": self.stream,
        }
        if self.chat_id:
            result["chat_id"] = self.chat_id
        if self.history:
            result["history"] = [message.to_dict() for message in self.history]
        return result

    def to_json(self) -> str:
        """Return the compact JSON encoding, with HTML-sensitive characters escaped."""
        text = json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
        for char, escape in _JSON_ESCAPES.items():
            text = text.replace(char, escape)
        return text


@dataclass
class LLMDelta:
    """The increment of text carried by one streamed choice."""

    role: str = ""
    content: str = ""


@dataclass
class LLMChoice:
    """One choice of a streamed response frame."""

    delta: LLMDelta = field(default_factory=LLMDelta)
    finish_reason: str = ""


@dataclass
class LLMEventData:
    """An interrupt raised by the workflow, asking the user a question."""

    event_id: str = ""
    event_type: str = ""
    value_type: str = ""
    value_content: str = ""


@dataclass
class LLMApiResponse:
    """One frame of the streamed workflow response."""

    code: int = 0
    message: str = ""
    id: str = ""
    choices: List[LLMChoice] = field(default_factory=list)
    event_data: Optional[LLMEventData] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LLMApiResponse":
        """Build a frame from decoded JSON; raises ValueError on mistyped fields."""
        if not isinstance(data, Mapping):
            raise ValueError("response frame must be an object")
        raw_choices = data.get("choices")
        if raw_choices is None:
            raw_choices = []
        if not isinstance(raw_choices, list):
            raise ValueError("field 'choices' must be an array")
        choices = []
        for raw in raw_choices:
            if raw is None:
                raw = {}
            if not isinstance(raw, Mapping):
                raise ValueError("choice must be an object")
            delta = _get_obj(raw, "delta")
            choices.append(
                LLMChoice(
                    delta=LLMDelta(role=_get_str(delta, "role"), content=_get_str(delta, "content")),
                    finish_reason=_get_str(raw, "finish_reason"),
                )
            )
        event_data = None
        if data.get("event_data") is not None:
            raw_event = _get_obj(data, "event_data")
            value = _get_obj(raw_event, "value")
            event_data = LLMEventData(
                event_id=_get_str(raw_event, "event_id"),
                event_type=_get_str(raw_event, "event_type"),
                value_type=_get_str(value, "type"),
                value_content=_get_str(value, "content"),
            )
        return cls(
            code=_get_int(data, "code"),
            message=_get_str(data, "message"),
            id=_get_str(data, "id"),
            choices=choices,
            event_data=event_data,
        )


@dataclass
class LLMResumeApiRequest:
    """Body that answers an interrupt: ``resume``, ``ignore`` or ``abort``."""

    event_id: str
    event_type: str
    content: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"event_id": self.event_id, "event_type": self.event_type, "content": self.content}