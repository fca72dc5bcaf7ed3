"""Relaying streamed RPC events to HTTP clients as server-sent events."""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Iterator

log = logging.getLogger(__name__)

EVENT_MESSAGE = "message"
EVENT_INTERRUPT = "interrupt"
EVENT_END = "end"
EVENT_ERROR = "error"

# Status code reported for failures that carry no status of their own.
UNKNOWN_CODE = 2

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass(frozen=True)
class StreamEvent:
    """One event of a streamed answer: ``message``, ``interrupt`` or ``end``."""

    kind: str
    data: Any


class StreamError(Exception):
    """The upstream stream failed with a status code and message."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def _to_json(data: Any) -> str:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        data = dataclasses.asdict(data)
    text = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _JSON_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def format_sse(event: str, data: Any) -> str:
    """Return one server-sent event whose data line is the compact JSON of ``data``."""
    return f"event: {event}\ndata: {_to_json(data)}\n\n"


def sse_comment(text: str) -> str:
    """Return an SSE comment line, used to open the stream through proxies."""
    return f": {text}\n\n"


def relay_events(events: Iterable[StreamEvent]) -> Iterator[str]:
    """Yield formatted SSE frames for the events until ``end`` or a failure.

    A failure of the upstream stream becomes a final ``error`` event carrying
    its code and message. Events of unknown kind are skipped.
    """
    iterator = iter(events)
    while True:
        try:
            event = next(iterator)
        except StopIteration:
            return
        except StreamError as err:
            log.error("error receiving from stream, code: %d, message: %s", err.code, err.message)
            yield format_sse(EVENT_ERROR, {"code": err.code, "message": err.message})
            return
        except Exception as err:
            log.error("error receiving from stream: %s", err)
            yield format_sse(EVENT_ERROR, {"code": UNKNOWN_CODE, "message": str(err)})
            return

        if event.kind in (EVENT_MESSAGE, EVENT_INTERRUPT):
            yield format_sse(event.kind, event.data)
        elif event.kind == EVENT_END:
            yield format_sse(EVENT_END, event.data)
            return