"""
Minimal STOMP 1.2 frame codec for the backend's message broker.

Only the frames the portal needs are produced (CONNECT, SUBSCRIBE,
UNSUBSCRIBE, DISCONNECT); any frame can be parsed. Heart-beat newlines
between frames are skipped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field


NULL = "\x00"
_HEADER_END = re.compile(r"\r?\n\r?\n")

# Header escaping is not applied to CONNECT/CONNECTED (STOMP 1.2 §Value Encoding)
_UNESCAPED_COMMANDS = {"CONNECT", "CONNECTED"}

_ESCAPES = [("\\", "\\\\"), ("\r", "\\r"), ("\n", "\\n"), (":", "\\c")]
_UNESCAPES = {"\\\\": "\\", "\\r": "\r", "\\n": "\n", "\\c": ":"}


class FrameError(ValueError):
    pass


@dataclass
class Frame:
    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        if value[i] == "\\":
            pair = value[i:i + 2]
            if pair not in _UNESCAPES:
                raise FrameError(f"Invalid header escape {pair!r}")
            out.append(_UNESCAPES[pair])
            i += 2
            continue
        out.append(value[i])
        i += 1
    return "".join(out)


def encode(frame: Frame) -> str:
    escape = frame.command not in _UNESCAPED_COMMANDS
    lines = [frame.command]
    for key, value in frame.headers.items():
        key, value = str(key), str(value)
        if escape:
            key, value = _escape(key), _escape(value)
        lines.append(f"{key}:{value}")
    return "\n".join(lines) + "\n\n" + frame.body + NULL


def decode(data: str) -> list[Frame]:
    """
    Parse every complete frame in `data`.

    Raises FrameError on a frame without a header terminator or with an
    invalid header line.
    """
    frames: list[Frame] = []
    for chunk in data.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        end = _HEADER_END.search(chunk)
        if end is None:
            raise FrameError("Frame is missing the blank line after its headers")
        head, body = chunk[:end.start()], chunk[end.end():]
        lines = head.replace("\r\n", "\n").split("\n")
        command = lines[0].strip()
        unescape = command not in _UNESCAPED_COMMANDS
        headers: dict[str, str] = {}
        for line in lines[1:]:
            key, colon, value = line.partition(":")
            if not colon:
                raise FrameError(f"Invalid header line {line!r}")
            if unescape:
                key, value = _unescape(key), _unescape(value)
            # First occurrence wins for repeated headers
            headers.setdefault(key, value)
        frames.append(Frame(command=command, headers=headers, body=body))
    return frames


def connect_frame(host: str, headers: dict[str, str] | None = None) -> Frame:
    return Frame("CONNECT", {
        "accept-version": "1.2",
        "host": host,
        "heart-beat": "0,0",
        **(headers or {}),
    })


def subscribe_frame(subscription_id: str, destination: str) -> Frame:
    return Frame("SUBSCRIBE", {"id": subscription_id, "destination": destination, "ack": "auto"})


def unsubscribe_frame(subscription_id: str) -> Frame:
    return Frame("UNSUBSCRIBE", {"id": subscription_id})


def disconnect_frame() -> Frame:
    return Frame("DISCONNECT", {})
