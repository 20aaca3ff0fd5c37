"""Wire encoding for gateway frames.

Inbound frames are `{op, d, s, t}` JSON envelopes, optionally zlib compressed
when they arrive as binary frames. Outbound commands are encoded with a fixed
key order so the same command always produces the same text.
"""

from __future__ import annotations

import zlib
from enum import IntEnum
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

import msgspec

from .commands import (
    GatewayCommand,
    Heartbeat,
    Identify,
    Resume,
    TypingStart,
    UpdatePresence,
)
from .errors import DecodeError

API_VERSION = 10
DEFAULT_GATEWAY_URL = "wss://gateway.discord.gg"


class OpCode(IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE_UPDATE = 3
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class Frame(msgspec.Struct, frozen=True):
    op: OpCode
    d: Any = None
    s: int | None = None
    t: str | None = None


class _Hello(msgspec.Struct):
    heartbeat_interval: float


_frame_decoder = msgspec.json.Decoder(Frame)
_encoder = msgspec.json.Encoder()


def _inflate(raw: bytes) -> bytes:
    if raw[:1] in (b"{", b"["):
        return raw
    try:
        return zlib.decompress(raw)
    except zlib.error as exc:
        raise DecodeError(f"bad compressed frame: {exc}") from exc


def decode_frame(raw: str | bytes) -> Frame:
    if isinstance(raw, (bytes, bytearray, memoryview)):
        raw = _inflate(bytes(raw))
    try:
        frame = _frame_decoder.decode(raw)
    except (msgspec.DecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"malformed frame: {exc}") from exc
    if frame.op is OpCode.DISPATCH and frame.t is None:
        raise DecodeError("dispatch frame without an event name")
    return frame


def decode_hello(frame: Frame) -> float:
    """Heartbeat interval from a hello frame, in seconds."""
    if frame.op is not OpCode.HELLO:
        raise DecodeError(f"expected hello, got {frame.op.name}")
    try:
        hello = msgspec.convert(frame.d, _Hello)
    except msgspec.ValidationError as exc:
        raise DecodeError(f"malformed hello: {exc}") from exc
    if hello.heartbeat_interval <= 0:
        raise DecodeError("hello carried a non-positive heartbeat interval")
    return hello.heartbeat_interval / 1000.0


def command_payload(command: GatewayCommand) -> dict[str, Any]:
    match command:
        case Identify():
            data: dict[str, Any] = {
                "token": command.token,
                "capabilities": 0,
                "properties": msgspec.to_builtins(command.properties),
                "intents": int(command.intents),
                "compress": False,
            }
            if command.presence is not None:
                data["presence"] = {
                    "status": str(command.presence),
                    "since": 0,
                    "activities": [],
                    "afk": False,
                }
            return {"op": int(OpCode.IDENTIFY), "d": data}
        case Resume():
            return {
                "op": int(OpCode.RESUME),
                "d": {
                    "token": command.token,
                    "session_id": command.session_id,
                    "seq": command.sequence,
                },
            }
        case Heartbeat():
            return {"op": int(OpCode.HEARTBEAT), "d": command.sequence}
        case UpdatePresence():
            return {
                "op": int(OpCode.PRESENCE_UPDATE),
                "d": {
                    "since": command.since,
                    "activities": [],
                    "status": str(command.status),
                    "afk": command.afk,
                },
            }
        case TypingStart():
            raise ValueError("typing start is sent over REST, not the gateway")
    raise TypeError(f"unsupported command {command!r}")


def encode_command(command: GatewayCommand) -> str:
    return _encoder.encode(command_payload(command)).decode("utf-8")


def gateway_url(
    base: str = DEFAULT_GATEWAY_URL,
    *,
    version: int = API_VERSION,
    encoding: str = "json",
) -> str:
    parts = urlsplit(base)
    query = dict(parse_qsl(parts.query))
    query["v"] = str(version)
    query["encoding"] = encoding
    path = parts.path or "/"
    return urlunsplit((parts.scheme, parts.netloc, path, urlencode(query), ""))
