import json
import math
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class MalformedMessage(Exception):
    pass


class UnknownMessageType(Exception):
    def __init__(self, tag: Any):
        super().__init__(f"Unknown message type: {tag}")
        self.tag = tag


# WebRTC handshake, relayed between host and viewers

class OfferMessage(BaseModel):
    type: Literal["offer"]
    target: Optional[str] = None
    sdp: Any


class AnswerMessage(BaseModel):
    type: Literal["answer"]
    target: Optional[str] = None
    sdp: Any


class IceCandidateMessage(BaseModel):
    type: Literal["ice-candidate"]
    target: Optional[str] = None
    candidate: Any


# Screen sharing control

class ScreenRequestMessage(BaseModel):
    type: Literal["screen-request"]


class ScreenSharingStartedMessage(BaseModel):
    type: Literal["screen-sharing-started"]


class ScreenSharingStoppedMessage(BaseModel):
    type: Literal["screen-sharing-stopped"]


# Presence plane, broadcast to the rest of the room as received.
# Typed fields only validate, so they are strict: "42" is not a time.

class BroadcastMessage(BaseModel):
    model_config = ConfigDict(extra="allow", strict=True)


class ChatMessage(BroadcastMessage):
    type: Literal["chat"]
    message: str


class PlayMessage(BroadcastMessage):
    type: Literal["play"]
    time: Optional[float] = None


class PauseMessage(BroadcastMessage):
    type: Literal["pause"]
    time: Optional[float] = None


class SeekMessage(BroadcastMessage):
    type: Literal["seek"]
    time: float


class VideoChangeMessage(BroadcastMessage):
    type: Literal["video-change"]
    url: str


# Queries answered by the server itself

class PingMessage(BaseModel):
    type: Literal["ping"]


class GetRoomInfoMessage(BaseModel):
    type: Literal["get-room-info"]


InboundMessage = Annotated[
    Union[
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
        ScreenRequestMessage,
        ScreenSharingStartedMessage,
        ScreenSharingStoppedMessage,
        ChatMessage,
        PlayMessage,
        PauseMessage,
        SeekMessage,
        VideoChangeMessage,
        PingMessage,
        GetRoomInfoMessage,
    ],
    Field(discriminator="type"),
]

inbound_adapter = TypeAdapter(InboundMessage)


def _reject_constant(token: str):
    raise MalformedMessage(f"Non-finite number {token}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise MalformedMessage(f"Number out of range: {text}")
    return value


def load_frame(raw: Union[str, bytes]) -> Any:
    """Parse one frame as standard JSON.

    NaN, Infinity and floats that overflow to infinity are rejected, since
    peers could not parse them once forwarded.
    """
    try:
        return json.loads(raw, parse_float=_finite_float, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from e


def validate_message(payload: Any):
    """Validate a parsed frame against the routed message types.

    Raises UnknownMessageType when ``type`` is a string we do not route and
    MalformedMessage for anything else that fails to validate, including a
    missing or non-string ``type``.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise MalformedMessage("Message must be an object with a string type")
    try:
        return inbound_adapter.validate_python(payload)
    except ValidationError as e:
        for error in e.errors():
            if error["type"] == "union_tag_invalid":
                raise UnknownMessageType(payload["type"]) from e
        raise MalformedMessage(str(e)) from e


def decode_message(raw: Union[str, bytes]):
    return validate_message(load_frame(raw))
