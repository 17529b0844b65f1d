# app/schemas/voice.py
"""
Live assistant contract: inbound session events, bridge status, and failure types.
Every message from the remote session is translated into exactly one of these
event types before the bridge sees it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union
from pydantic import BaseModel


class BridgeState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"


@dataclass
class Transcription:
    speaker: str             # "You" (input) | "AI" (output)
    text: str


@dataclass
class ToolCall:
    id: str                  # correlation id, echoed on the response
    name: str
    args: dict = field(default_factory=dict)


@dataclass
class AudioFrame:
    data: Union[bytes, str]  # PCM16 bytes, or base64 text of the same


@dataclass
class Interrupted:
    pass


@dataclass
class Closed:
    reason: Optional[str] = None


@dataclass
class Error:
    message: str


VoiceEvent = Union[Transcription, ToolCall, AudioFrame, Interrupted, Closed, Error]


class BridgeStatus(BaseModel):
    state: BridgeState
    transcript: list[str]


class VoiceBridgeError(Exception):
    """Base class for failures while bringing the live assistant up."""


class MicrophoneUnavailable(VoiceBridgeError):
    pass


class SessionOpenFailed(VoiceBridgeError):
    pass
