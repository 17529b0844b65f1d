# app/services/live_client.py
"""
Gemini Live connector (google-genai).

Opens one bidirectional audio session per assistant run, declares the two
registry tools, and translates raw LiveServerMessages into the typed voice
events the bridge dispatches on.
"""

import contextlib
from typing import AsyncIterator, Optional

from google import genai
from google.genai import types

from app.schemas.voice import (
    AudioFrame, Closed, Interrupted, SessionOpenFailed, ToolCall, Transcription, VoiceEvent,
)
from app.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_INSTRUCTION = (
    "You are the AutoTrack Pro Voice Assistant. You help users search for vehicles "
    "or register new ones. You are efficient, professional, and friendly. When searching, "
    "if a vehicle is found, describe its key details. If not found, offer to help them register it."
)

SEARCH_VEHICLE_TOOL = types.FunctionDeclaration(
    name="searchVehicle",
    description="Find a vehicle by its number plate.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "plate": types.Schema(type=types.Type.STRING, description="The number plate to search for."),
        },
        required=["plate"],
    ),
)

ADD_VEHICLE_TOOL = types.FunctionDeclaration(
    name="addVehicle",
    description="Register a new vehicle to the database.",
    parameters=types.Schema(
        type=types.Type.OBJECT,
        properties={
            "plate": types.Schema(type=types.Type.STRING),
            "vin": types.Schema(type=types.Type.STRING),
            "type": types.Schema(type=types.Type.STRING, enum=["Car", "Truck", "Bus", "Motorcycle"]),
            "model": types.Schema(type=types.Type.STRING),
            "year": types.Schema(type=types.Type.STRING),
            "color": types.Schema(type=types.Type.STRING),
            "owner": types.Schema(type=types.Type.STRING),
            "history": types.Schema(type=types.Type.STRING),
        },
        required=["plate", "vin", "type", "model", "year", "color", "owner"],
    ),
)


def build_live_config(voice: str) -> types.LiveConnectConfig:
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice)
            )
        ),
        output_audio_transcription=types.AudioTranscriptionConfig(),
        input_audio_transcription=types.AudioTranscriptionConfig(),
        system_instruction=SYSTEM_INSTRUCTION,
        tools=[types.Tool(function_declarations=[SEARCH_VEHICLE_TOOL, ADD_VEHICLE_TOOL])],
    )


def translate_message(message) -> list[VoiceEvent]:
    """One LiveServerMessage → zero or more typed events, in handling order."""
    events: list[VoiceEvent] = []
    content = message.server_content

    if content is not None:
        if content.output_transcription and content.output_transcription.text:
            events.append(Transcription(speaker="AI", text=content.output_transcription.text))
        if content.input_transcription and content.input_transcription.text:
            events.append(Transcription(speaker="You", text=content.input_transcription.text))

    if message.tool_call is not None:
        for call in message.tool_call.function_calls or []:
            events.append(ToolCall(id=call.id, name=call.name, args=dict(call.args or {})))

    if content is not None:
        if content.model_turn is not None:
            for part in content.model_turn.parts or []:
                if part.inline_data is not None and part.inline_data.data:
                    events.append(AudioFrame(data=part.inline_data.data))
        if content.interrupted:
            events.append(Interrupted())

    return events


class GeminiLiveSession:
    def __init__(self, session, exit_stack: contextlib.AsyncExitStack, input_sample_rate: int):
        self._session = session
        self._exit_stack = exit_stack
        self._mime_type = f"audio/pcm;rate={input_sample_rate}"

    async def send_audio(self, pcm: bytes):
        await self._session.send_realtime_input(audio=types.Blob(data=pcm, mime_type=self._mime_type))

    async def send_tool_response(self, call_id: str, name: str, result: str):
        await self._session.send_tool_response(
            function_responses=[types.FunctionResponse(id=call_id, name=name, response={"result": result})]
        )

    async def events(self) -> AsyncIterator[VoiceEvent]:
        # receive() stops at each turn_complete; an empty pass means the socket is gone
        while True:
            received = False
            async for message in self._session.receive():
                received = True
                for event in translate_message(message):
                    yield event
            if not received:
                yield Closed(reason="stream ended")
                return

    async def close(self):
        await self._exit_stack.aclose()


class GeminiLiveConnector:
    def __init__(self, api_key: Optional[str], model: str, voice: str, input_sample_rate: int):
        self.api_key = api_key
        self.model = model
        self.voice = voice
        self.input_sample_rate = input_sample_rate

    async def connect(self) -> GeminiLiveSession:
        if not self.api_key:
            raise SessionOpenFailed("GEMINI_API_KEY is not configured")

        client = genai.Client(api_key=self.api_key)
        exit_stack = contextlib.AsyncExitStack()
        try:
            session = await exit_stack.enter_async_context(
                client.aio.live.connect(model=self.model, config=build_live_config(self.voice))
            )
        except Exception as e:
            await exit_stack.aclose()
            raise SessionOpenFailed(f"Live session failed to open: {e}") from e

        logger.info(f"🔗 Live session open (model={self.model}, voice={self.voice})")
        return GeminiLiveSession(session, exit_stack, self.input_sample_rate)
