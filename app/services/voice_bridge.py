# app/services/voice_bridge.py
"""
Voice Bridge — the live assistant session as one explicit state machine.

    idle → connecting → active → idle
             │                     ↑
             └── mic / session ────┘  (failure: back to idle, no retry)

While active:
  - microphone frames are encoded and sent fire-and-forget, one task per frame
  - inbound events (Transcription | ToolCall | AudioFrame | Interrupted | Closed | Error)
    all go through handle_event()
  - tool calls run against the same RecordStore / LookupEngine the HTTP routes use,
    so the access policy and persistence apply to voice writes too

An event that fails to handle is logged and dropped; a tool call that raises still
gets one response. stop() is the single teardown path for explicit stop, remote
close and remote error (stream faults from session.events()).
It runs once per session; later calls are no-ops.
"""

import asyncio
import json
from collections import deque
from typing import Callable, Optional

import numpy as np
from pydantic import ValidationError

from app.schemas.session import Role
from app.schemas.vehicle import VehiclePayload
from app.schemas.voice import (
    AudioFrame, BridgeState, BridgeStatus, Closed, Error, Interrupted, ToolCall, Transcription, VoiceEvent,
)
from app.services.audio import AudioOutput, PlaybackTimeline, decode_audio, encode_pcm16
from app.services.lookup import LookupEngine
from app.services.record_store import RecordStore
from app.utils.logger import get_logger

logger = get_logger(__name__)

NOT_FOUND = "Vehicle not found"
REGISTERED = "Vehicle registered successfully"
DENIED = "Permission denied"
NOT_EXECUTED = "Not executed"
TOOL_FAILED = "Tool failed"


class VoiceBridge:
    def __init__(
        self,
        store: RecordStore,
        lookup: LookupEngine,
        role_provider: Callable[[], Optional[Role]],
        connector,
        microphone,
        speaker: AudioOutput,
        output_sample_rate: int = 24000,
        transcript_lines: int = 5,
    ):
        self.store = store
        self.lookup = lookup
        self.role_provider = role_provider
        self.connector = connector
        self.microphone = microphone
        self.playback = PlaybackTimeline(speaker, output_sample_rate)
        self.transcript: deque[str] = deque(maxlen=transcript_lines)

        self.state = BridgeState.IDLE
        self._session = None
        self._receive_task: Optional[asyncio.Task] = None
        self._send_tasks: set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._live = False       # True from start() until the one teardown of that run

    def status(self) -> BridgeStatus:
        return BridgeStatus(state=self.state, transcript=list(self.transcript))

    # ── Lifecycle ─────────────────────────────────────────────────────────
    async def start(self) -> BridgeState:
        if self.state != BridgeState.IDLE:
            return self.state

        self.state = BridgeState.CONNECTING
        self._live = True
        self._loop = asyncio.get_running_loop()
        self.transcript.clear()
        logger.info("🎧 Live assistant connecting...")

        try:
            self.microphone.open(self._on_microphone_frame)
            session = await self.connector.connect()
        except Exception as e:
            logger.error(f"❌ Live assistant failed to start: {e}", exc_info=True)
            await self.stop()
            return self.state

        if self.state != BridgeState.CONNECTING:
            # stop() ran while the session was opening
            await self._close_session(session)
            return self.state

        self._session = session
        self.state = BridgeState.ACTIVE
        self._receive_task = asyncio.create_task(self._receive_loop(session), name="voice-receive")
        logger.info("✅ Live assistant active")
        return self.state

    async def stop(self):
        if not self._live:
            return
        self._live = False
        self.state = BridgeState.IDLE

        session, self._session = self._session, None
        receive_task, self._receive_task = self._receive_task, None

        for task in list(self._send_tasks):
            task.cancel()
        self._send_tasks.clear()
        self.microphone.close()
        self.playback.clear()

        if receive_task is not None and receive_task is not asyncio.current_task():
            receive_task.cancel()
            await asyncio.gather(receive_task, return_exceptions=True)
        if session is not None:
            await self._close_session(session)
        logger.info("🛑 Live assistant stopped")

    async def shutdown(self):
        """App exit: end any session and release the output device."""
        await self.stop()
        self.playback.output.close()

    async def _close_session(self, session):
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"Live session did not close cleanly: {e}")

    # ── Outbound ──────────────────────────────────────────────────────────
    def _on_microphone_frame(self, samples: np.ndarray):
        """Runs on the audio thread; hands the frame to the event loop."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.send_frame, samples)

    def send_frame(self, samples: np.ndarray):
        if self.state != BridgeState.ACTIVE or self._session is None:
            return  # captured after stop: dropped
        self._fire(self._session.send_audio(encode_pcm16(samples)))

    def _fire(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._send_tasks.add(task)
        task.add_done_callback(self._send_done)

    def _send_done(self, task: asyncio.Task):
        self._send_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Live send failed (not retried): {exc}")

    # ── Inbound ───────────────────────────────────────────────────────────
    async def _receive_loop(self, session):
        try:
            async for event in session.events():
                try:
                    await self.handle_event(event)
                except Exception as e:
                    # One bad event is dropped; only stream faults end the session
                    logger.error(f"❌ Failed to handle {type(event).__name__}: {e}", exc_info=True)
                if self.state != BridgeState.ACTIVE:
                    return
            await self.handle_event(Closed(reason="stream ended"))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self.handle_event(Error(message=str(e)))

    async def handle_event(self, event: VoiceEvent):
        if isinstance(event, Transcription):
            self.transcript.append(f"{event.speaker}: {event.text}")
        elif isinstance(event, ToolCall):
            self._answer_tool_call(event)
        elif isinstance(event, AudioFrame):
            self.playback.schedule(decode_audio(event.data))
        elif isinstance(event, Interrupted):
            logger.debug("Assistant interrupted — dropping queued reply audio")
            self.playback.clear()
        elif isinstance(event, Closed):
            logger.info(f"Live session closed by remote ({event.reason or 'no reason'})")
            await self.stop()
        elif isinstance(event, Error):
            logger.error(f"Live session error: {event.message}")
            await self.stop()
        else:
            logger.warning(f"Ignoring unknown voice event {event!r}")

    def _answer_tool_call(self, call: ToolCall):
        try:
            result = self.run_tool(call.name, call.args)
        except Exception as e:
            logger.error(f"❌ Tool {call.name} (id={call.id}) failed: {e}", exc_info=True)
            result = f"{TOOL_FAILED}: {e}"
        logger.info(f"🛠  Tool {call.name} (id={call.id}) → {result[:80]}")
        if self._session is None:
            logger.warning(f"No live session to answer tool call {call.id}")
            return
        self._fire(self._session.send_tool_response(call.id, call.name, result))

    def run_tool(self, name: str, args: dict) -> str:
        if name == "searchVehicle":
            record = self.lookup.find(str(args.get("plate", "")))
            return json.dumps(record.to_dict()) if record else NOT_FOUND

        if name == "addVehicle":
            try:
                payload = VehiclePayload.model_validate(args)
            except ValidationError as e:
                fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
                return f"Invalid vehicle data: {fields}"
            record = self.store.create(payload, self.role_provider())
            return REGISTERED if record else DENIED

        return NOT_EXECUTED
