# tests/test_voice_bridge.py
"""Unit tests for the live assistant state machine, tool calls and playback timeline."""

import asyncio
import base64
import json
import numpy as np
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from app.schemas.session import Role
from app.schemas.voice import (
    AudioFrame, BridgeState, Closed, Error, Interrupted, MicrophoneUnavailable,
    SessionOpenFailed, ToolCall, Transcription,
)
from app.services.audio import (
    PlaybackTimeline, ScheduledSource, SoundDeviceSpeaker, decode_audio, encode_pcm16, pcm_duration,
)
from app.services.voice_bridge import DENIED, NOT_EXECUTED, NOT_FOUND, REGISTERED, TOOL_FAILED, VoiceBridge

RATE = 24000
FRAME_200MS = b"\x00\x00" * int(0.2 * RATE)


class FakeOutput:
    def __init__(self):
        self.clock = 0.0
        self.played = []
        self.closed = False

    def now(self):
        return self.clock

    def play(self, pcm, at, on_end=None):
        source = MagicMock()
        self.played.append((pcm, at, source))
        return source

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.send_audio = AsyncMock()
        self.send_tool_response = AsyncMock()
        self.close = AsyncMock()

    async def events(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield item


async def settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def output():
    return FakeOutput()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def role():
    return {"value": Role.ADMIN}


@pytest.fixture
def bridge(store, lookup, output, session, role):
    connector = MagicMock()
    connector.connect = AsyncMock(return_value=session)
    return VoiceBridge(
        store=store,
        lookup=lookup,
        role_provider=lambda: role["value"],
        connector=connector,
        microphone=MagicMock(),
        speaker=output,
        output_sample_rate=RATE,
        transcript_lines=5,
    )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_opens_mic_then_session(self, bridge):
        assert await bridge.start() == BridgeState.ACTIVE
        bridge.microphone.open.assert_called_once()
        bridge.connector.connect.assert_awaited_once()
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_microphone_denied_returns_to_idle(self, bridge):
        bridge.microphone.open.side_effect = MicrophoneUnavailable("permission denied")
        assert await bridge.start() == BridgeState.IDLE
        bridge.connector.connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_session_failure_releases_microphone(self, bridge):
        bridge.connector.connect.side_effect = SessionOpenFailed("no network")
        assert await bridge.start() == BridgeState.IDLE
        bridge.microphone.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_start_while_active_is_ignored(self, bridge):
        await bridge.start()
        assert await bridge.start() == BridgeState.ACTIVE
        bridge.connector.connect.assert_awaited_once()
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_teardown_is_idempotent(self, bridge, session, output):
        await bridge.start()
        await bridge.handle_event(AudioFrame(data=FRAME_200MS))
        await bridge.stop()
        await bridge.stop()

        assert bridge.state == BridgeState.IDLE
        session.close.assert_awaited_once()
        bridge.microphone.close.assert_called_once()
        assert bridge.playback.sources == set()
        output.played[0][2].stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_remote_close_stops_bridge(self, bridge, session):
        await bridge.start()
        session.queue.put_nowait(Closed(reason="server shutdown"))
        await settle()
        assert bridge.state == BridgeState.IDLE
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_remote_error_stops_bridge(self, bridge, session):
        await bridge.start()
        session.queue.put_nowait(RuntimeError("socket reset"))
        await settle()
        assert bridge.state == BridgeState.IDLE
        bridge.microphone.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_error_event_then_explicit_stop(self, bridge, session):
        await bridge.start()
        await bridge.handle_event(Error(message="quota"))
        await bridge.stop()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_can_restart_after_stop(self, bridge):
        await bridge.start()
        await bridge.stop()
        assert await bridge.start() == BridgeState.ACTIVE
        assert bridge.connector.connect.await_count == 2
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_stop_while_connecting_closes_late_session(self, bridge, session):
        release = asyncio.Event()

        async def slow_connect():
            await release.wait()
            return session

        bridge.connector.connect = AsyncMock(side_effect=slow_connect)
        starting = asyncio.create_task(bridge.start())
        await settle()
        assert bridge.state == BridgeState.CONNECTING

        await bridge.stop()
        release.set()

        assert await starting == BridgeState.IDLE
        assert bridge.state == BridgeState.IDLE
        session.close.assert_awaited_once()
        bridge.microphone.close.assert_called_once()
        assert bridge._receive_task is None

    @pytest.mark.asyncio
    async def test_stop_cancels_in_flight_sends(self, bridge, session):
        gate = asyncio.get_running_loop().create_future()

        async def blocked(*args):
            await gate

        session.send_audio.side_effect = blocked
        session.send_tool_response.side_effect = blocked
        await bridge.start()
        bridge.send_frame(np.zeros(4, dtype=np.float32))
        await bridge.handle_event(ToolCall(id="c7", name="searchVehicle", args={"plate": "KAB123X"}))
        await settle()
        in_flight = list(bridge._send_tasks)
        assert len(in_flight) == 2

        await bridge.stop()
        await settle()
        bridge.send_frame(np.zeros(4, dtype=np.float32))
        await settle()

        assert all(task.cancelled() for task in in_flight)
        assert bridge._send_tasks == set()
        assert session.send_audio.await_count == 1
        assert session.send_tool_response.await_count == 1


class TestMicrophoneFrames:
    @pytest.mark.asyncio
    async def test_frames_are_streamed_while_active(self, bridge, session):
        await bridge.start()
        bridge.send_frame(np.array([0.0, 0.5, -1.0, 2.0], dtype=np.float32))
        await settle()
        sent = session.send_audio.await_args.args[0]
        assert np.frombuffer(sent, dtype="<i2").tolist() == [0, 16383, -32767, 32767]
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_frame_after_stop_is_dropped(self, bridge, session):
        await bridge.start()
        await bridge.stop()
        bridge.send_frame(np.zeros(4, dtype=np.float32))
        await settle()
        session.send_audio.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_audio_thread_callback_is_marshalled_to_loop(self, bridge, session):
        await bridge.start()
        bridge._on_microphone_frame(np.zeros(8, dtype=np.float32))
        await settle()
        session.send_audio.assert_awaited_once()
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_failed_send_is_not_retried(self, bridge, session):
        session.send_audio.side_effect = ConnectionError("slow network")
        await bridge.start()
        bridge.send_frame(np.zeros(4, dtype=np.float32))
        await settle()
        assert session.send_audio.await_count == 1
        assert bridge.state == BridgeState.ACTIVE
        await bridge.stop()


class TestToolCalls:
    @pytest.mark.asyncio
    async def test_search_vehicle_sends_one_correlated_response(self, bridge, session):
        await bridge.start()
        await bridge.handle_event(ToolCall(id="c1", name="searchVehicle", args={"plate": "KAB123X"}))
        await settle()

        session.send_tool_response.assert_awaited_once()
        call_id, name, result = session.send_tool_response.await_args.args
        assert call_id == "c1"
        assert name == "searchVehicle"
        assert json.loads(result)["vin"] == "VIN00123998"
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_search_vehicle_not_found(self, bridge, session):
        await bridge.start()
        await bridge.handle_event(ToolCall(id="c2", name="searchVehicle", args={"plate": "ZZZ"}))
        await settle()
        assert session.send_tool_response.await_args.args == ("c2", "searchVehicle", NOT_FOUND)
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_add_vehicle_goes_through_store(self, bridge, session, store):
        await bridge.start()
        args = {"plate": "NEW001A", "vin": "X1", "type": "Car", "model": "Test",
                "year": 2024, "color": "Red", "owner": "Jane", "id": "forged"}
        await bridge.handle_event(ToolCall(id="c3", name="addVehicle", args=args))
        await settle()

        assert session.send_tool_response.await_args.args == ("c3", "addVehicle", REGISTERED)
        created = store.list()[-1]
        assert created.plate == "NEW001A"
        assert created.year == "2024"
        assert created.id != "forged"
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_add_vehicle_as_viewer_is_denied(self, bridge, session, store, role):
        role["value"] = Role.VIEWER
        await bridge.start()
        args = {"plate": "NEW001A", "vin": "X1", "type": "Car", "model": "Test",
                "year": "2024", "color": "Red", "owner": "Jane"}
        await bridge.handle_event(ToolCall(id="c4", name="addVehicle", args=args))
        await settle()
        assert session.send_tool_response.await_args.args[2] == DENIED
        assert len(store.list()) == 2
        await bridge.stop()

    def test_add_vehicle_with_bad_type(self, bridge, store):
        result = bridge.run_tool("addVehicle", {"plate": "P", "vin": "V", "type": "Tank", "model": "M",
                                                "year": "1", "color": "C", "owner": "O"})
        assert result.startswith("Invalid vehicle data")
        assert "type" in result
        assert len(store.list()) == 2

    def test_unknown_tool(self, bridge):
        assert bridge.run_tool("deleteEverything", {}) == NOT_EXECUTED

    @pytest.mark.asyncio
    async def test_failing_tool_still_answers_once(self, bridge, session):
        bridge.store = MagicMock()
        bridge.store.create.side_effect = RuntimeError("disk full")
        await bridge.start()
        args = {"plate": "NEW001A", "vin": "X1", "type": "Car", "model": "Test",
                "year": "2024", "color": "Red", "owner": "Jane"}
        session.queue.put_nowait(ToolCall(id="c8", name="addVehicle", args=args))
        await settle()

        session.send_tool_response.assert_awaited_once()
        call_id, name, result = session.send_tool_response.await_args.args
        assert (call_id, name) == ("c8", "addVehicle")
        assert result.startswith(TOOL_FAILED)
        assert "disk full" in result
        assert bridge.state == BridgeState.ACTIVE
        await bridge.stop()


class TestTranscriptAndAudio:
    @pytest.mark.asyncio
    async def test_transcript_keeps_last_lines(self, bridge):
        await bridge.start()
        for i in range(7):
            await bridge.handle_event(Transcription(speaker="You" if i % 2 else "AI", text=f"line {i}"))
        assert bridge.status().transcript == [
            "AI: line 2", "You: line 3", "AI: line 4", "You: line 5", "AI: line 6",
        ]
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_base64_audio_is_decoded_and_scheduled(self, bridge, output):
        await bridge.start()
        await bridge.handle_event(AudioFrame(data=base64.b64encode(FRAME_200MS).decode()))
        await bridge.handle_event(AudioFrame(data=FRAME_200MS))
        assert [at for _, at, _ in output.played] == [0.0, pytest.approx(0.2)]
        assert output.played[0][0] == FRAME_200MS
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_interruption_discards_queued_audio(self, bridge, output):
        await bridge.start()
        await bridge.handle_event(AudioFrame(data=FRAME_200MS))
        await bridge.handle_event(AudioFrame(data=FRAME_200MS))
        output.clock = 0.05
        await bridge.handle_event(Interrupted())

        for _, _, source in output.played:
            source.stop.assert_called_once()
        assert bridge.playback.next_start == 0.05
        await bridge.stop()

    @pytest.mark.asyncio
    async def test_malformed_audio_frame_keeps_session_alive(self, bridge, session, output):
        await bridge.start()
        session.queue.put_nowait(AudioFrame(data="!!notbase64!"))
        session.queue.put_nowait(AudioFrame(data=FRAME_200MS))
        await settle()

        assert bridge.state == BridgeState.ACTIVE
        assert len(output.played) == 1
        session.close.assert_not_awaited()
        await bridge.stop()


class TestPlaybackTimeline:
    def test_frames_play_back_to_back(self, output):
        timeline = PlaybackTimeline(output, RATE)
        assert timeline.schedule(FRAME_200MS) == 0.0
        assert timeline.schedule(FRAME_200MS) == pytest.approx(0.2)
        assert timeline.next_start == pytest.approx(0.4)

    def test_cursor_catches_up_with_clock(self, output):
        timeline = PlaybackTimeline(output, RATE)
        timeline.schedule(FRAME_200MS)
        output.clock = 1.0
        assert timeline.schedule(FRAME_200MS) == 1.0

    def test_interrupt_between_frames_reschedules_at_now(self, output):
        timeline = PlaybackTimeline(output, RATE)
        timeline.schedule(FRAME_200MS)
        output.clock = 0.05
        timeline.clear()
        assert timeline.schedule(FRAME_200MS) == 0.05
        output.played[0][2].stop.assert_called_once()

    def test_finished_source_leaves_the_set(self):
        ended = {}

        class EndingOutput(FakeOutput):
            def play(self, pcm, at, on_end=None):
                source = super().play(pcm, at, on_end)
                ended["cb"] = lambda: on_end(source)
                return source

        timeline = PlaybackTimeline(EndingOutput(), RATE)
        timeline.schedule(FRAME_200MS)
        ended["cb"]()
        assert timeline.sources == set()


class TestCodec:
    def test_duration(self):
        assert pcm_duration(FRAME_200MS, RATE) == pytest.approx(0.2)

    def test_decode_passes_bytes_through(self):
        assert decode_audio(b"\x01\x02") == b"\x01\x02"

    def test_encode_clips_out_of_range(self):
        pcm = encode_pcm16(np.array([-3.0, 3.0]))
        assert np.frombuffer(pcm, dtype="<i2").tolist() == [-32767, 32767]


class TestSoundDeviceSpeaker:
    BLOCK = 1024

    def speaker(self, time=0.0, latency=0.05):
        speaker = SoundDeviceSpeaker(RATE)
        speaker._stream = MagicMock(time=time, latency=latency)
        return speaker

    def render(self, speaker, dac_time):
        outdata = np.zeros((self.BLOCK, 1), dtype=np.int16)
        speaker._callback(outdata, self.BLOCK, SimpleNamespace(outputBufferDacTime=dac_time), None)
        return outdata[:, 0]

    def test_now_is_on_the_dac_clock(self):
        assert SoundDeviceSpeaker(RATE).now() == 0.0
        speaker = self.speaker(time=2.0, latency=0.05)
        speaker._epoch = 1.0
        assert speaker.now() == pytest.approx(1.05)

    def test_late_source_plays_from_first_sample(self):
        speaker = self.speaker()
        samples = np.arange(1, 4801, dtype=np.int16)
        speaker._sources.append(ScheduledSource(samples, 0.0))

        first = self.render(speaker, dac_time=0.05)
        assert first[0] == 1
        assert first[-1] == self.BLOCK

        second = self.render(speaker, dac_time=0.05 + self.BLOCK / RATE)
        assert second[0] == self.BLOCK + 1

    def test_future_source_starts_at_its_offset(self):
        speaker = self.speaker()
        speaker._sources.append(ScheduledSource(np.full(100, 7, dtype=np.int16), 0.01))

        block = self.render(speaker, dac_time=0.0)
        assert not block[:240].any()
        assert block[240] == 7
        assert not block[340:].any()

    @pytest.mark.asyncio
    async def test_finished_and_stopped_sources_are_released(self):
        speaker = self.speaker()
        ended = []
        speaker._loop = asyncio.get_running_loop()
        short = ScheduledSource(np.ones(10, dtype=np.int16), 0.0, on_end=ended.append)
        stopped = ScheduledSource(np.full(10, 5, dtype=np.int16), 0.0, on_end=ended.append)
        stopped.stop()
        speaker._sources.extend([short, stopped])

        block = self.render(speaker, dac_time=0.0)
        await settle()

        assert block[:10].tolist() == [1] * 10
        assert speaker._sources == []
        assert ended == [short, stopped]
