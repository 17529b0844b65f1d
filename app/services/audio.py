# app/services/audio.py
"""
Audio plumbing for the live assistant.

  - encode_pcm16 / decode_audio: wire format (mono little-endian int16 PCM)
  - PlaybackTimeline: back-to-back scheduling of streamed reply frames
  - SoundDeviceMicrophone / SoundDeviceSpeaker: PortAudio devices via sounddevice

sounddevice is imported when a device is opened so the rest of the app
(and the tests) never need PortAudio present.
"""

import asyncio
import base64
import threading
from typing import Callable, Optional, Protocol, Union

import numpy as np

from app.schemas.voice import MicrophoneUnavailable
from app.utils.logger import get_logger

logger = get_logger(__name__)

BYTES_PER_SAMPLE = 2


def encode_pcm16(samples: np.ndarray) -> bytes:
    """Float samples in [-1, 1] → int16 PCM bytes."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767).astype("<i2").tobytes()


def decode_audio(data: Union[bytes, str]) -> bytes:
    """Base64 text → raw PCM bytes. Raw bytes pass through unchanged."""
    if isinstance(data, str):
        return base64.b64decode(data)
    return bytes(data)


def pcm_duration(pcm: bytes, sample_rate: int) -> float:
    return len(pcm) / (BYTES_PER_SAMPLE * sample_rate)


# ── Playback ──────────────────────────────────────────────────────────────

class AudioSource(Protocol):
    def stop(self) -> None: ...


class AudioOutput(Protocol):
    def now(self) -> float: ...
    def play(self, pcm: bytes, at: float, on_end: Optional[Callable] = None) -> AudioSource: ...


class PlaybackTimeline:
    """
    Schedules reply frames on the output clock so consecutive frames play
    back-to-back: next_start = max(next_start, now); play; next_start += duration.
    """

    def __init__(self, output: AudioOutput, sample_rate: int):
        self.output = output
        self.sample_rate = sample_rate
        self.next_start = 0.0
        self.sources: set = set()

    def schedule(self, pcm: bytes) -> float:
        """Queue one frame. Returns the output time it will start at."""
        start = max(self.next_start, self.output.now())
        source = self.output.play(pcm, start, on_end=self.sources.discard)
        self.sources.add(source)
        self.next_start = start + pcm_duration(pcm, self.sample_rate)
        return start

    def clear(self):
        """Stop and drop every scheduled source; the cursor restarts at now."""
        for source in list(self.sources):
            source.stop()
        self.sources.clear()
        self.next_start = self.output.now()


# ── Devices ───────────────────────────────────────────────────────────────

class ScheduledSource:
    def __init__(self, samples: np.ndarray, start_time: float, on_end: Optional[Callable] = None):
        self.samples = samples
        self.start_time = start_time
        self.on_end = on_end
        self.position = 0        # samples already mixed
        self.stopped = False

    def stop(self):
        self.stopped = True


class SoundDeviceSpeaker:
    """
    Mixes scheduled int16 sources into one output stream, keyed on the DAC clock.

    now() and the mixer share one time basis (DAC time relative to stream start).
    A source whose start time has already passed plays from its first sample at
    the next block instead of being clipped.
    """

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self._stream = None
        self._epoch = 0.0
        self._sources: list[ScheduledSource] = []
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _ensure_stream(self):
        if self._stream is None:
            import sounddevice as sd

            stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="int16",
                callback=self._callback,
            )
            # Timeline times are relative to stream start
            self._epoch = stream.time
            stream.start()
            self._stream = stream
        return self._stream

    def now(self) -> float:
        if self._stream is None:
            return 0.0
        return self._stream.time + self._stream.latency - self._epoch

    def play(self, pcm: bytes, at: float, on_end: Optional[Callable] = None) -> ScheduledSource:
        self._ensure_stream()
        self._loop = asyncio.get_running_loop()
        source = ScheduledSource(np.frombuffer(pcm, dtype="<i2"), at, on_end)
        with self._lock:
            self._sources.append(source)
        return source

    def _callback(self, outdata, frames, time_info, status):
        if status:
            logger.debug(f"Output stream status: {status}")
        mix = np.zeros(frames, dtype=np.int32)
        block_start = time_info.outputBufferDacTime - self._epoch
        finished = []

        with self._lock:
            for source in self._sources:
                if source.stopped:
                    finished.append(source)
                    continue
                offset = int(round((source.start_time - block_start) * self.sample_rate))
                if source.position > 0 or offset < 0:
                    offset = 0
                remaining = source.samples[source.position:]
                count = min(frames - offset, len(remaining))
                if count > 0:
                    mix[offset:offset + count] += remaining[:count]
                    source.position += count
                if source.position >= len(source.samples):
                    finished.append(source)
            for source in finished:
                self._sources.remove(source)

        outdata[:, 0] = np.clip(mix, -32768, 32767).astype(np.int16)

        for source in finished:
            if source.on_end and self._loop and not self._loop.is_closed():
                self._loop.call_soon_threadsafe(source.on_end, source)

    def close(self):
        with self._lock:
            self._sources.clear()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None


class SoundDeviceMicrophone:
    """Exclusive mono capture stream delivering fixed-size float32 frames."""

    def __init__(self, sample_rate: int, frame_samples: int):
        self.sample_rate = sample_rate
        self.frame_samples = frame_samples
        self._stream = None

    def open(self, on_frame: Callable[[np.ndarray], None]):
        if self._stream is not None:
            raise MicrophoneUnavailable("Microphone is already in use")
        try:
            import sounddevice as sd
        except OSError as e:
            raise MicrophoneUnavailable(f"PortAudio library not found: {e}") from e

        def _callback(indata, frames, time_info, status):
            on_frame(indata[:, 0].copy())

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.frame_samples,
                callback=_callback,
            )
            stream.start()
        except sd.PortAudioError as e:
            raise MicrophoneUnavailable(str(e)) from e
        self._stream = stream
        logger.info(f"🎙  Microphone open ({self.sample_rate} Hz, {self.frame_samples}-sample frames)")

    def close(self):
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        stream.stop()
        stream.close()
        logger.info("🎙  Microphone released")
