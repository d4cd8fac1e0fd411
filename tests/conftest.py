"""Pytest configuration and shared fixtures."""

import tempfile
import time
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest


CHUNK_BYTES = 1024


def constant_pcm(value: int, num_samples: int = CHUNK_BYTES // 2) -> bytes:
    """PCM whose every sample equals value, so its dB level is exact."""
    return np.full(num_samples, value, dtype="<i2").tobytes()


# ==================== Path Fixtures ====================

@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir):
    """Create a temporary config file."""
    config_path = temp_dir / "settings.yaml"
    config_content = """
audio:
  device: "default"
  sample_rate: 16000
  channels: 1
  chunk_bytes: 1024
  silence_threshold_db: -20.0
  hangover_ms: 1500

transcription:
  api_url: "http://localhost:9999/v1"
  model: "whisper-large-v3"
  max_concurrent: 2

recording:
  output_dir: "{output_dir}"
  save_session: true

logging:
  level: "DEBUG"
  file: null
""".format(output_dir=str(temp_dir / "recordings"))

    config_path.write_text(config_content)
    return config_path


# ==================== Audio Fixtures ====================

@pytest.fixture
def voiced_chunk_bytes():
    """A chunk at about -6 dB, voiced at the default -7.5 dB threshold."""
    return constant_pcm(16384)


@pytest.fixture
def silent_chunk_bytes():
    """A chunk of digital silence."""
    return bytes(CHUNK_BYTES)


@pytest.fixture
def noise_chunk_bytes():
    """A chunk of loud random noise."""
    rng = np.random.default_rng(1234)
    return rng.integers(-30000, 30000, CHUNK_BYTES // 2, dtype=np.int16).astype("<i2").tobytes()


@pytest.fixture
def mock_audio_config():
    """Create a test audio config."""
    from livescribe.config import AudioConfig
    return AudioConfig(
        device="default",
        sample_rate=16000,
        channels=1,
        chunk_bytes=CHUNK_BYTES,
        silence_threshold_db=-7.5,
        hangover_ms=1500,
    )


@pytest.fixture
def mock_config(temp_dir):
    """Create a full config writing into the temp dir."""
    from livescribe.config import Config, LoggingConfig, RecordingConfig
    return Config(
        recording=RecordingConfig(output_dir=str(temp_dir / "recordings")),
        logging=LoggingConfig(level="DEBUG", file=None),
    )


@pytest.fixture
def settings():
    """Session settings at their defaults."""
    from livescribe.config import SessionSettings
    return SessionSettings()


@pytest.fixture
def speech_segment(voiced_chunk_bytes):
    """A closed two-chunk segment."""
    from livescribe.audio.types import SpeechSegment
    return SpeechSegment(
        audio=voiced_chunk_bytes * 2,
        start_time=0.0,
        end_time=0.032,
        duration_ms=64,
        captured_at=datetime(2024, 1, 15, 10, 30, 0),
    )


# ==================== Device Fixtures ====================

class FakeStream:
    """Stands in for sounddevice.RawInputStream in blocking mode."""

    def __init__(self, delay: float = 0.002):
        self.chunks: list[bytes] = []
        self.delay = delay
        self.reads = 0
        self.on_read = None
        self.error = None
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self):
        self.started = True

    def read(self, frames):
        self.reads += 1
        if self.on_read is not None:
            self.on_read(self.reads)
        time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.chunks:
            return self.chunks.pop(0), False
        return bytes(frames * 2), False

    def stop(self):
        self.stopped = True

    def close(self):
        self.closed = True


@pytest.fixture
def fake_stream():
    """Patch the device layer with a FakeStream."""
    stream = FakeStream()
    with patch("livescribe.audio.capture.sd.check_input_settings") as mock_check, \
            patch("livescribe.audio.capture.sd.RawInputStream", return_value=stream) as mock_cls:
        stream.check_input_settings = mock_check
        stream.factory = mock_cls
        yield stream


@pytest.fixture
def wait_for():
    """Poll a predicate until it holds or the timeout expires."""
    def _wait(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()
    return _wait


# ==================== Service Fixtures ====================

class FakeTranscriptionService:
    """Async transcription stand-in recording every call."""

    def __init__(self, text: str = "hello world", delay: float = 0.0):
        self.text = text
        self.delay = delay
        self.calls: list[dict] = []
        self.fail_on: set[int] = set()
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def transcribe(self, audio, model, mime_type, filename):
        import asyncio

        index = len(self.calls)
        self.calls.append({
            "audio": audio,
            "model": model,
            "mime_type": mime_type,
            "filename": filename,
        })
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if index in self.fail_on:
                raise RuntimeError(f"service error on call {index}")
            return f"{self.text} {index}"
        finally:
            self.active -= 1

    async def aclose(self):
        self.closed = True


@pytest.fixture
def fake_service():
    return FakeTranscriptionService()


@pytest.fixture
def mock_dispatcher():
    """A dispatcher double that records dispatched segments."""
    dispatcher = MagicMock()
    dispatcher.dispatched = []
    dispatcher.dispatch.side_effect = dispatcher.dispatched.append
    return dispatcher


@pytest.fixture
def read_wav():
    """Split a WAV container into its format and PCM payload."""
    from livescribe.audio.wav import WAV_HEADER_SIZE, read_wav_header

    def _read(container: bytes):
        audio_format, data_length = read_wav_header(container)
        payload = container[WAV_HEADER_SIZE:WAV_HEADER_SIZE + data_length]
        assert len(payload) == data_length
        return audio_format, payload
    return _read
