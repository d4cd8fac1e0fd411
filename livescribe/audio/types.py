"""Data types shared across the audio pipeline."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class DeviceUnavailable(Exception):
    """The input device cannot be opened with the requested format."""


class CaptureError(Exception):
    """The input device failed in the middle of a session."""


class Classification(Enum):
    SILENT = "silent"
    VOICED = "voiced"


class RecorderState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class AudioFormatSpec:
    """PCM format of a session. Only 16-bit mono is supported."""
    sample_rate: int = 16000
    bits_per_sample: int = 16
    channels: int = 1

    def __post_init__(self):
        if self.bits_per_sample != 16:
            raise ValueError(f"Unsupported bits per sample: {self.bits_per_sample}")
        if self.channels != 1:
            raise ValueError(f"Unsupported channel count: {self.channels}")
        if self.sample_rate <= 0:
            raise ValueError(f"Invalid sample rate: {self.sample_rate}")

    @property
    def sample_width(self) -> int:
        return self.bits_per_sample // 8

    @property
    def block_align(self) -> int:
        return self.channels * self.bits_per_sample // 8

    @property
    def byte_rate(self) -> int:
        return self.sample_rate * self.channels * self.bits_per_sample // 8

    def bytes_to_ms(self, num_bytes: int) -> int:
        return int(num_bytes * 1000 / self.byte_rate)


@dataclass(frozen=True)
class AudioChunk:
    """Raw PCM from one device read."""
    data: bytes
    timestamp: float  # monotonic seconds


@dataclass(frozen=True)
class SpeechSegment:
    """A closed utterance, ready for transcription."""
    audio: bytes
    start_time: float
    end_time: float
    duration_ms: int
    captured_at: datetime = field(default_factory=datetime.now)


@dataclass
class Segment:
    """An open utterance being accumulated on the capture thread."""
    started_at: float
    last_voiced_at: float
    buffer: bytearray = field(default_factory=bytearray)
    captured_at: datetime = field(default_factory=datetime.now)

    def append(self, chunk: AudioChunk) -> None:
        self.buffer.extend(chunk.data)
        self.last_voiced_at = chunk.timestamp

    def close(self, audio_format: AudioFormatSpec) -> SpeechSegment:
        return SpeechSegment(
            audio=bytes(self.buffer),
            start_time=self.started_at,
            end_time=self.last_voiced_at,
            duration_ms=audio_format.bytes_to_ms(len(self.buffer)),
            captured_at=self.captured_at,
        )

    def __len__(self) -> int:
        return len(self.buffer)


class SessionBuffer:
    """Every captured byte of a session, voiced or not."""

    def __init__(self):
        self._buffer = bytearray()
        self._finalized = False
        self._lock = threading.Lock()

    def append(self, data: bytes) -> None:
        with self._lock:
            if self._finalized:
                raise RuntimeError("Session buffer already finalized")
            self._buffer.extend(data)

    def finalize(self) -> bytes:
        with self._lock:
            self._finalized = True
            return bytes(self._buffer)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def __len__(self) -> int:
        return len(self._buffer)
