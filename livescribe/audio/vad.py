"""Amplitude-threshold silence detection."""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from .types import AudioChunk, Classification

if TYPE_CHECKING:
    from ..config import SessionSettings

logger = logging.getLogger(__name__)

FULL_SCALE = 32768.0
DB_FLOOR_EPSILON = 1e-12


@dataclass(frozen=True)
class ChunkLevel:
    """Loudness readout of a single chunk."""
    rms_db: float
    mean_abs_db: float
    threshold_db: float
    silent: bool
    num_samples: int


def pcm_to_samples(data: bytes) -> np.ndarray:
    """
    Interpret raw bytes as little-endian signed 16-bit samples.

    A trailing odd byte is dropped; fewer than two bytes yields no samples.
    """
    usable = len(data) - (len(data) % 2)
    if usable < 2:
        return np.zeros(0, dtype=np.int16)
    return np.frombuffer(data[:usable], dtype="<i2")


def calculate_rms(samples: np.ndarray) -> float:
    """RMS of samples normalized to [-1, 1)."""
    if len(samples) == 0:
        return 0.0
    normalized = samples.astype(np.float64) / FULL_SCALE
    return float(np.sqrt(np.mean(normalized * normalized)))


def rms_to_db(rms: float) -> float:
    return float(20.0 * np.log10(rms + DB_FLOOR_EPSILON))


def chunk_db(data: bytes) -> float:
    return rms_to_db(calculate_rms(pcm_to_samples(data)))


def classify(data: bytes, threshold_db: float) -> Classification:
    """Classify a PCM payload as silent or voiced against a dB threshold."""
    samples = pcm_to_samples(data)
    if len(samples) == 0:
        return Classification.SILENT
    rms = calculate_rms(samples)
    # Digital silence sits on the -240 dB floor; keep it silent even there
    if rms == 0.0:
        return Classification.SILENT
    return Classification.SILENT if rms_to_db(rms) < threshold_db else Classification.VOICED


def measure_level(data: bytes, threshold_db: float) -> ChunkLevel:
    """RMS and mean-amplitude loudness of a chunk, for status displays."""
    samples = pcm_to_samples(data)
    if len(samples) == 0:
        floor = rms_to_db(0.0)
        return ChunkLevel(floor, floor, threshold_db, True, 0)

    rms = calculate_rms(samples)
    db = rms_to_db(rms)
    mean_abs = float(np.mean(np.abs(samples.astype(np.float64)))) / FULL_SCALE
    return ChunkLevel(
        rms_db=db,
        mean_abs_db=rms_to_db(mean_abs),
        threshold_db=threshold_db,
        silent=rms == 0.0 or db < threshold_db,
        num_samples=len(samples),
    )


class SilenceDetector:
    """Classifies chunks against the session's current silence threshold."""

    def __init__(self, settings: "SessionSettings"):
        self.settings = settings

    @property
    def threshold_db(self) -> float:
        return self.settings.silence_threshold_db

    def process(self, chunk: AudioChunk) -> Classification:
        """Classify a chunk, reading the threshold afresh for every call."""
        return classify(chunk.data, self.settings.silence_threshold_db)
