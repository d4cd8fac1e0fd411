"""Utterance segmentation with a fixed silence hangover."""

import logging
from enum import Enum
from typing import Callable, Optional

from .types import AudioChunk, AudioFormatSpec, Classification, Segment, SpeechSegment

logger = logging.getLogger(__name__)

DEFAULT_HANGOVER_MS = 1500


class AccumulatorState(Enum):
    NO_ACTIVE_SEGMENT = "no_active_segment"
    ACCUMULATING_SEGMENT = "accumulating_segment"


class SegmentAccumulator:
    """
    Groups voiced chunks into utterances.

    A segment opens on the first voiced chunk and closes once silence has
    lasted strictly longer than the hangover since the last voiced chunk.
    Silent chunks are never added to a segment. Only the capture thread calls
    process(), so no locking is needed.
    """

    def __init__(
        self,
        audio_format: Optional[AudioFormatSpec] = None,
        hangover_ms: int = DEFAULT_HANGOVER_MS,
    ):
        self.audio_format = audio_format or AudioFormatSpec()
        self.hangover_ms = hangover_ms
        self._segment: Optional[Segment] = None
        self._on_segment: list[Callable[[SpeechSegment], None]] = []
        self._closed_count = 0

    def on_segment(self, callback: Callable[[SpeechSegment], None]) -> None:
        """Register callback for closed segments."""
        self._on_segment.append(callback)

    def process(
        self, chunk: AudioChunk, classification: Classification
    ) -> Optional[SpeechSegment]:
        """
        Advance the state machine with one classified chunk.

        Returns:
            The closed segment if this chunk ended one, else None.
        """
        if classification is Classification.VOICED:
            if self._segment is None:
                self._segment = Segment(
                    started_at=chunk.timestamp,
                    last_voiced_at=chunk.timestamp,
                )
                logger.debug("Segment opened")
            self._segment.append(chunk)
            return None

        if self._segment is None:
            return None

        silence_ms = (chunk.timestamp - self._segment.last_voiced_at) * 1000.0
        if silence_ms <= self.hangover_ms:
            return None

        return self._close()

    def _close(self) -> SpeechSegment:
        segment = self._segment.close(self.audio_format)
        self._segment = None
        self._closed_count += 1

        logger.debug(f"Segment closed: {segment.duration_ms}ms, {len(segment.audio)} bytes")

        for callback in self._on_segment:
            try:
                callback(segment)
            except Exception as e:
                logger.error(f"Segment callback error: {e}")

        return segment

    def discard(self) -> int:
        """Drop the open segment without handing it off. Returns bytes dropped."""
        if self._segment is None:
            return 0
        dropped = len(self._segment)
        self._segment = None
        logger.info(f"Discarded open segment ({dropped} bytes)")
        return dropped

    @property
    def state(self) -> AccumulatorState:
        if self._segment is None:
            return AccumulatorState.NO_ACTIVE_SEGMENT
        return AccumulatorState.ACCUMULATING_SEGMENT

    @property
    def is_accumulating(self) -> bool:
        return self._segment is not None

    @property
    def pending_bytes(self) -> int:
        return len(self._segment) if self._segment is not None else 0

    @property
    def closed_count(self) -> int:
        return self._closed_count
