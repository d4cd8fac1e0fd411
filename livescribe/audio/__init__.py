"""Audio pipeline components for continuous speech capture and transcription."""

from .capture import AudioCapture
from .recorder import RecordingController
from .segmenter import SegmentAccumulator
from .sink import UpdateSink
from .transcriber import GroqTranscriptionClient, TranscriptionDispatcher
from .vad import SilenceDetector
from .wav import encode_wav

__all__ = [
    "AudioCapture",
    "RecordingController",
    "SegmentAccumulator",
    "UpdateSink",
    "GroqTranscriptionClient",
    "TranscriptionDispatcher",
    "SilenceDetector",
    "encode_wav",
]
