"""Recording session state machine."""

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from ..config import Config, SessionSettings
from .capture import AudioCapture
from .segmenter import SegmentAccumulator
from .sink import UpdateSink
from .transcriber import TranscriptionDispatcher
from .types import (
    AudioChunk,
    AudioFormatSpec,
    CaptureError,
    DeviceUnavailable,
    RecorderState,
    SessionBuffer,
    SpeechSegment,
)
from .vad import SilenceDetector

if TYPE_CHECKING:
    from ..recordings.storage import RecordingStorage

logger = logging.getLogger(__name__)


class RecordingController:
    """
    One recording session: Idle -> Recording <-> Paused -> Stopped.

    Requests that do not fit the current state are ignored and return False,
    so redundant button presses or API calls are harmless. Stopped is final;
    a new session needs a new controller.

    Per chunk, on the capture thread: update sink, session buffer, silence
    detector, segment accumulator and, when a segment closes, the dispatcher.
    """

    def __init__(
        self,
        config: Config,
        settings: SessionSettings,
        sink: UpdateSink,
        dispatcher: TranscriptionDispatcher,
        storage: "RecordingStorage",
        capture: Optional[AudioCapture] = None,
    ):
        self.config = config
        self.settings = settings
        self.sink = sink
        self.dispatcher = dispatcher
        self.storage = storage

        self.capture = capture or AudioCapture(config.audio)
        self.audio_format: AudioFormatSpec = self.capture.audio_format
        self.detector = SilenceDetector(settings)
        self.accumulator = SegmentAccumulator(self.audio_format, config.audio.hangover_ms)

        self._state = RecorderState.IDLE
        self._state_lock = threading.Lock()
        self._stop_requested = False
        self._finished = threading.Event()
        self._session_buffer: Optional[SessionBuffer] = None
        self._recording_path: Optional[Path] = None
        self._error: Optional[Exception] = None
        self._segments_dispatched = 0

        self.accumulator.on_segment(self._dispatch_segment)
        self.capture.add_callback(self._handle_chunk)
        self.capture.on_finished(self._handle_capture_finished)

    @property
    def state(self) -> RecorderState:
        return self._state

    def start(self) -> bool:
        """Open the device and begin recording. Only valid from Idle."""
        with self._state_lock:
            if self._state is not RecorderState.IDLE:
                logger.debug(f"Ignoring start in state {self._state.value}")
                return False

            self._session_buffer = SessionBuffer()
            try:
                self.capture.start()
            except DeviceUnavailable as e:
                logger.error(f"Cannot start recording: {e}")
                self._session_buffer = None
                self._error = e
                self._state = RecorderState.STOPPED
                self._finished.set()
                self.sink.post_status(f"Device unavailable: {e}")
                return False

            self._state = RecorderState.RECORDING

        logger.info("Recording started")
        self.sink.post_status("Recording")
        return True

    def pause(self) -> bool:
        """Stop reading the device, keeping any open segment as-is."""
        with self._state_lock:
            if self._state is not RecorderState.RECORDING or self._stop_requested:
                return False
            self.capture.pause()
            self._state = RecorderState.PAUSED

        logger.info("Recording paused")
        self.sink.post_status("Paused")
        return True

    def resume(self) -> bool:
        """Continue recording into whatever segment was open at pause."""
        with self._state_lock:
            if self._state is not RecorderState.PAUSED or self._stop_requested:
                return False
            self.capture.resume()
            self._state = RecorderState.RECORDING

        logger.info("Recording resumed")
        self.sink.post_status("Recording")
        return True

    def stop(self, wait: bool = True) -> bool:
        """
        End the session. The capture thread discards any open segment, saves
        the session recording and moves the state to Stopped.
        """
        with self._state_lock:
            if self._state not in (RecorderState.RECORDING, RecorderState.PAUSED):
                return False
            if self._stop_requested:
                return False
            self._stop_requested = True

        # Not under the lock: the finish handler takes it on the capture thread
        self.capture.stop()
        if wait:
            self.wait_finished(timeout=self.capture.join_timeout)
        return True

    def wait_finished(self, timeout: Optional[float] = None) -> bool:
        """Block until the session has been finalized."""
        return self._finished.wait(timeout)

    def _handle_chunk(self, chunk: AudioChunk) -> None:
        """Capture-thread pipeline for one chunk."""
        self.sink.post_chunk(chunk)
        self._session_buffer.append(chunk.data)

        self.accumulator.process(chunk, self.detector.process(chunk))

    def _dispatch_segment(self, segment: SpeechSegment) -> None:
        self._segments_dispatched += 1
        self.dispatcher.dispatch(segment)

    def _handle_capture_finished(self, error: Optional[CaptureError]) -> None:
        """Finalize the session on the capture thread. Always ends in Stopped."""
        try:
            dropped = self.accumulator.discard()
            if dropped:
                logger.debug(f"Unfinished segment not transcribed ({dropped} bytes)")

            pcm = self._session_buffer.finalize() if self._session_buffer is not None else b""
            if self.config.recording.save_session:
                self._save_recording(pcm)
        finally:
            with self._state_lock:
                self._state = RecorderState.STOPPED
                self._error = error

            if error is not None:
                self.sink.post_status(f"Capture error: {error}")
            else:
                self.sink.post_status("Stopped")
            self._finished.set()

    def _save_recording(self, pcm: bytes) -> None:
        try:
            self._recording_path = self.storage.save_recording(pcm, self.audio_format)
            self.storage.cleanup_old_files()
        except Exception as e:
            logger.error(f"Failed to save recording: {e}", exc_info=True)
            self.sink.post_status(f"Failed to save recording: {e}")

    @property
    def recording_path(self) -> Optional[Path]:
        return self._recording_path

    @property
    def error(self) -> Optional[Exception]:
        return self._error

    def get_status(self) -> dict:
        """Snapshot of the session for status displays."""
        return {
            "state": self._state.value,
            "is_speaking": self.accumulator.is_accumulating,
            "pending_segment_bytes": self.accumulator.pending_bytes,
            "session_bytes": len(self._session_buffer) if self._session_buffer is not None else 0,
            "chunks": self.capture.chunk_count,
            "segments_dispatched": self._segments_dispatched,
            "recording_path": str(self._recording_path) if self._recording_path else None,
            "error": str(self._error) if self._error else None,
        }
