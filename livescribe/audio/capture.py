"""Audio capture module for continuous microphone input."""

import logging
import threading
import time
from typing import Callable, Optional

import sounddevice as sd

from ..config import AudioConfig
from .types import AudioChunk, AudioFormatSpec, CaptureError, DeviceUnavailable

logger = logging.getLogger(__name__)


class AudioCapture:
    """
    Blocking-read microphone capture on a dedicated thread.

    Every chunk is handed to the registered callbacks, in registration order,
    on the capture thread. While paused the thread waits on a condition
    variable and does not touch the device.
    """

    def __init__(self, config: AudioConfig, join_timeout: float = 5.0):
        self.config = config
        self.audio_format = AudioFormatSpec(
            sample_rate=config.sample_rate,
            bits_per_sample=config.bits_per_sample,
            channels=config.channels,
        )
        self.chunk_bytes = config.chunk_bytes
        self.chunk_frames = max(1, config.chunk_bytes // self.audio_format.block_align)
        self.join_timeout = join_timeout

        self._stream: Optional[sd.RawInputStream] = None
        self._running = False
        self._paused = False
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._callbacks: list[Callable[[AudioChunk], None]] = []
        self._on_finished: list[Callable[[Optional[CaptureError]], None]] = []
        self._chunk_count = 0

    def add_callback(self, callback: Callable[[AudioChunk], None]) -> None:
        """Register a callback for audio chunks."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[AudioChunk], None]) -> None:
        """Unregister a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def on_finished(self, callback: Callable[[Optional[CaptureError]], None]) -> None:
        """Register callback run on the capture thread once the loop has exited."""
        self._on_finished.append(callback)

    def _resolve_device(self):
        if self.config.device == "default":
            return None
        try:
            return int(self.config.device)
        except ValueError:
            return self.config.device

    def _open_stream(self) -> sd.RawInputStream:
        device = self._resolve_device()
        try:
            sd.check_input_settings(
                device=device,
                channels=self.audio_format.channels,
                dtype="int16",
                samplerate=self.audio_format.sample_rate,
            )
            stream = sd.RawInputStream(
                device=device,
                samplerate=self.audio_format.sample_rate,
                channels=self.audio_format.channels,
                dtype="int16",
                blocksize=self.chunk_frames,
            )
            stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise DeviceUnavailable(
                f"Cannot open input device {self.config.device!r} at "
                f"{self.audio_format.sample_rate}Hz/{self.audio_format.bits_per_sample}-bit/"
                f"{self.audio_format.channels}ch: {e}"
            ) from e
        return stream

    def start(self) -> None:
        """
        Open the device and start the capture thread.

        Raises:
            DeviceUnavailable: if the device rejects the requested format.
        """
        if self._running:
            logger.warning("Audio capture already running")
            return

        logger.info(
            f"Starting audio capture: {self.audio_format.sample_rate}Hz, "
            f"{self.audio_format.channels}ch, {self.chunk_bytes} byte chunks"
        )

        self._stream = self._open_stream()

        with self._cond:
            self._running = True
            self._paused = False

        self._thread = threading.Thread(
            target=self._capture_loop, name="AudioCapture", daemon=True
        )
        self._thread.start()

        logger.info("Audio capture started")

    def _capture_loop(self) -> None:
        """Read fixed-size chunks until stopped or the device fails."""
        error: Optional[CaptureError] = None
        try:
            while True:
                with self._cond:
                    while self._running and self._paused:
                        self._cond.wait()
                    if not self._running:
                        break

                data, overflowed = self._stream.read(self.chunk_frames)
                if overflowed:
                    logger.warning("Audio input overflow")
                chunk = AudioChunk(data=bytes(data), timestamp=time.monotonic())

                with self._cond:
                    if not self._running or self._paused:
                        logger.debug("Dropping chunk read across pause/stop")
                        continue

                self._chunk_count += 1
                self._deliver(chunk)
        except Exception as e:
            logger.error(f"Audio capture failed: {e}", exc_info=True)
            error = CaptureError(str(e))
        finally:
            self._close_stream()
            with self._cond:
                self._running = False
                self._paused = False
            self._finish(error)

    def _deliver(self, chunk: AudioChunk) -> None:
        for callback in self._callbacks:
            try:
                callback(chunk)
            except Exception as e:
                logger.error(f"Audio callback error: {e}")

    def _finish(self, error: Optional[CaptureError]) -> None:
        for callback in self._on_finished:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Capture finished callback error: {e}", exc_info=True)
        logger.info("Audio capture stopped")

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning(f"Error closing audio stream: {e}")

    def pause(self) -> None:
        """Stop reading from the device until resume()."""
        with self._cond:
            if self._running:
                self._paused = True

    def resume(self) -> None:
        """Wake the capture thread."""
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    def stop(self) -> None:
        """Stop audio capture after the in-flight read returns."""
        with self._cond:
            if not self._running:
                return
            logger.info("Stopping audio capture")
            self._running = False
            self._paused = False
            self._cond.notify_all()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                logger.warning("Capture thread did not exit in time")

    def is_running(self) -> bool:
        """Check if capture is running."""
        return self._running

    def is_paused(self) -> bool:
        return self._paused

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    @staticmethod
    def list_devices() -> list[dict]:
        """List available audio input devices."""
        devices = []
        for i, device in enumerate(sd.query_devices()):
            if device["max_input_channels"] > 0:
                devices.append({
                    "id": i,
                    "name": device["name"],
                    "channels": device["max_input_channels"],
                    "sample_rate": device["default_samplerate"],
                })
        return devices
