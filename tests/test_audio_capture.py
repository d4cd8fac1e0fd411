"""Tests for the audio capture module."""

import time
from unittest.mock import MagicMock, patch

import pytest
import sounddevice as sd

from livescribe.audio.capture import AudioCapture
from livescribe.audio.types import CaptureError, DeviceUnavailable
from livescribe.config import AudioConfig


class TestAudioCapture:
    """Tests for AudioCapture class."""

    @pytest.fixture
    def audio_config(self):
        """Create test audio config."""
        return AudioConfig(
            device="default",
            sample_rate=16000,
            channels=1,
            chunk_bytes=1024,
        )

    @pytest.fixture
    def audio_capture(self, audio_config):
        """Create AudioCapture instance."""
        capture = AudioCapture(audio_config, join_timeout=2.0)
        yield capture
        capture.stop()

    def test_init(self, audio_capture):
        """Test AudioCapture initialization."""
        assert audio_capture.audio_format.sample_rate == 16000
        assert audio_capture.chunk_bytes == 1024
        assert audio_capture.chunk_frames == 512
        assert not audio_capture.is_running()
        assert not audio_capture.is_paused()

    def test_add_callback(self, audio_capture):
        """Test adding callbacks."""
        callback = MagicMock()
        audio_capture.add_callback(callback)
        assert callback in audio_capture._callbacks

    def test_remove_callback(self, audio_capture):
        """Test removing callbacks."""
        callback = MagicMock()
        audio_capture.add_callback(callback)
        audio_capture.remove_callback(callback)
        assert callback not in audio_capture._callbacks

    def test_remove_nonexistent_callback(self, audio_capture):
        """Test removing non-existent callback doesn't raise."""
        audio_capture.remove_callback(MagicMock())

    def test_start(self, fake_stream, audio_capture):
        """Test starting audio capture opens a 16-bit mono stream."""
        audio_capture.start()

        assert audio_capture.is_running()
        assert fake_stream.started
        call_kwargs = fake_stream.factory.call_args[1]
        assert call_kwargs["samplerate"] == 16000
        assert call_kwargs["channels"] == 1
        assert call_kwargs["dtype"] == "int16"
        assert call_kwargs["blocksize"] == 512
        assert call_kwargs["device"] is None

    def test_start_already_running(self, fake_stream, audio_capture):
        """Test starting when already running."""
        audio_capture.start()
        audio_capture.start()

        assert fake_stream.factory.call_count == 1

    def test_start_device_unavailable(self, audio_capture):
        """Test an unsupported format raises DeviceUnavailable and starts nothing."""
        with patch("livescribe.audio.capture.sd.check_input_settings",
                   side_effect=ValueError("Invalid sample rate")), \
                patch("livescribe.audio.capture.sd.RawInputStream") as mock_cls:
            with pytest.raises(DeviceUnavailable):
                audio_capture.start()

        mock_cls.assert_not_called()
        assert not audio_capture.is_running()
        assert audio_capture._thread is None

    def test_start_portaudio_error(self, audio_capture):
        """Test an open failure from PortAudio becomes DeviceUnavailable."""
        with patch("livescribe.audio.capture.sd.check_input_settings"), \
                patch("livescribe.audio.capture.sd.RawInputStream",
                      side_effect=sd.PortAudioError("no device")):
            with pytest.raises(DeviceUnavailable):
                audio_capture.start()

        assert not audio_capture.is_running()

    def test_chunks_delivered_in_order(self, fake_stream, audio_capture, wait_for):
        """Test every chunk reaches callbacks in arrival order."""
        payloads = [bytes([i]) * 1024 for i in range(1, 6)]
        fake_stream.chunks = list(payloads)
        received = []
        audio_capture.add_callback(lambda chunk: received.append(chunk))

        audio_capture.start()
        assert wait_for(lambda: len(received) >= 5)
        audio_capture.stop()

        assert [c.data for c in received[:5]] == payloads
        timestamps = [c.timestamp for c in received]
        assert timestamps == sorted(timestamps)

    def test_callbacks_called_in_registration_order(self, fake_stream, audio_capture, wait_for):
        """Test the first registered callback sees each chunk first."""
        order = []
        audio_capture.add_callback(lambda chunk: order.append("sink"))
        audio_capture.add_callback(lambda chunk: order.append("accumulator"))

        audio_capture.start()
        assert wait_for(lambda: len(order) >= 4)
        audio_capture.stop()

        assert order[:4] == ["sink", "accumulator", "sink", "accumulator"]

    def test_callback_error_handling(self, fake_stream, audio_capture, wait_for):
        """Test that callback errors are caught and capture continues."""
        good = MagicMock()
        audio_capture.add_callback(MagicMock(side_effect=ValueError("Test error")))
        audio_capture.add_callback(good)

        audio_capture.start()
        assert wait_for(lambda: good.call_count >= 3)
        assert audio_capture.is_running()

    def test_pause_stops_reading(self, fake_stream, audio_capture, wait_for):
        """Test the device is not read while paused, and resume continues."""
        audio_capture.start()
        assert wait_for(lambda: fake_stream.reads >= 3)

        audio_capture.pause()
        assert audio_capture.is_paused()
        time.sleep(0.05)
        reads_while_paused = fake_stream.reads
        time.sleep(0.1)
        assert fake_stream.reads == reads_while_paused

        audio_capture.resume()
        assert wait_for(lambda: fake_stream.reads > reads_while_paused + 2)

    def test_chunk_read_across_pause_is_dropped(self, fake_stream, audio_capture, wait_for):
        """Test a read that completes after pause() is not delivered."""
        fake_stream.chunks = [b"\x01" * 1024, b"\x02" * 1024, b"\x03" * 1024]

        def pause_during_second_read(count):
            if count == 2:
                audio_capture.pause()

        fake_stream.on_read = pause_during_second_read
        received = []
        audio_capture.add_callback(lambda chunk: received.append(chunk.data))

        audio_capture.start()
        assert wait_for(lambda: audio_capture.is_paused() and fake_stream.reads == 2)
        time.sleep(0.05)
        assert received == [b"\x01" * 1024]

        audio_capture.resume()
        assert wait_for(lambda: len(received) >= 2)
        assert received[1] == b"\x03" * 1024

    def test_stop(self, fake_stream, audio_capture, wait_for):
        """Test stopping releases the stream and runs finished callbacks."""
        finished = MagicMock()
        audio_capture.on_finished(finished)

        audio_capture.start()
        assert wait_for(lambda: fake_stream.reads >= 1)
        audio_capture.stop()

        assert not audio_capture.is_running()
        assert fake_stream.stopped
        assert fake_stream.closed
        finished.assert_called_once_with(None)

    def test_stop_while_paused(self, fake_stream, audio_capture):
        """Test stop wakes a paused capture thread."""
        finished = MagicMock()
        audio_capture.on_finished(finished)

        audio_capture.start()
        audio_capture.pause()
        audio_capture.stop()

        finished.assert_called_once_with(None)
        assert audio_capture._thread is not None
        assert not audio_capture._thread.is_alive()

    def test_stop_not_running(self, audio_capture):
        """Test stopping when not running doesn't raise."""
        audio_capture.stop()

    def test_read_error_ends_capture(self, fake_stream, audio_capture, wait_for):
        """Test a device failure mid-session stops capture and reports it."""
        finished = MagicMock()
        audio_capture.on_finished(finished)
        fake_stream.error = OSError("device unplugged")

        audio_capture.start()
        assert wait_for(lambda: finished.called)

        error = finished.call_args[0][0]
        assert isinstance(error, CaptureError)
        assert "device unplugged" in str(error)
        assert not audio_capture.is_running()
        assert fake_stream.closed

    def test_start_with_numeric_device(self, fake_stream):
        """Test starting with numeric device ID."""
        capture = AudioCapture(AudioConfig(device="1"))
        capture.start()

        assert fake_stream.factory.call_args[1]["device"] == 1
        capture.stop()

    def test_start_with_string_device(self, fake_stream):
        """Test starting with string device name."""
        capture = AudioCapture(AudioConfig(device="hw:1,0"))
        capture.start()

        assert fake_stream.factory.call_args[1]["device"] == "hw:1,0"
        capture.stop()

    @patch("livescribe.audio.capture.sd.query_devices")
    def test_list_devices(self, mock_query):
        """Test listing audio devices."""
        mock_query.return_value = [
            {"name": "Device 1", "max_input_channels": 2, "default_samplerate": 44100},
            {"name": "Device 2", "max_input_channels": 0, "default_samplerate": 48000},
            {"name": "Device 3", "max_input_channels": 1, "default_samplerate": 16000},
        ]

        devices = AudioCapture.list_devices()

        assert len(devices) == 2  # Only input devices
        assert devices[0]["name"] == "Device 1"
        assert devices[0]["channels"] == 2
        assert devices[1]["name"] == "Device 3"
