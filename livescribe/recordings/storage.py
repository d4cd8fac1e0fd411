"""Storage management for whole-session recordings."""

import logging
import time
from pathlib import Path
from typing import Optional

from ..audio.types import AudioFormatSpec
from ..audio.wav import WAV_HEADER_SIZE, read_wav_header, write_wav
from ..config import RecordingConfig

logger = logging.getLogger(__name__)

RECORDING_GLOB = "recording_*.wav"


class RecordingStorage:
    """Manages session recordings on disk."""

    def __init__(self, config: RecordingConfig):
        self.config = config
        self.output_dir = Path(config.output_dir)
        self.max_recordings = config.max_recordings

    def save_recording(
        self,
        pcm: bytes,
        audio_format: AudioFormatSpec,
        timestamp_ms: Optional[int] = None,
    ) -> Path:
        """
        Save a session's PCM as recording_<unixMillis>.wav.

        Args:
            pcm: Raw PCM for the whole session
            audio_format: Format of the PCM
            timestamp_ms: Unix time in milliseconds (uses now if not provided)

        Returns:
            Path to saved recording

        Raises:
            OSError: if the file cannot be written
        """
        if timestamp_ms is None:
            timestamp_ms = int(time.time() * 1000)

        filepath = self.output_dir / f"recording_{timestamp_ms}.wav"
        write_wav(filepath, pcm, audio_format)
        logger.info(f"Recording saved to {filepath.resolve()}")

        return filepath

    def _recordings_by_age(self) -> list[Path]:
        if not self.output_dir.exists():
            return []
        return sorted(self.output_dir.glob(RECORDING_GLOB), key=lambda p: p.stat().st_mtime)

    def cleanup_old_files(self) -> int:
        """
        Delete the oldest recordings beyond max_recordings.

        Returns:
            Number of files deleted
        """
        if self.max_recordings <= 0:
            return 0

        deleted_count = 0
        recordings = self._recordings_by_age()

        while len(recordings) > self.max_recordings:
            oldest = recordings.pop(0)
            oldest.unlink()
            deleted_count += 1
            logger.debug(f"Deleted old recording: {oldest}")

        return deleted_count

    def get_recent_recordings(self, count: int = 10) -> list[str]:
        """Get paths to most recent recordings."""
        recordings = self._recordings_by_age()
        recordings.reverse()
        return [str(rec) for rec in recordings[:count]]

    def get_recording_info(self, path: str | Path) -> dict:
        """
        Read format and duration from a recording's header.

        Raises:
            ValueError: if the file is not a recording written by save_recording
        """
        with open(path, "rb") as f:
            audio_format, data_length = read_wav_header(f.read(WAV_HEADER_SIZE))
        return {
            "sample_rate": audio_format.sample_rate,
            "channels": audio_format.channels,
            "duration_ms": audio_format.bytes_to_ms(data_length),
        }

    def resolve(self, filename: str) -> Optional[Path]:
        """Map a bare recording filename to its path, or None if not ours."""
        if Path(filename).name != filename or not Path(filename).match(RECORDING_GLOB):
            return None
        filepath = self.output_dir / filename
        return filepath if filepath.is_file() else None

    def get_storage_stats(self) -> dict:
        """Get storage statistics."""
        recordings = self._recordings_by_age()
        total_size = sum(p.stat().st_size for p in recordings)

        return {
            "recordings": len(recordings),
            "total_size_mb": round(total_size / (1024 ** 2), 2),
            "max_recordings": self.max_recordings,
            "output_dir": str(self.output_dir),
        }
