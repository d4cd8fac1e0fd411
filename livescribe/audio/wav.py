"""Canonical 44-byte-header PCM WAV encoding."""

import logging
import struct
from pathlib import Path

from .types import AudioFormatSpec

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
WAV_MIME_TYPE = "audio/wav"
PCM_FORMAT_CODE = 1

# RIFF size, "WAVE", "fmt ", fmt size, format, channels, rate, byte rate,
# block align, bits per sample, "data", data size
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")

# RIFF size is a 32-bit field counting 36 header bytes plus the payload
MAX_PCM_BYTES = 0xFFFFFFFF - 36


def encode_wav(pcm: bytes, audio_format: AudioFormatSpec) -> bytes:
    """Wrap raw PCM in a RIFF/WAVE container. The payload is copied verbatim."""
    data_length = len(pcm)
    if data_length > MAX_PCM_BYTES:
        raise ValueError(
            f"PCM payload of {data_length} bytes exceeds the WAV limit of {MAX_PCM_BYTES} bytes"
        )
    header = _HEADER.pack(
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT_CODE,
        audio_format.channels,
        audio_format.sample_rate,
        audio_format.byte_rate,
        audio_format.block_align,
        audio_format.bits_per_sample,
        b"data",
        data_length,
    )
    return header + bytes(pcm)


def write_wav(path: str | Path, pcm: bytes, audio_format: AudioFormatSpec) -> Path:
    """Encode PCM and write it to disk."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(encode_wav(pcm, audio_format))
    logger.debug(f"Wrote {len(pcm)} bytes of PCM to {path}")
    return path


def read_wav_header(header: bytes) -> tuple[AudioFormatSpec, int]:
    """
    Parse the 44-byte header of a container produced by encode_wav.

    Args:
        header: At least the first WAV_HEADER_SIZE bytes of the container

    Returns:
        The audio format and the PCM payload size in bytes.

    Raises:
        ValueError: if the header is not a canonical 16-bit PCM header.
    """
    if len(header) < WAV_HEADER_SIZE:
        raise ValueError("Container shorter than a WAV header")

    (riff, _, wave, fmt, fmt_size, format_code, channels, sample_rate,
     _, _, bits, data_id, data_length) = _HEADER.unpack_from(header)

    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_id != b"data":
        raise ValueError("Not a canonical RIFF/WAVE container")
    if fmt_size != 16 or format_code != PCM_FORMAT_CODE:
        raise ValueError("Only uncompressed PCM is supported")

    audio_format = AudioFormatSpec(
        sample_rate=sample_rate,
        bits_per_sample=bits,
        channels=channels,
    )
    return audio_format, data_length
