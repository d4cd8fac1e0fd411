"""Asynchronous dispatch of closed segments to a remote transcription service."""

import asyncio
import concurrent.futures
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

import httpx

from ..config import SessionSettings
from .sink import UpdateSink
from .types import AudioFormatSpec, SpeechSegment
from .wav import WAV_MIME_TYPE, encode_wav

logger = logging.getLogger(__name__)


class TranscriptionError(Exception):
    pass


class TranscriptionService(Protocol):
    async def transcribe(
        self, audio: bytes, model: str, mime_type: str, filename: str
    ) -> str:
        ...


@dataclass(frozen=True)
class EncodedAudio:
    """A segment wrapped in an upload container."""
    data: bytes
    mime_type: str
    filename: str


@dataclass
class TranscriptSegment:
    """A transcribed speech segment."""
    text: str
    timestamp: datetime
    end_timestamp: datetime
    duration_ms: int
    model: str
    latency_ms: int


class WavEncoder:
    """Uncompressed container, always available."""

    def encode(self, pcm: bytes, audio_format: AudioFormatSpec) -> EncodedAudio:
        return EncodedAudio(
            data=encode_wav(pcm, audio_format),
            mime_type=WAV_MIME_TYPE,
            filename="audio.wav",
        )


class GroqTranscriptionClient:
    """Client for an OpenAI-compatible /audio/transcriptions endpoint."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        # Created lazily so it binds to the loop that uses it
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    def _headers(self) -> dict:
        api_key = self.api_key or os.environ.get("GROQ_API_KEY")
        if not api_key:
            raise TranscriptionError("API key missing")
        return {"Authorization": f"Bearer {api_key}"}

    async def transcribe(
        self, audio: bytes, model: str, mime_type: str, filename: str
    ) -> str:
        headers = self._headers()
        try:
            resp = await self._get_client().post(
                f"{self.api_url}/audio/transcriptions",
                headers=headers,
                files={"file": (filename, audio, mime_type)},
                data={"model": model, "response_format": "json"},
            )
            if resp.status_code == 401:
                raise TranscriptionError("Unauthorized: check API key")
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise TranscriptionError(
                f"Transcription failed: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Transcription request failed: {exc}") from exc
        except ValueError as exc:
            raise TranscriptionError(f"Invalid response: {exc}") from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("text"), str):
            raise TranscriptionError("Response has no transcription text")
        return payload["text"].strip()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class TranscriptionDispatcher:
    """
    Hands closed segments to the transcription service without blocking capture.

    Each dispatch becomes one task on a private asyncio loop running in its own
    thread. Completions are posted to the update sink in whatever order they
    finish; consumers that care about order sort on the segment timestamp.
    With max_concurrent > 0 at most that many requests are in flight and the
    rest wait their turn.
    """

    def __init__(
        self,
        client: TranscriptionService,
        settings: SessionSettings,
        sink: UpdateSink,
        audio_format: Optional[AudioFormatSpec] = None,
        max_concurrent: int = 0,
        encoder=None,
        max_recent: int = 200,
    ):
        self.client = client
        self.settings = settings
        self.sink = sink
        self.audio_format = audio_format or AudioFormatSpec()
        self.max_concurrent = max_concurrent
        self.encoder = encoder
        self._wav_encoder = WavEncoder()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._semaphore: Optional[asyncio.Semaphore] = None
        # Guards _running together with scheduling onto the loop
        self._lifecycle_lock = threading.Lock()

        self._pending: set[concurrent.futures.Future] = set()
        self._pending_lock = threading.Lock()

        self._recent_transcripts: deque[TranscriptSegment] = deque(maxlen=max_recent)
        self._transcripts_lock = threading.Lock()
        self._dispatched_count = 0
        self._failure_count = 0

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_forever()
        finally:
            self._loop.close()

    def start(self) -> None:
        """Start the dispatch loop."""
        with self._lifecycle_lock:
            if self._running:
                logger.warning("Transcription dispatcher already running")
                return

            self._loop = asyncio.new_event_loop()
            if self.max_concurrent > 0:
                self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._thread = threading.Thread(
                target=self._run_loop, name="TranscriptionDispatcher", daemon=True
            )
            self._thread.start()
            self._running = True

        logger.info("Transcription dispatcher started")

    def stop(self, timeout: float = 5.0) -> None:
        """Let in-flight requests finish (up to timeout), then shut the loop down."""
        with self._lifecycle_lock:
            if not self._running:
                return
            self._running = False

        logger.info("Stopping transcription dispatcher")

        # No dispatch can schedule past this point, so the snapshot is complete
        with self._pending_lock:
            pending = list(self._pending)
        if pending:
            _, not_done = concurrent.futures.wait(pending, timeout=timeout)
            for future in not_done:
                future.cancel()
            if not_done:
                logger.warning(f"Cancelled {len(not_done)} in-flight transcriptions")

        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            try:
                asyncio.run_coroutine_threadsafe(aclose(), self._loop).result(timeout=timeout)
            except Exception as e:
                logger.warning(f"Error closing transcription client: {e}")

        self._loop.call_soon_threadsafe(self._loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

        logger.info("Transcription dispatcher stopped")

    def encode(self, segment: SpeechSegment) -> EncodedAudio:
        """Wrap a segment for upload, falling back to WAV."""
        if self.encoder is not None:
            try:
                return self.encoder.encode(segment.audio, self.audio_format)
            except NotImplementedError:
                logger.debug("Configured encoder unavailable, using WAV")
        return self._wav_encoder.encode(segment.audio, self.audio_format)

    def dispatch(self, segment: SpeechSegment) -> Optional[concurrent.futures.Future]:
        """
        Schedule transcription of a closed segment.

        Only encoding happens on the calling thread. The model is read now, so
        a later model change affects only later segments.

        Returns:
            A future resolving to the TranscriptSegment (or None on failure),
            or None if the dispatcher is not running.
        """
        if not self._running:
            logger.warning("Dispatcher not running, dropping segment")
            return None

        model = self.settings.model
        encoded = self.encode(segment)

        with self._lifecycle_lock:
            if not self._running:
                logger.warning("Dispatcher stopped during encoding, dropping segment")
                return None
            future = asyncio.run_coroutine_threadsafe(
                self._transcribe(segment, encoded, model), self._loop
            )
            with self._pending_lock:
                self._pending.add(future)
                self._dispatched_count += 1
        future.add_done_callback(self._discard_pending)

        logger.debug(f"Dispatched segment ({segment.duration_ms}ms) with {model}")
        return future

    def _discard_pending(self, future: concurrent.futures.Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    async def _transcribe(
        self, segment: SpeechSegment, encoded: EncodedAudio, model: str
    ) -> Optional[TranscriptSegment]:
        if self._semaphore is None:
            return await self._request(segment, encoded, model)
        async with self._semaphore:
            return await self._request(segment, encoded, model)

    async def _request(
        self, segment: SpeechSegment, encoded: EncodedAudio, model: str
    ) -> Optional[TranscriptSegment]:
        started = time.monotonic()
        try:
            text = await self.client.transcribe(
                encoded.data, model, encoded.mime_type, encoded.filename
            )
        except Exception as e:
            with self._pending_lock:
                self._failure_count += 1
            logger.error(f"Transcription error: {e}")
            self.sink.post_status(f"Transcription failed: {e}")
            return None

        transcript = TranscriptSegment(
            text=text,
            timestamp=segment.captured_at,
            end_timestamp=segment.captured_at + timedelta(milliseconds=segment.duration_ms),
            duration_ms=segment.duration_ms,
            model=model,
            latency_ms=int((time.monotonic() - started) * 1000),
        )

        logger.info(f"Transcribed: '{text[:50]}' ({transcript.latency_ms}ms, {model})")

        with self._transcripts_lock:
            self._recent_transcripts.append(transcript)

        self.sink.post_transcript(transcript)
        return transcript

    def get_recent_transcripts(self, clear: bool = False) -> list[TranscriptSegment]:
        """Get recent transcripts in capture order, optionally clearing the buffer."""
        with self._transcripts_lock:
            transcripts = sorted(self._recent_transcripts, key=lambda t: t.timestamp)
            if clear:
                self._recent_transcripts.clear()
        return transcripts

    def clear_transcripts(self) -> None:
        """Clear the transcript buffer."""
        with self._transcripts_lock:
            self._recent_transcripts.clear()

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    @property
    def dispatched_count(self) -> int:
        return self._dispatched_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def is_running(self) -> bool:
        """Check if dispatcher is running."""
        return self._running
