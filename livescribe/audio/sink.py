"""Serialized delivery of chunk and transcription updates to the presentation layer."""

import logging
import queue
import threading
from typing import Any, Callable, Optional

from .types import AudioChunk

logger = logging.getLogger(__name__)

_CHUNK = "chunk"
_TRANSCRIPT = "transcript"
_STATUS = "status"


class UpdateSink:
    """
    Single delivery context for UI-bound updates.

    Producers on any thread post updates; handlers run one at a time on the
    sink's own thread (or on the caller of drain()), never concurrently.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue[tuple[str, Any]] = queue.Queue(maxsize=maxsize)
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._delivery_lock = threading.Lock()
        self._handlers: dict[str, list[Callable[[Any], None]]] = {
            _CHUNK: [],
            _TRANSCRIPT: [],
            _STATUS: [],
        }
        self._last_status: Optional[str] = None

    def on_chunk(self, handler: Callable[[AudioChunk], None]) -> None:
        self._handlers[_CHUNK].append(handler)

    def on_transcript(self, handler: Callable[[Any], None]) -> None:
        self._handlers[_TRANSCRIPT].append(handler)

    def on_status(self, handler: Callable[[str], None]) -> None:
        self._handlers[_STATUS].append(handler)

    def post_chunk(self, chunk: AudioChunk) -> None:
        self._queue.put((_CHUNK, chunk))

    def post_transcript(self, transcript: Any) -> None:
        self._queue.put((_TRANSCRIPT, transcript))

    def post_status(self, message: str) -> None:
        self._last_status = message
        self._queue.put((_STATUS, message))

    def _dispatch(self, kind: str, payload: Any) -> None:
        with self._delivery_lock:
            for handler in self._handlers[kind]:
                try:
                    handler(payload)
                except Exception as e:
                    logger.error(f"Update handler error ({kind}): {e}")

    def _process_loop(self) -> None:
        """Deliver queued updates until stopped."""
        while self._running:
            try:
                kind, payload = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._dispatch(kind, payload)

    def drain(self) -> int:
        """Deliver everything currently queued on the calling thread."""
        delivered = 0
        while True:
            try:
                kind, payload = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            self._dispatch(kind, payload)
            delivered += 1

    def start(self) -> None:
        """Start the delivery thread."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._process_loop, name="UpdateSink", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the delivery thread, flushing what is left."""
        if not self._running:
            return
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
        self.drain()

    def is_running(self) -> bool:
        return self._running

    @property
    def last_status(self) -> Optional[str]:
        return self._last_status

    @property
    def pending(self) -> int:
        return self._queue.qsize()
