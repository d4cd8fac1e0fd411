"""Main orchestrator for LiveScribe - live microphone transcription."""

import argparse
import logging
import signal
import sys
import threading
import time
from typing import Optional

import uvicorn

from .audio.capture import AudioCapture
from .audio.recorder import RecordingController
from .audio.sink import UpdateSink
from .audio.transcriber import (
    GroqTranscriptionClient,
    TranscriptionDispatcher,
    TranscriptSegment,
)
from .audio.types import AudioChunk, RecorderState
from .audio.vad import ChunkLevel, measure_level
from .config import SUPPORTED_MODELS, Config, SessionSettings, load_config
from .recordings.storage import RecordingStorage
from .web.api import create_app, set_livescribe_instance

logger = logging.getLogger(__name__)


class LiveScribe:
    """Main application orchestrator."""

    def __init__(self, config: Config):
        self.config = config
        self._running = False

        self.settings = SessionSettings.from_config(config)
        self.sink = UpdateSink()
        self.storage = RecordingStorage(config.recording)
        self.client = GroqTranscriptionClient(
            api_url=config.transcription.api_url,
            api_key=config.transcription.api_key,
            timeout=config.transcription.timeout_s,
        )
        self.dispatcher = TranscriptionDispatcher(
            self.client,
            self.settings,
            self.sink,
            max_concurrent=config.transcription.max_concurrent,
        )

        self.session: Optional[RecordingController] = None
        self._session_lock = threading.Lock()
        self._last_level: Optional[ChunkLevel] = None

        # Runs on the sink thread
        self.sink.on_chunk(self._on_chunk)
        self.sink.on_transcript(self._on_transcript)
        self.sink.on_status(self._on_status)

        # Web server
        self._web_thread: Optional[threading.Thread] = None
        self._web_server: Optional[uvicorn.Server] = None

    def _on_chunk(self, chunk: AudioChunk) -> None:
        self._last_level = measure_level(chunk.data, self.settings.silence_threshold_db)

    def _on_transcript(self, transcript: TranscriptSegment) -> None:
        logger.debug(f"[{transcript.timestamp:%H:%M:%S}] {transcript.text}")

    def _on_status(self, message: str) -> None:
        logger.info(f"Status: {message}")

    def _new_session(self) -> RecordingController:
        return RecordingController(
            self.config,
            self.settings,
            self.sink,
            self.dispatcher,
            self.storage,
            capture=AudioCapture(self.config.audio),
        )

    # ==================== Session control ====================

    def start_session(self) -> bool:
        """Start recording, or resume if paused. A stopped session is replaced."""
        with self._session_lock:
            session = self.session
            if session is not None and session.state is RecorderState.PAUSED:
                return session.resume()
            if session is None or session.state is RecorderState.STOPPED:
                session = self.session = self._new_session()
            return session.start()

    def pause_session(self) -> bool:
        with self._session_lock:
            return self.session is not None and self.session.pause()

    def resume_session(self) -> bool:
        with self._session_lock:
            return self.session is not None and self.session.resume()

    def stop_session(self) -> bool:
        with self._session_lock:
            return self.session is not None and self.session.stop()

    def set_threshold(self, threshold_db: float) -> None:
        self.settings.silence_threshold_db = threshold_db
        logger.info(f"Silence threshold set to {threshold_db:.1f} dB")

    def set_model(self, model: str) -> None:
        self.settings.model = model
        logger.info(f"Transcription model set to {model}")

    # ==================== Web server ====================

    def _start_web_server(self, host: str = "0.0.0.0", port: int = 8080) -> None:
        """Start the web server in a background thread."""
        logger.info(f"Starting web server on {host}:{port}...")

        set_livescribe_instance(self)
        app = create_app()

        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._web_server = uvicorn.Server(config)

        def run_server():
            self._web_server.run()

        self._web_thread = threading.Thread(target=run_server, daemon=True)
        self._web_thread.start()

        logger.info(f"Web server started at http://{host}:{port}")

    def _stop_web_server(self) -> None:
        """Stop the web server."""
        if self._web_server is not None:
            logger.info("Stopping web server...")
            self._web_server.should_exit = True
            if self._web_thread is not None:
                self._web_thread.join(timeout=5.0)

    # ==================== Lifecycle ====================

    def start(self, enable_web: bool = True, web_port: int = 8080) -> None:
        """Start the long-lived services. Recording starts with start_session()."""
        if self._running:
            logger.warning("LiveScribe already running")
            return

        logger.info("Starting LiveScribe...")
        self._running = True

        self.config.ensure_directories()
        self.sink.start()
        self.dispatcher.start()

        if enable_web:
            self._start_web_server(port=web_port)

        logger.info("LiveScribe started successfully")

    def stop(self) -> None:
        """Stop all components gracefully."""
        if not self._running:
            return

        logger.info("Stopping LiveScribe...")
        self._running = False

        self._stop_web_server()
        self.stop_session()
        self.dispatcher.stop()
        self.sink.stop()

        logger.info("LiveScribe stopped")

    def get_status(self) -> dict:
        """Get current status of all components."""
        level = self._last_level
        session = self.session
        return {
            "running": self._running,
            "session": session.get_status() if session is not None else {
                "state": RecorderState.IDLE.value,
            },
            "settings": self.settings.to_dict(),
            "level": {
                "rms_db": round(level.rms_db, 1),
                "mean_abs_db": round(level.mean_abs_db, 1),
                "silent": level.silent,
            } if level is not None else None,
            "transcription": {
                "dispatcher_running": self.dispatcher.is_running(),
                "in_flight": self.dispatcher.pending_count,
                "dispatched": self.dispatcher.dispatched_count,
                "failed": self.dispatcher.failure_count,
            },
            "last_status": self.sink.last_status,
            "storage": self.storage.get_storage_stats(),
        }


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="LiveScribe - live microphone transcription")
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (default: $LIVESCRIBE_CONFIG or config/settings.yaml)",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=8080,
        help="Web server port (default: 8080)",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Disable web server and start recording immediately",
    )
    parser.add_argument(
        "--list-audio",
        action="store_true",
        help="List available audio devices",
    )
    parser.add_argument(
        "-t", "--threshold",
        type=float,
        default=None,
        help="Silence threshold in dB",
    )
    parser.add_argument(
        "-m", "--model",
        choices=SUPPORTED_MODELS,
        default=None,
        help="Transcription model",
    )
    args = parser.parse_args()

    if args.list_audio:
        print("Available audio devices:")
        for dev in AudioCapture.list_devices():
            print(f"  [{dev['id']}] {dev['name']} ({dev['channels']}ch)")
        return

    config = load_config(args.config)
    if args.threshold is not None:
        config.audio.silence_threshold_db = args.threshold
    if args.model is not None:
        config.transcription.model = args.model
    config.setup_logging()

    logger.info("=" * 50)
    logger.info("LiveScribe - live microphone transcription")
    logger.info("=" * 50)

    app = LiveScribe(config)
    app.sink.on_transcript(lambda t: print(f"[{t.timestamp:%H:%M:%S}] {t.text}", flush=True))

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}")
        app.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.start(enable_web=not args.no_web, web_port=args.port)

    if args.no_web:
        if not app.start_session():
            app.stop()
            sys.exit(1)
    else:
        logger.info(f"Control API available at http://localhost:{args.port}")

    try:
        while True:
            time.sleep(1.0)
            if args.no_web and app.session.state is RecorderState.STOPPED:
                logger.info("Session ended")
                break
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    finally:
        app.stop()


if __name__ == "__main__":
    main()
