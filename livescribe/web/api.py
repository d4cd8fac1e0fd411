"""FastAPI control API for LiveScribe."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from pydantic import BaseModel

from ..config import SUPPORTED_MODELS

logger = logging.getLogger(__name__)

# Will be set by main.py
_livescribe_instance = None


class ActionResponse(BaseModel):
    """Response model for session control actions."""
    success: bool
    message: str
    data: Optional[dict] = None


class StatusResponse(BaseModel):
    """Response model for system status."""
    running: bool
    uptime_seconds: float
    session: dict
    settings: dict
    level: Optional[dict] = None
    transcription: dict
    last_status: Optional[str] = None
    storage: dict


class SettingsUpdate(BaseModel):
    """Runtime settings change; omitted fields are left alone."""
    silence_threshold_db: Optional[float] = None
    model: Optional[str] = None


def set_livescribe_instance(instance) -> None:
    """Set the LiveScribe instance for API access."""
    global _livescribe_instance
    _livescribe_instance = instance


def _require_instance():
    if _livescribe_instance is None:
        raise HTTPException(status_code=503, detail="LiveScribe not initialized")
    return _livescribe_instance


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="LiveScribe API",
        description="Live microphone transcription control API",
        version="0.1.0",
    )

    # CORS for local network access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.start_time = datetime.now()

    # ==================== Status ====================

    @app.get("/api/status", response_model=StatusResponse)
    async def get_status():
        """Get current system status."""
        instance = _require_instance()

        status = instance.get_status()
        uptime = (datetime.now() - app.state.start_time).total_seconds()

        return StatusResponse(uptime_seconds=uptime, **status)

    # ==================== Session control ====================

    def _session_action(name: str, action) -> ActionResponse:
        try:
            changed = action()
        except Exception as e:
            logger.error(f"Failed to {name} session: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        session = _livescribe_instance.session
        state = session.state.value if session is not None else "idle"
        return ActionResponse(
            success=changed,
            message=f"{name} {'applied' if changed else 'ignored'} (state: {state})",
            data={"state": state},
        )

    @app.post("/api/session/start", response_model=ActionResponse)
    def start_session():
        """Start recording, or resume a paused session."""
        instance = _require_instance()
        return _session_action("start", instance.start_session)

    @app.post("/api/session/pause", response_model=ActionResponse)
    def pause_session():
        instance = _require_instance()
        return _session_action("pause", instance.pause_session)

    @app.post("/api/session/resume", response_model=ActionResponse)
    def resume_session():
        instance = _require_instance()
        return _session_action("resume", instance.resume_session)

    @app.post("/api/session/stop", response_model=ActionResponse)
    def stop_session():
        """Stop recording and save the session file."""
        instance = _require_instance()
        return _session_action("stop", instance.stop_session)

    # ==================== Settings ====================

    @app.get("/api/settings")
    async def get_settings():
        instance = _require_instance()
        return {
            "success": True,
            "data": {**instance.settings.to_dict(), "models": list(SUPPORTED_MODELS)},
        }

    @app.put("/api/settings", response_model=ActionResponse)
    async def update_settings(update: SettingsUpdate):
        """Change threshold and/or model; effective on the next chunk/dispatch."""
        instance = _require_instance()

        try:
            if update.silence_threshold_db is not None:
                instance.set_threshold(update.silence_threshold_db)
            if update.model is not None:
                instance.set_model(update.model)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

        return ActionResponse(
            success=True,
            message="Settings updated",
            data=instance.settings.to_dict(),
        )

    # ==================== Transcripts ====================

    @app.get("/api/transcripts/recent")
    async def get_recent_transcripts(clear: bool = False):
        """Get recent transcripts in capture order."""
        instance = _require_instance()

        try:
            transcripts = instance.dispatcher.get_recent_transcripts(clear=clear)
            result = []

            for t in transcripts:
                result.append({
                    "text": t.text,
                    "timestamp": t.timestamp.isoformat(),
                    "duration_ms": t.duration_ms,
                    "model": t.model,
                    "latency_ms": t.latency_ms,
                })

            return {"success": True, "data": result}
        except Exception as e:
            logger.error(f"Failed to get transcripts: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    # ==================== Recordings ====================

    @app.get("/api/recordings")
    async def get_recordings(limit: int = 20):
        """List saved session recordings, newest first."""
        instance = _require_instance()

        try:
            recordings = instance.storage.get_recent_recordings(limit)
            result = []

            for filepath in recordings:
                path = Path(filepath)
                stat = path.stat()
                try:
                    duration_ms = instance.storage.get_recording_info(path)["duration_ms"]
                except ValueError as e:
                    logger.warning(f"Unreadable recording header {path.name}: {e}")
                    duration_ms = None
                result.append({
                    "filename": path.name,
                    "url": f"/api/recordings/{path.name}",
                    "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                    "size_bytes": stat.st_size,
                    "duration_ms": duration_ms,
                })

            return {"success": True, "data": result}
        except Exception as e:
            logger.error(f"Failed to list recordings: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.get("/api/recordings/{filename}")
    async def get_recording_file(filename: str):
        """Serve a saved session recording."""
        instance = _require_instance()

        filepath = instance.storage.resolve(filename)
        if filepath is None:
            raise HTTPException(status_code=404, detail="Recording not found")

        return FileResponse(filepath, media_type="audio/wav", filename=filename)

    return app
