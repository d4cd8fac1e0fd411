"""Persistence of whole-session recordings."""

from .storage import RecordingStorage

__all__ = ["RecordingStorage"]
