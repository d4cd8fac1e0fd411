"""LiveScribe - continuous microphone capture, utterance segmentation and transcription."""

__version__ = "0.1.0"
