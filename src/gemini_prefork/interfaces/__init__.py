"""Abstract interfaces for gemini_prefork."""

from .transport import Listener, Stream, Transport

__all__ = ["Listener", "Stream", "Transport"]
