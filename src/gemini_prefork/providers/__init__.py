"""Ready-made request handlers."""

from .static_files import StaticFileHandler

__all__ = ["StaticFileHandler"]
