"""Static file-extension to MIME type table."""

from pathlib import Path

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES = {
    # Gemtext
    ".gmi": "text/gemini",
    ".gemini": "text/gemini",
    # Text
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".xml": "text/xml",
    ".json": "application/json",
    ".atom": "application/atom+xml",
    ".rss": "application/rss+xml",
    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    # Audio
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
    # Documents and archives
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tar": "application/x-tar",
}


def detect_mime_type(path: str | Path) -> str:
    """
    Guess the MIME type of a file from its extension.

    Args:
        path: File name or path.

    Returns:
        The MIME type, or application/octet-stream if unknown.
    """
    return MIME_TYPES.get(Path(path).suffix.lower(), DEFAULT_MIME_TYPE)
