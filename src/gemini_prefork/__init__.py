"""Gemini protocol client, server and prefork supervisor."""

from .client import GeminiClient
from .config import Config, load_config
from .core import GeminiUrl, Response, Status, StatusCode, combine_url, parse_url
from .prefork import PreforkServer
from .server import GeminiServer, Request

__version__ = "0.1.0"

__all__ = [
    "GeminiClient",
    "Config",
    "load_config",
    "GeminiUrl",
    "Response",
    "Status",
    "StatusCode",
    "combine_url",
    "parse_url",
    "PreforkServer",
    "GeminiServer",
    "Request",
]
