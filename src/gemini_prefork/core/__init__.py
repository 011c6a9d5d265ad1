"""Core protocol model for gemini_prefork."""

from .errors import (
    AlreadyResponded,
    BadRequest,
    BodyAlreadyRead,
    ClientCertificateMissing,
    ClientError,
    ConnectionClosed,
    ConnectionClosedEarly,
    EmptyRedirectTarget,
    EmptyResponse,
    ForkFailed,
    GeminiError,
    HeaderTooLong,
    InvalidPort,
    InvalidMeta,
    InvalidRedirectUrl,
    InvalidStatusCode,
    MalformedHeader,
    MetaTooLong,
    MissingHost,
    MissingSchemeSeparator,
    ProcessError,
    ProtocolError,
    RequestTooLong,
    ServerError,
    TooManyRedirects,
    TransportError,
    UnclosedBracket,
    UrlError,
    UrlTooLong,
    WrongScheme,
)
from .mime import detect_mime_type
from .response import Response, ResponseHeader, read_header
from .status import Status, StatusCode
from .url import GeminiUrl, combine_url, parse_url

__all__ = [
    "AlreadyResponded",
    "BadRequest",
    "BodyAlreadyRead",
    "ClientCertificateMissing",
    "ClientError",
    "ConnectionClosed",
    "ConnectionClosedEarly",
    "EmptyRedirectTarget",
    "EmptyResponse",
    "ForkFailed",
    "GeminiError",
    "HeaderTooLong",
    "InvalidPort",
    "InvalidMeta",
    "InvalidRedirectUrl",
    "InvalidStatusCode",
    "MalformedHeader",
    "MetaTooLong",
    "MissingHost",
    "MissingSchemeSeparator",
    "ProcessError",
    "ProtocolError",
    "RequestTooLong",
    "ServerError",
    "TooManyRedirects",
    "TransportError",
    "UnclosedBracket",
    "UrlError",
    "UrlTooLong",
    "WrongScheme",
    "detect_mime_type",
    "Response",
    "ResponseHeader",
    "read_header",
    "Status",
    "StatusCode",
    "GeminiUrl",
    "combine_url",
    "parse_url",
]
