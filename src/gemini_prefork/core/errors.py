"""Exception hierarchy shared by the Gemini client, server and supervisor."""


class GeminiError(Exception):
    """Base class for all gemini_prefork errors."""


# URL parsing

class UrlError(GeminiError, ValueError):
    """Raised when a string is not a usable gemini:// URL."""


class UrlTooLong(UrlError):
    """URL exceeds 1024 bytes."""


class MissingSchemeSeparator(UrlError):
    """URL has no "://" separator."""


class WrongScheme(UrlError):
    """URL scheme is not gemini."""


class MissingHost(UrlError):
    """URL has an empty hostname."""


class UnclosedBracket(UrlError):
    """IPv6 literal is missing its closing bracket."""


class InvalidPort(UrlError):
    """Port is not an integer in [1, 65535]."""


# Wire protocol

class ProtocolError(GeminiError):
    """Raised when a peer violates the response framing."""


class EmptyResponse(ProtocolError):
    """Connection closed before any header byte arrived."""


class HeaderTooLong(ProtocolError):
    """Response header exceeds 1030 bytes."""


class InvalidStatusCode(ProtocolError, ValueError):
    """Status is not two digits in [10, 69]."""


class MalformedHeader(ProtocolError):
    """Header has no space after the status code (strict policy only)."""


class BodyAlreadyRead(ProtocolError):
    """Response body was already consumed."""


# Client

class ClientError(GeminiError):
    """Raised by the request driver."""


class TooManyRedirects(ClientError):
    """Redirect chain is longer than max_redirects."""


class EmptyRedirectTarget(ClientError):
    """Redirect response carried no target."""


class InvalidRedirectUrl(ClientError):
    """Redirect target does not resolve to a valid gemini URL."""


class RequestTooLong(ClientError):
    """Request line would exceed 1026 bytes."""


# Server

class ServerError(GeminiError):
    """Raised by the server dispatcher."""


class BadRequest(ServerError):
    """Request line is malformed or too long."""


class ConnectionClosedEarly(ServerError):
    """Peer closed the connection before sending a full request line."""


class AlreadyResponded(ServerError):
    """A response was already sent for this request."""


class MetaTooLong(ServerError):
    """Response meta exceeds 1024 bytes."""


class InvalidMeta(ServerError, ValueError):
    """Response meta contains a CR or LF."""


class ClientCertificateMissing(ServerError):
    """The peer did not present a client certificate."""


# Processes

class ProcessError(GeminiError):
    """Raised by the prefork supervisor."""


class ForkFailed(ProcessError):
    """os.fork() failed for one worker."""


# Transport

class TransportError(GeminiError, OSError):
    """I/O failure reported by a transport."""


class ConnectionClosed(TransportError):
    """Peer closed the TLS session cleanly."""
