"""GeminiServer - per-connection dispatcher for the Gemini protocol."""

import logging
from typing import Callable

from .config import Config
from .core import (
    AlreadyResponded,
    BadRequest,
    ClientCertificateMissing,
    ConnectionClosed,
    ConnectionClosedEarly,
    GeminiUrl,
    InvalidMeta,
    MetaTooLong,
    Status,
    StatusCode,
    UrlError,
    parse_url,
)
from .core.response import MAX_META_LENGTH
from .core.url import MAX_URL_LENGTH
from .interfaces import Listener, Stream, Transport
from .transport import TlsTransport

logger = logging.getLogger(__name__)

# 1024-byte URL plus CRLF
MAX_REQUEST_LINE = MAX_URL_LENGTH + 2
READ_SIZE = 1024
INTERNAL_ERROR_META = "Internal server error"


class Request:
    """A parsed request bound to its connection.

    The handler must send exactly one response through one of the
    respond* methods. Each of them writes the header, closes the stream,
    and refuses to run a second time.
    """

    def __init__(self, stream: Stream, url: GeminiUrl, raw: str):
        """
        Initialize the request.

        Args:
            stream: The connection, owned by this request from now on.
            url: The parsed request URL.
            raw: The request line as received, without terminator.
        """
        self._stream = stream
        self.url = url
        self.raw = raw
        self._responded = False

    @property
    def path(self) -> str:
        return self.url.path

    @property
    def query(self) -> str:
        return self.url.query

    @property
    def hostname(self) -> str:
        return self.url.hostname

    @property
    def peer_address(self):
        return self._stream.peer_address

    @property
    def responded(self) -> bool:
        return self._responded

    def respond(self, status: int, meta: str) -> None:
        """
        Send a header-only response and close the connection.

        Raises:
            AlreadyResponded: If a response was already sent.
            InvalidStatusCode: If status is outside [10, 69].
            MetaTooLong: If meta exceeds 1024 bytes.
            InvalidMeta: If meta contains a CR or LF.
        """
        self._send(status, meta, b"")

    def respond_success(self, mime_type: str, body: str) -> None:
        """Send a 20 response with a UTF-8 text body."""
        self._send(StatusCode.SUCCESS, mime_type, body.encode("utf-8"))

    def respond_bytes(self, mime_type: str, data: bytes) -> None:
        """Send a 20 response with a binary body."""
        self._send(StatusCode.SUCCESS, mime_type, bytes(data))

    def respond_input(self, prompt: str, sensitive: bool = False) -> None:
        status = StatusCode.SENSITIVE_INPUT if sensitive else StatusCode.INPUT
        self.respond(status, prompt)

    def respond_redirect(self, url: str, permanent: bool = False) -> None:
        status = StatusCode.REDIRECT_PERMANENT if permanent else StatusCode.REDIRECT_TEMPORARY
        self.respond(status, url)

    def respond_not_found(self, meta: str = "Not found") -> None:
        self.respond(StatusCode.NOT_FOUND, meta)

    def respond_error(self, meta: str = "Permanent failure") -> None:
        self.respond(StatusCode.PERMANENT_FAILURE, meta)

    def respond_temp_error(self, meta: str = "Temporary failure") -> None:
        self.respond(StatusCode.TEMPORARY_FAILURE, meta)

    def respond_bad_request(self, meta: str = "Bad request") -> None:
        self.respond(StatusCode.BAD_REQUEST, meta)

    def respond_cert_required(self, meta: str = "Client certificate required") -> None:
        self.respond(StatusCode.CLIENT_CERTIFICATE_REQUIRED, meta)

    def respond_cert_unauthorized(self, meta: str = "Certificate not authorised") -> None:
        self.respond(StatusCode.CERTIFICATE_NOT_AUTHORISED, meta)

    def respond_cert_invalid(self, meta: str = "Certificate not valid") -> None:
        self.respond(StatusCode.CERTIFICATE_NOT_VALID, meta)

    def has_client_cert(self) -> bool:
        return self._stream.has_peer_cert()

    def client_cert_fingerprint(self) -> str:
        """
        SHA-256 fingerprint of the client certificate as lowercase hex.

        Raises:
            ClientCertificateMissing: If no certificate was presented.
        """
        if not self._stream.has_peer_cert():
            raise ClientCertificateMissing("No client certificate presented")
        return self._stream.peer_cert_fingerprint_hex()

    def verify_client_cert(self, expected: str) -> bool:
        """
        Compare the client certificate fingerprint with expected.

        Raises:
            ClientCertificateMissing: If no certificate was presented.
        """
        if not self._stream.has_peer_cert():
            raise ClientCertificateMissing("No client certificate presented")
        return self._stream.verify_peer_cert_fingerprint(expected)

    def close(self) -> None:
        self._stream.close()

    def _send(self, status: int, meta: str, body: bytes) -> None:
        if self._responded:
            raise AlreadyResponded(f"Response already sent for {self.url}")
        header = _format_header(Status(status).code, meta)
        self._responded = True

        try:
            self._stream.write_all(header + body)
        finally:
            self._stream.close()

        logger.debug(f"{self.url} -> {status} {meta}")


def _format_header(status: int, meta: str) -> bytes:
    if "\r" in meta or "\n" in meta:
        raise InvalidMeta(f"Meta contains a line break: {meta!r}")
    encoded = meta.encode("utf-8")
    if len(encoded) > MAX_META_LENGTH:
        raise MetaTooLong(f"Meta exceeds {MAX_META_LENGTH} bytes")
    return f"{status:02d} ".encode("ascii") + encoded + b"\r\n"


def read_request_line(stream: Stream) -> str:
    """
    Read the request line from a client.

    Args:
        stream: A handshaken connection.

    Returns:
        The request line without its terminator.

    Raises:
        BadRequest: If the line is longer than allowed or not UTF-8.
        ConnectionClosedEarly: If the client closed before a line feed.
    """
    buf = bytearray()

    while True:
        try:
            chunk = stream.read(min(READ_SIZE, MAX_REQUEST_LINE + 1 - len(buf)))
        except ConnectionClosed:
            chunk = b""

        if not chunk:
            raise ConnectionClosedEarly("Connection closed before end of request line")

        buf.extend(chunk)
        newline = buf.find(b"\n")
        if newline >= 0:
            line = bytes(buf[:newline])
            if line.endswith(b"\r"):
                line = line[:-1]
            if len(line) > MAX_URL_LENGTH:
                raise BadRequest(f"Request line exceeds {MAX_REQUEST_LINE} bytes")
            break

        # Only a trailing CR may follow a full-length URL.
        pending = buf[:-1] if buf.endswith(b"\r") else buf
        if len(pending) > MAX_URL_LENGTH:
            raise BadRequest(f"Request line exceeds {MAX_REQUEST_LINE} bytes")

    try:
        return line.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BadRequest("Request line is not valid UTF-8") from e


class GeminiServer:
    """Single-process Gemini server.

    Accepts one connection at a time and runs it through the
    handshake, request line, URL parse, handler dispatch and close
    sequence before accepting the next.
    """

    def __init__(
        self,
        handler: Callable[[Request], None],
        config: Config | None = None,
        transport: Transport | None = None,
    ):
        """
        Initialize the server.

        Args:
            handler: Called with each valid Request; must respond once.
            config: Server configuration (uses defaults if None).
            transport: Transport used to listen (TLS by default).
        """
        self.handler = handler
        self.config = config or Config()
        self.transport = transport or TlsTransport()
        self._listener: Listener | None = None
        self._running = False

    def bind(self) -> Listener:
        """Create the listener if it does not exist yet."""
        if self._listener is None:
            self._listener = self.transport.listen(
                self.config.host,
                self.config.port,
                self.config.cert_file,
                self.config.key_file,
                reuse_port=self.config.reuse_port,
            )
            logger.info(f"Listening on {self.config.host}:{self.config.port}")
        return self._listener

    def serve_forever(self) -> None:
        """Accept and handle connections until stop() is called."""
        listener = self.bind()
        self._running = True

        try:
            while self._running:
                try:
                    stream = listener.accept()
                except OSError as e:
                    if not self._running:
                        break
                    logger.error(f"Accept failed: {e}")
                    continue

                try:
                    self.handle_connection(stream)
                except Exception as e:
                    logger.exception(f"Unhandled error while serving connection: {e}")
        finally:
            self.close()

    def stop(self) -> None:
        """Stop serving after the current connection."""
        logger.info("Stopping Gemini server...")
        self._running = False

    def close(self) -> None:
        """Release the listener."""
        if self._listener is not None:
            self._listener.close()
            self._listener = None

    def handle_connection(self, stream: Stream) -> None:
        """
        Handle one connection from handshake to close.

        Framing and URL errors are answered with 59 without calling the
        handler. Handler failures, and handlers that return without
        responding, are answered with 40. The stream is always closed.

        Args:
            stream: An accepted, not yet handshaken connection.
        """
        peer = stream.peer_address
        try:
            try:
                stream.handshake()
            except OSError as e:
                logger.warning(f"[{peer}] Handshake failed: {e}")
                return

            try:
                raw = read_request_line(stream)
                url = parse_url(raw)
            except (BadRequest, ConnectionClosedEarly, UrlError) as e:
                logger.info(f"[{peer}] Bad request: {e}")
                _send_best_effort(stream, StatusCode.BAD_REQUEST, str(e))
                return

            if not url.is_valid():
                logger.info(f"[{peer}] Invalid URL: {raw!r}")
                _send_best_effort(stream, StatusCode.BAD_REQUEST, "Invalid URL")
                return

            logger.info(f"[{peer}] Request: {url}")
            request = Request(stream, url, raw)
            self._dispatch(request)
        finally:
            stream.close()

    def _dispatch(self, request: Request) -> None:
        try:
            self.handler(request)
        except Exception as e:
            logger.exception(f"Handler failed for {request.url}: {e}")
            if not request.responded:
                self._fallback(request)
            return

        if not request.responded:
            logger.warning(f"Handler did not respond to {request.url}")
            self._fallback(request)

    def _fallback(self, request: Request) -> None:
        try:
            request.respond(StatusCode.TEMPORARY_FAILURE, INTERNAL_ERROR_META)
        except Exception as e:
            logger.debug(f"Fallback response failed: {e}")


def _send_best_effort(stream: Stream, status: int, meta: str) -> None:
    """Write a header, ignoring failures; the connection is closing anyway."""
    meta = meta.replace("\r", " ").replace("\n", " ")
    meta = meta.encode("utf-8")[:MAX_META_LENGTH].decode("utf-8", errors="ignore")
    try:
        stream.write_all(_format_header(status, meta))
    except OSError as e:
        logger.debug(f"Error response failed: {e}")
