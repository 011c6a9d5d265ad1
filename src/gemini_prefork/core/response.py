"""Client-side response header parsing and body consumption."""

import logging
from dataclasses import dataclass
from typing import Iterator

from ..interfaces import Stream
from .errors import (
    BodyAlreadyRead,
    ConnectionClosed,
    EmptyResponse,
    HeaderTooLong,
    MalformedHeader,
)
from .status import Status

logger = logging.getLogger(__name__)

MAX_META_LENGTH = 1024
# Status, space, meta and terminator.
MAX_HEADER_LENGTH = 1030
READ_SIZE = 4096
DEFAULT_MIME_TYPE = "text/gemini"
DEFAULT_CHARSET = "utf-8"


@dataclass(frozen=True)
class ResponseHeader:
    """Status and meta of a response."""

    status: Status
    meta: str

    @classmethod
    def parse(cls, line: str, lenient: bool = True) -> "ResponseHeader":
        """
        Split a header line into status and meta.

        A header with no space after the status code is accepted with meta
        starting right after the code when lenient is True.

        Args:
            line: The header line without its terminator.
            lenient: Accept a missing space separator.

        Raises:
            InvalidStatusCode: If the status is not two digits in [10, 69].
            MalformedHeader: If strict and the separator is missing.
        """
        status = Status.parse(line)

        if len(line) <= 2:
            meta = ""
        elif line[2] == " ":
            meta = line[3:]
        elif lenient:
            logger.debug(f"Header without space separator: {line!r}")
            meta = line[2:]
        else:
            raise MalformedHeader(f"Missing space after status: {line!r}")

        if len(meta.encode("utf-8")) > MAX_META_LENGTH:
            raise HeaderTooLong(f"Meta exceeds {MAX_META_LENGTH} bytes")

        return cls(status=status, meta=meta)

    def __str__(self) -> str:
        return f"{self.status} {self.meta}"


def read_header(stream: Stream) -> tuple[str, bytes]:
    """
    Read the header line from a stream.

    Args:
        stream: An open, handshaken stream.

    Returns:
        Tuple of (header line without terminator, bytes read past it).

    Raises:
        EmptyResponse: If the stream ended before any byte arrived.
        HeaderTooLong: If no line feed appears within the header bound.
    """
    buf = bytearray()

    while True:
        try:
            chunk = stream.read(READ_SIZE)
        except ConnectionClosed:
            chunk = b""

        if not chunk:
            if not buf:
                raise EmptyResponse("Connection closed before response header")
            line, leftover = bytes(buf), b""
            break

        buf.extend(chunk)
        newline = buf.find(b"\n")
        if newline >= 0:
            if newline + 1 > MAX_HEADER_LENGTH:
                raise HeaderTooLong(f"Response header exceeds {MAX_HEADER_LENGTH} bytes")
            line, leftover = bytes(buf[:newline]), bytes(buf[newline + 1:])
            break

        if len(buf) > MAX_HEADER_LENGTH:
            raise HeaderTooLong(f"Response header exceeds {MAX_HEADER_LENGTH} bytes")

    if line.endswith(b"\r"):
        line = line[:-1]

    return line.decode("utf-8", errors="replace"), leftover


class Response:
    """A response whose body is still on the wire.

    The body can be read once, either buffered (body/body_bytes) or
    streamed (read_chunk/iter_body). The stream is closed when the body
    is exhausted, on error, or on close().
    """

    def __init__(self, header: ResponseHeader, stream: Stream, leftover: bytes = b""):
        self.header = header
        self._stream = stream
        self._pending = leftover
        self._mode: str | None = None
        self._finished = False
        self._closed = False

    @property
    def status(self) -> Status:
        return self.header.status

    @property
    def meta(self) -> str:
        return self.header.meta

    def is_input(self) -> bool:
        return self.status.is_input()

    def is_success(self) -> bool:
        return self.status.is_success()

    def is_redirect(self) -> bool:
        return self.status.is_redirect()

    def is_temp_failure(self) -> bool:
        return self.status.is_temp_failure()

    def is_perm_failure(self) -> bool:
        return self.status.is_perm_failure()

    def is_cert_required(self) -> bool:
        return self.status.is_cert_required()

    def is_failure(self) -> bool:
        return self.status.is_failure()

    def mime_type(self) -> str:
        """MIME type of a success response without parameters."""
        if not self.is_success():
            return ""
        mime = self.meta.split(";", 1)[0].strip()
        return mime or DEFAULT_MIME_TYPE

    def charset(self) -> str:
        """The charset parameter of a success response, utf-8 by default."""
        for param in self.meta.split(";")[1:]:
            key, _, value = param.partition("=")
            if key.strip().lower() == "charset" and value.strip():
                return value.strip().strip('"')
        return DEFAULT_CHARSET

    def redirect_target(self) -> str | None:
        """The raw redirect target, or None for non-redirect responses."""
        return self.meta if self.is_redirect() else None

    def body_bytes(self) -> bytes:
        """
        Read the whole body.

        Raises:
            BodyAlreadyRead: If the body was already consumed.
        """
        self._claim("buffered")
        data = bytearray(self._pending)
        self._pending = b""
        try:
            while True:
                chunk = self._read_stream()
                if not chunk:
                    break
                data.extend(chunk)
        finally:
            self.close()
        return bytes(data)

    def body(self) -> str:
        """Read the whole body and decode it with charset()."""
        return self.body_bytes().decode(self.charset(), errors="replace")

    def read_chunk(self, max_len: int = READ_SIZE) -> bytes:
        """
        Read the next chunk of the body; b"" once the body is complete.

        Raises:
            BodyAlreadyRead: If the body was consumed in buffered mode.
        """
        if self._mode != "streaming":
            self._claim("streaming")

        if self._pending:
            chunk, self._pending = self._pending[:max_len], self._pending[max_len:]
            return chunk

        if self._finished:
            return b""

        try:
            chunk = self._read_stream(max_len)
        except Exception:
            self.close()
            raise

        if not chunk:
            self.close()
        return chunk

    def iter_body(self, chunk_size: int = READ_SIZE) -> Iterator[bytes]:
        """Yield body chunks until the body is complete."""
        while True:
            chunk = self.read_chunk(chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        """Release the stream."""
        self._finished = True
        self._pending = b""
        if not self._closed:
            self._closed = True
            self._stream.close()

    def _claim(self, mode: str) -> None:
        if self._mode is not None:
            raise BodyAlreadyRead("Response body has already been read")
        self._mode = mode

    def _read_stream(self, max_len: int = READ_SIZE) -> bytes:
        if self._finished:
            return b""
        try:
            return self._stream.read(max_len)
        except ConnectionClosed:
            return b""

    def __enter__(self) -> "Response":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Response {self.header}>"
