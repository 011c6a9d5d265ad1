"""Pytest configuration and fixtures."""

import pytest
import tempfile
from pathlib import Path

from gemini_prefork.interfaces import Listener, Stream, Transport


class MockStream(Stream):
    """In-memory stream for testing.

    Reads are served from a script of byte strings; an exception in the
    script is raised instead of returned. Writes are recorded.
    """

    def __init__(self, *script, fingerprint: str | None = None, peer_address=("127.0.0.1", 50000)):
        self._script = list(script)
        self.written = bytearray()
        self.write_calls = 0
        self.handshakes = 0
        self.close_count = 0
        self.fingerprint = fingerprint
        self.peer_address = peer_address
        self.handshake_error: Exception | None = None
        self.write_error: Exception | None = None

    @classmethod
    def response(cls, header: str, body: bytes = b"") -> "MockStream":
        """A stream that yields a response header, a body and EOF."""
        return cls(header.encode("utf-8") + body)

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    def handshake(self) -> None:
        self.handshakes += 1
        if self.handshake_error is not None:
            raise self.handshake_error

    def read(self, max_len: int) -> bytes:
        if not self._script:
            return b""
        item = self._script[0]
        if isinstance(item, Exception):
            self._script.pop(0)
            raise item
        chunk, rest = item[:max_len], item[max_len:]
        if rest:
            self._script[0] = rest
        else:
            self._script.pop(0)
        return chunk

    def write_all(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.write_calls += 1
        self.written.extend(data)

    def close(self) -> None:
        self.close_count += 1

    def has_peer_cert(self) -> bool:
        return self.fingerprint is not None

    def peer_cert_fingerprint_hex(self) -> str:
        if self.fingerprint is None:
            raise OSError("no peer certificate")
        return self.fingerprint


class MockListener(Listener):
    """Listener handing out scripted streams, then raising to stop a loop."""

    def __init__(self, streams, server=None):
        self._streams = list(streams)
        self.server = server
        self.closed = False

    def accept(self) -> Stream:
        if not self._streams:
            if self.server is not None:
                self.server.stop()
            raise OSError("no more connections")
        return self._streams.pop(0)

    def close(self) -> None:
        self.closed = True


class MockTransport(Transport):
    """Transport returning scripted streams for connect()."""

    def __init__(self, *streams: MockStream):
        self.streams = list(streams)
        self.connections = []
        self.listen_calls = []
        self.listener: MockListener | None = None

    def connect(self, host, port, client_cert=None) -> Stream:
        self.connections.append((host, port, client_cert))
        return self.streams.pop(0)

    def listen(self, address, port, cert_path, key_path, reuse_port=False) -> Listener:
        self.listen_calls.append((address, port, cert_path, key_path, reuse_port))
        if self.listener is None:
            self.listener = MockListener([])
        return self.listener


@pytest.fixture
def temp_content_dir():
    """Create a temporary directory with sample gemini content."""
    with tempfile.TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)

        # Create directory structure
        (root / "documents").mkdir()
        (root / "documents" / "subfolder").mkdir()
        (root / "with-index").mkdir()

        # Create some files
        (root / "welcome.gmi").write_text("# Welcome to the Gemini server!\n")
        (root / "notes.txt").write_text("Plain notes")
        (root / "image.png").write_bytes(b"\x89PNG\r\n\x1a\n")
        (root / ".hidden").write_text("secret")
        (root / "documents" / "readme.txt").write_text("This is a readme file.")
        (root / "documents" / "subfolder" / "nested.gmi").write_text("Nested file content")
        (root / "with-index" / "index.gmi").write_text("# Index page\n")

        yield root
