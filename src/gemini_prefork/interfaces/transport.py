"""Abstract interface for the TLS byte-stream transport."""

from abc import ABC, abstractmethod


class Stream(ABC):
    """A single TLS connection, owned by exactly one request or response."""

    peer_address: tuple | None = None

    @abstractmethod
    def handshake(self) -> None:
        """Perform the TLS handshake."""
        pass

    @abstractmethod
    def read(self, max_len: int) -> bytes:
        """Read up to max_len bytes.

        Returns:
            The bytes read; b"" when the peer closed the TCP stream.

        Raises:
            ConnectionClosed: If the peer closed the TLS session cleanly.
            TransportError: On any other I/O failure.
        """
        pass

    @abstractmethod
    def write_all(self, data: bytes) -> None:
        """Write all of data."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the stream. Safe to call more than once."""
        pass

    @abstractmethod
    def has_peer_cert(self) -> bool:
        """Check whether the peer presented a certificate."""
        pass

    @abstractmethod
    def peer_cert_fingerprint_hex(self) -> str:
        """SHA-256 of the peer's DER certificate as 64 lowercase hex chars."""
        pass

    def verify_peer_cert_fingerprint(self, expected: str) -> bool:
        """Compare the peer fingerprint to expected, ignoring case."""
        return self.peer_cert_fingerprint_hex().lower() == expected.strip().lower()


class Listener(ABC):
    """A bound, listening server socket."""

    @abstractmethod
    def accept(self) -> Stream:
        """Block until a client connects and return its stream."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Stop listening."""
        pass


class Transport(ABC):
    """Factory for client streams and server listeners."""

    @abstractmethod
    def connect(
        self,
        host: str,
        port: int,
        client_cert: tuple[str, str] | None = None,
    ) -> Stream:
        """Open a TCP connection to host:port, ready for handshake().

        Args:
            host: Host name or IP literal.
            port: TCP port.
            client_cert: Optional (cert_path, key_path) to present.
        """
        pass

    @abstractmethod
    def listen(
        self,
        address: str,
        port: int,
        cert_path: str,
        key_path: str,
        reuse_port: bool = False,
    ) -> Listener:
        """Bind and listen on address:port with the given server identity.

        Args:
            reuse_port: Allow several processes to bind the same port.
        """
        pass
