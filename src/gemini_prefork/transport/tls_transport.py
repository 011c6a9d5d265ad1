"""TLS transport over TCP sockets using pyOpenSSL."""

import ipaddress
import logging
import socket

from cryptography.hazmat.primitives import hashes
from OpenSSL import SSL

from ..core.errors import ConnectionClosed, TransportError
from ..interfaces import Listener, Stream, Transport

logger = logging.getLogger(__name__)

SESSION_ID = b"gemini-prefork"


def _accept_any_certificate(conn, cert, errno, depth, ok) -> bool:
    """Verification callback for trust-on-first-use: accept every certificate."""
    return True


def _is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class TlsStream(Stream):
    """A pyOpenSSL connection wrapped in the Stream interface."""

    def __init__(self, connection: SSL.Connection, sock: socket.socket, peer_address=None):
        """
        Initialize the stream.

        Args:
            connection: The pyOpenSSL connection, in connect or accept state.
            sock: The underlying TCP socket.
            peer_address: Address tuple of the remote end, if known.
        """
        self._conn = connection
        self._sock = sock
        self.peer_address = peer_address
        self._closed = False

    def handshake(self) -> None:
        try:
            self._conn.do_handshake()
        except (SSL.Error, OSError) as e:
            raise TransportError(f"TLS handshake failed: {e}") from e

    def read(self, max_len: int) -> bytes:
        try:
            return self._conn.recv(max_len)
        except SSL.ZeroReturnError as e:
            raise ConnectionClosed("Peer closed the TLS session") from e
        except SSL.SysCallError as e:
            # TCP EOF without close_notify
            if e.args and e.args[0] == -1:
                return b""
            raise TransportError(f"Read failed: {e}") from e
        except SSL.Error as e:
            if "unexpected eof" in str(e).lower():
                return b""
            raise TransportError(f"Read failed: {e}") from e
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e

    def write_all(self, data: bytes) -> None:
        try:
            self._conn.sendall(data)
        except (SSL.Error, OSError) as e:
            raise TransportError(f"Write failed: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._conn.shutdown()
        except (SSL.Error, OSError) as e:
            logger.debug(f"TLS shutdown failed: {e}")
        finally:
            self._sock.close()

    def has_peer_cert(self) -> bool:
        return self._conn.get_peer_certificate() is not None

    def peer_cert_fingerprint_hex(self) -> str:
        cert = self._conn.get_peer_certificate()
        if cert is None:
            raise TransportError("Peer did not present a certificate")
        return cert.to_cryptography().fingerprint(hashes.SHA256()).hex()


class TlsListener(Listener):
    """A listening TCP socket that wraps accepted connections in TLS."""

    def __init__(self, sock: socket.socket, context: SSL.Context):
        self._sock = sock
        self._context = context

    @property
    def address(self) -> tuple:
        return self._sock.getsockname()

    def accept(self) -> TlsStream:
        try:
            client_sock, addr = self._sock.accept()
        except OSError as e:
            raise TransportError(f"Accept failed: {e}") from e

        conn = SSL.Connection(self._context, client_sock)
        conn.set_accept_state()
        return TlsStream(conn, client_sock, peer_address=addr)

    def close(self) -> None:
        self._sock.close()


class TlsTransport(Transport):
    """Transport using TLS 1.2+ with trust-on-first-use certificate handling.

    Clients never verify the server certificate chain. Servers request a
    client certificate but accept any, including self-signed ones.
    """

    def __init__(self, backlog: int = 128):
        """
        Initialize the transport.

        Args:
            backlog: Listen queue length for server sockets.
        """
        self.backlog = backlog

    def connect(
        self,
        host: str,
        port: int,
        client_cert: tuple[str, str] | None = None,
    ) -> TlsStream:
        context = self._client_context(client_cert)

        try:
            sock = socket.create_connection((host, port))
        except OSError as e:
            raise TransportError(f"Connection to {host}:{port} failed: {e}") from e

        conn = SSL.Connection(context, sock)
        if not _is_ip_literal(host):
            conn.set_tlsext_host_name(host.encode("idna"))
        conn.set_connect_state()

        logger.debug(f"Connected to {host}:{port}")
        return TlsStream(conn, sock, peer_address=(host, port))

    def listen(
        self,
        address: str,
        port: int,
        cert_path: str,
        key_path: str,
        reuse_port: bool = False,
    ) -> TlsListener:
        context = self._server_context(cert_path, key_path)

        family = socket.AF_INET6 if ":" in address else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if reuse_port:
                if not hasattr(socket, "SO_REUSEPORT"):
                    raise TransportError("SO_REUSEPORT is not supported on this platform")
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.bind((address, port))
            sock.listen(self.backlog)
        except OSError as e:
            sock.close()
            if isinstance(e, TransportError):
                raise
            raise TransportError(f"Cannot listen on {address}:{port}: {e}") from e

        logger.debug(f"Listening on {address}:{port} (reuse_port={reuse_port})")
        return TlsListener(sock, context)

    def _client_context(self, client_cert: tuple[str, str] | None) -> SSL.Context:
        context = SSL.Context(SSL.TLS_CLIENT_METHOD)
        context.set_min_proto_version(SSL.TLS1_2_VERSION)
        context.set_verify(SSL.VERIFY_NONE, _accept_any_certificate)
        if client_cert is not None:
            cert_path, key_path = client_cert
            try:
                context.use_certificate_file(cert_path)
                context.use_privatekey_file(key_path)
            except SSL.Error as e:
                raise TransportError(f"Cannot load client certificate: {e}") from e
        return context

    def _server_context(self, cert_path: str, key_path: str) -> SSL.Context:
        context = SSL.Context(SSL.TLS_SERVER_METHOD)
        context.set_min_proto_version(SSL.TLS1_2_VERSION)
        try:
            context.use_certificate_chain_file(cert_path)
            context.use_privatekey_file(key_path)
            context.check_privatekey()
        except SSL.Error as e:
            raise TransportError(f"Cannot load server certificate: {e}") from e
        # Request a client certificate without requiring or validating it.
        context.set_verify(SSL.VERIFY_PEER, _accept_any_certificate)
        context.set_session_id(SESSION_ID)
        return context
