"""Concrete transports."""

from .tls_transport import TlsListener, TlsStream, TlsTransport

__all__ = ["TlsListener", "TlsStream", "TlsTransport"]
