"""GeminiClient - request driver with bounded redirect following."""

import logging

from .core import (
    EmptyRedirectTarget,
    GeminiUrl,
    InvalidRedirectUrl,
    RequestTooLong,
    Response,
    ResponseHeader,
    TooManyRedirects,
    UrlError,
    combine_url,
    parse_url,
    read_header,
)
from .interfaces import Transport
from .transport import TlsTransport

logger = logging.getLogger(__name__)

# 1024-byte URL plus CRLF
MAX_REQUEST_LENGTH = 1026


class GeminiClient:
    """Gemini client.

    Every request opens a fresh connection; nothing is reused across
    redirects or calls. Server certificates are trusted on first use.
    """

    def __init__(
        self,
        transport: Transport | None = None,
        max_redirects: int = 5,
        client_cert: tuple[str, str] | None = None,
        lenient_header: bool = True,
    ):
        """
        Initialize the client.

        Args:
            transport: Transport used to open connections (TLS by default).
            max_redirects: Redirects followed before TooManyRedirects.
            client_cert: Optional (cert_path, key_path) presented to servers.
            lenient_header: Accept headers with no space after the status.
        """
        self.transport = transport or TlsTransport()
        self.max_redirects = max_redirects
        self.client_cert = client_cert
        self.lenient_header = lenient_header

    def request(self, url: str) -> Response:
        """
        Request a URL, following redirects.

        Args:
            url: The gemini:// URL to fetch.

        Returns:
            The first non-redirect response, with its body unread.

        Raises:
            UrlError: If url does not parse.
            ProtocolError: If a response header is malformed.
            ClientError: On redirect or request-size failures.
            TransportError: On connection failures.
        """
        current = parse_url(url)
        redirects = 0

        while True:
            response = self._do_request(current)
            if not response.is_redirect():
                return response

            # The redirect body is never read.
            response.close()

            redirects += 1
            if redirects > self.max_redirects:
                raise TooManyRedirects(
                    f"Exceeded {self.max_redirects} redirects (last: {current})"
                )

            target = response.meta.strip()
            if not target:
                raise EmptyRedirectTarget(f"Empty redirect target from {current}")

            try:
                next_url = combine_url(current, target)
            except UrlError as e:
                raise InvalidRedirectUrl(f"Invalid redirect target {target!r}: {e}") from e
            if not next_url.is_valid():
                raise InvalidRedirectUrl(f"Invalid redirect target {target!r}")

            logger.info(f"Redirect {redirects}/{self.max_redirects}: {current} -> {next_url}")
            current = next_url

    def request_no_redirect(self, url: str) -> Response:
        """Request a URL once, returning a redirect response as-is."""
        return self._do_request(parse_url(url))

    def fetch(self, url: str) -> tuple[Response, str]:
        """
        Request a URL and read the body of a success response.

        Returns:
            Tuple of (response, body_text); body_text is "" unless successful.
        """
        response = self.request(url)
        if response.is_success():
            return response, response.body()
        response.close()
        return response, ""

    def _do_request(self, url: GeminiUrl) -> Response:
        """
        Send one request on a fresh connection and read the response header.

        Returns:
            A Response bound to the still-open stream.
        """
        request_line = url.request_line().encode("utf-8")
        if len(request_line) > MAX_REQUEST_LENGTH:
            raise RequestTooLong(f"Request line exceeds {MAX_REQUEST_LENGTH} bytes")

        logger.debug(f"Requesting {url}")
        stream = self.transport.connect(url.hostname, url.port, client_cert=self.client_cert)
        try:
            stream.handshake()
            stream.write_all(request_line)
            line, leftover = read_header(stream)
            header = ResponseHeader.parse(line, lenient=self.lenient_header)
        except Exception:
            stream.close()
            raise

        logger.debug(f"Response from {url}: {header}")
        return Response(header, stream, leftover)
