"""Parsing, formatting and resolution of gemini:// URLs."""

from dataclasses import dataclass

from .errors import (
    InvalidPort,
    MissingHost,
    MissingSchemeSeparator,
    UnclosedBracket,
    UrlTooLong,
    WrongScheme,
)

SCHEME = "gemini"
DEFAULT_PORT = 1965
MAX_URL_LENGTH = 1024


@dataclass(frozen=True)
class GeminiUrl:
    """A parsed gemini:// URL.

    Attributes:
        hostname: Host name or IP literal (IPv6 stored without brackets).
        port: TCP port, 1965 unless given explicitly.
        path: Request path, never empty.
        query: Query string without the leading "?", possibly empty.
        scheme: Always "gemini" for parsed URLs.
    """

    hostname: str
    port: int = DEFAULT_PORT
    path: str = "/"
    query: str = ""
    scheme: str = SCHEME

    def __str__(self) -> str:
        return self.to_string()

    def to_string(self) -> str:
        """Render the canonical form used on the wire."""
        host = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        port = f":{self.port}" if self.port != DEFAULT_PORT else ""
        query = f"?{self.query}" if self.query else ""
        return f"{self.scheme}://{host}{port}{self.path}{query}"

    def request_line(self) -> str:
        """Return the canonical URL terminated by CRLF."""
        return f"{self.to_string()}\r\n"

    def is_valid(self) -> bool:
        """Check the structural invariants of a request URL."""
        return (
            self.scheme == SCHEME
            and bool(self.hostname)
            and 1 <= self.port <= 65535
        )


def parse_url(raw: str) -> GeminiUrl:
    """
    Parse a gemini:// URL.

    Args:
        raw: The URL string.

    Returns:
        The parsed GeminiUrl.

    Raises:
        UrlError: One of the UrlError subclasses describing the defect.
    """
    if len(raw.encode("utf-8")) > MAX_URL_LENGTH:
        raise UrlTooLong(f"URL exceeds {MAX_URL_LENGTH} bytes")

    sep = raw.find("://")
    if sep < 0:
        raise MissingSchemeSeparator(f"Missing '://' in URL: {raw!r}")

    scheme = raw[:sep]
    if scheme.lower() != SCHEME:
        raise WrongScheme(f"Unsupported scheme: {scheme!r}")

    rest = raw[sep + 3:]

    if rest.startswith("["):
        close = rest.find("]")
        if close < 0:
            raise UnclosedBracket(f"Unclosed IPv6 literal in URL: {raw!r}")
        hostname = rest[1:close]
        rest = rest[close + 1:]
    else:
        end = _find_first(rest, ":/?")
        hostname = rest[:end]
        rest = rest[end:]

    if not hostname:
        raise MissingHost(f"Missing host in URL: {raw!r}")

    port = DEFAULT_PORT
    if rest.startswith(":"):
        end = _find_first(rest, "/?")
        port = _parse_port(rest[1:end])
        rest = rest[end:]

    path, _, query = rest.partition("?")

    return GeminiUrl(hostname=hostname, port=port, path=path or "/", query=query)


def combine_url(base: GeminiUrl, target: str) -> GeminiUrl:
    """
    Resolve a redirect target against the URL that produced it.

    Args:
        base: The URL of the redirecting request.
        target: Absolute URL, absolute path, relative path or "?query".

    Returns:
        The resolved URL.

    Raises:
        UrlError: If an absolute target does not parse.
    """
    if _is_absolute(target):
        return parse_url(target)

    path_part, _, query = target.partition("?")

    if not path_part:
        path = base.path
    elif path_part.startswith("/"):
        path = _remove_dot_segments(path_part)
    else:
        directory = base.path[: base.path.rfind("/") + 1]
        path = _remove_dot_segments(directory + path_part)

    return GeminiUrl(
        hostname=base.hostname,
        port=base.port,
        path=path,
        query=query,
        scheme=base.scheme,
    )


def _find_first(text: str, chars: str) -> int:
    """Index of the first character of text found in chars, or len(text)."""
    for i, ch in enumerate(text):
        if ch in chars:
            return i
    return len(text)


def _parse_port(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise InvalidPort(f"Invalid port: {text!r}")
    port = int(text)
    if not 1 <= port <= 65535:
        raise InvalidPort(f"Port out of range: {port}")
    return port


def _is_absolute(target: str) -> bool:
    """True when target carries a scheme before any path or query."""
    head = target[: _find_first(target, "/?")]
    return target.lower().startswith(f"{SCHEME}://") or (
        bool(head) and head.endswith(":") and target[len(head):].startswith("//")
    )


def _remove_dot_segments(path: str) -> str:
    stack: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if stack:
                stack.pop()
            continue
        stack.append(segment)

    if not stack:
        return "/"

    result = "/" + "/".join(stack)
    # A final "." or ".." names a directory.
    if path.endswith("/") or path.rsplit("/", 1)[-1] in (".", ".."):
        result += "/"
    return result
