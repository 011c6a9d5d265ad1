"""Gemini two-digit status codes."""

from dataclasses import dataclass

from .errors import InvalidStatusCode

MIN_STATUS = 10
MAX_STATUS = 69


class StatusCode:
    """Named status codes."""

    INPUT = 10
    SENSITIVE_INPUT = 11

    SUCCESS = 20

    REDIRECT_TEMPORARY = 30
    REDIRECT_PERMANENT = 31

    TEMPORARY_FAILURE = 40
    SERVER_UNAVAILABLE = 41
    CGI_ERROR = 42
    PROXY_ERROR = 43
    SLOW_DOWN = 44

    PERMANENT_FAILURE = 50
    NOT_FOUND = 51
    GONE = 52
    PROXY_REQUEST_REFUSED = 53
    BAD_REQUEST = 59

    CLIENT_CERTIFICATE_REQUIRED = 60
    CERTIFICATE_NOT_AUTHORISED = 61
    CERTIFICATE_NOT_VALID = 62


@dataclass(frozen=True)
class Status:
    """A validated status code in [10, 69]."""

    code: int

    def __post_init__(self):
        if not isinstance(self.code, int) or not MIN_STATUS <= self.code <= MAX_STATUS:
            raise InvalidStatusCode(f"Status code out of range: {self.code!r}")

    @classmethod
    def parse(cls, text: str) -> "Status":
        """
        Parse the status from the first two characters of a header.

        Raises:
            InvalidStatusCode: If they are not two digits in [10, 69].
        """
        digits = text[:2]
        if len(digits) != 2 or not all(ch in "0123456789" for ch in digits):
            raise InvalidStatusCode(f"Invalid status code: {digits!r}")
        return cls(int(digits))

    def category(self) -> int:
        return self.code // 10

    def is_input(self) -> bool:
        return self.category() == 1

    def is_success(self) -> bool:
        return self.category() == 2

    def is_redirect(self) -> bool:
        return self.category() == 3

    def is_temp_failure(self) -> bool:
        return self.category() == 4

    def is_perm_failure(self) -> bool:
        return self.category() == 5

    def is_cert_required(self) -> bool:
        return self.category() == 6

    def is_failure(self) -> bool:
        return self.is_temp_failure() or self.is_perm_failure()

    def __int__(self) -> int:
        return self.code

    def __str__(self) -> str:
        return f"{self.code:02d}"
