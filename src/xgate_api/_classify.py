"""Classification of transport-level failures into network error kinds."""

from __future__ import annotations

import enum

import aiohttp


class NetworkErrorType(str, enum.Enum):
    """Kind of failure that prevented a response from being received."""

    CONNECTION_TIMEOUT = "connection_timeout"
    READ_TIMEOUT = "read_timeout"
    CONNECTION_REFUSED = "connection_refused"
    DNS_RESOLUTION = "dns_resolution"
    SSL_CERTIFICATE = "ssl_certificate"
    SSL_HANDSHAKE = "ssl_handshake"
    NETWORK_UNREACHABLE = "network_unreachable"
    HOST_UNREACHABLE = "host_unreachable"
    UNKNOWN = "unknown"


# Order matters: "timed out" must win over the generic "timeout" check and
# the timeout checks must run before "dns" (e.g. "DNS lookup timed out").
_MESSAGE_PATTERNS: tuple[tuple[tuple[str, ...], NetworkErrorType], ...] = (
    (
        ("connection timeout", "connection timed out", "request timed out", "timed out"),
        NetworkErrorType.CONNECTION_TIMEOUT,
    ),
    (("read timeout",), NetworkErrorType.READ_TIMEOUT),
    (("timeout",), NetworkErrorType.READ_TIMEOUT),
    (("connection refused", "connection denied"), NetworkErrorType.CONNECTION_REFUSED),
    (
        ("could not resolve host", "name resolution", "dns resolution", "dns"),
        NetworkErrorType.DNS_RESOLUTION,
    ),
    (
        ("ssl certificate", "certificate verify failed", "certificate verification failed"),
        NetworkErrorType.SSL_CERTIFICATE,
    ),
    (
        ("ssl handshake", "tls handshake", "ssl connect error"),
        NetworkErrorType.SSL_HANDSHAKE,
    ),
    (("network unreachable",), NetworkErrorType.NETWORK_UNREACHABLE),
    (("host unreachable",), NetworkErrorType.HOST_UNREACHABLE),
)

# Exception types that mean "the TCP connection could not be opened".
_CONNECT_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientConnectorError,
    ConnectionError,
)

RETRYABLE_NETWORK_ERRORS = frozenset(
    {
        NetworkErrorType.CONNECTION_TIMEOUT,
        NetworkErrorType.READ_TIMEOUT,
        NetworkErrorType.CONNECTION_REFUSED,
        NetworkErrorType.DNS_RESOLUTION,
        NetworkErrorType.NETWORK_UNREACHABLE,
        NetworkErrorType.HOST_UNREACHABLE,
    }
)

_SUGGESTIONS: dict[NetworkErrorType, str] = {
    NetworkErrorType.CONNECTION_TIMEOUT: (
        "Check your internet connection and consider increasing the connection timeout."
    ),
    NetworkErrorType.READ_TIMEOUT: (
        "The response took too long to arrive. Consider increasing the read timeout."
    ),
    NetworkErrorType.CONNECTION_REFUSED: (
        "The server is unavailable. Check that the service is up and the URL is correct."
    ),
    NetworkErrorType.DNS_RESOLUTION: (
        "The server name could not be resolved. Check the URL and your DNS settings."
    ),
    NetworkErrorType.SSL_CERTIFICATE: (
        "SSL certificate problem. Check that the certificate is valid and trusted."
    ),
    NetworkErrorType.SSL_HANDSHAKE: (
        "SSL/TLS handshake failed. Check your security settings."
    ),
    NetworkErrorType.NETWORK_UNREACHABLE: (
        "Network or host unreachable. Check your connectivity and firewall settings."
    ),
    NetworkErrorType.HOST_UNREACHABLE: (
        "Network or host unreachable. Check your connectivity and firewall settings."
    ),
}
_DEFAULT_SUGGESTION = "Unknown network error. Check your internet connection and try again."

_RECOMMENDED_DELAYS: dict[NetworkErrorType, int] = {
    NetworkErrorType.CONNECTION_TIMEOUT: 5,
    NetworkErrorType.READ_TIMEOUT: 5,
    NetworkErrorType.NETWORK_UNREACHABLE: 10,
    NetworkErrorType.HOST_UNREACHABLE: 10,
    NetworkErrorType.CONNECTION_REFUSED: 30,
}
_DEFAULT_RECOMMENDED_DELAY = 15


def classify_network_error(
    message: str, cause: BaseException | None = None
) -> NetworkErrorType:
    """Map a transport failure message to a :class:`NetworkErrorType`.

    Matching is a case-insensitive substring search over a fixed, ordered
    pattern list; the first pattern that matches wins regardless of where
    in the message it appears. When nothing matches and ``cause`` is a
    connect-level exception, its own message decides between a connection
    timeout and a refused connection.
    """
    lowered = message.lower()
    for needles, kind in _MESSAGE_PATTERNS:
        if any(needle in lowered for needle in needles):
            return kind

    if cause is not None and isinstance(cause, _CONNECT_ERRORS):
        if "timeout" in str(cause).lower():
            return NetworkErrorType.CONNECTION_TIMEOUT
        return NetworkErrorType.CONNECTION_REFUSED

    return NetworkErrorType.UNKNOWN


def is_retryable_network_error(kind: NetworkErrorType) -> bool:
    return kind in RETRYABLE_NETWORK_ERRORS


def suggestion_for(kind: NetworkErrorType) -> str:
    """Human readable remediation hint for a network error kind."""
    return _SUGGESTIONS.get(kind, _DEFAULT_SUGGESTION)


def recommended_retry_delay(kind: NetworkErrorType) -> int:
    """Advisory wait, in seconds, before retrying after ``kind``."""
    return _RECOMMENDED_DELAYS.get(kind, _DEFAULT_RECOMMENDED_DELAY)


class ApiErrorKind(str, enum.Enum):
    """Coarse category of an error response."""

    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    RATE_LIMITED = "rate_limited"
    UNKNOWN = "unknown"


def classify_status(status_code: int) -> ApiErrorKind:
    if status_code == 429:
        return ApiErrorKind.RATE_LIMITED
    if 400 <= status_code < 500:
        return ApiErrorKind.CLIENT_ERROR
    if 500 <= status_code < 600:
        return ApiErrorKind.SERVER_ERROR
    return ApiErrorKind.UNKNOWN
