"""Async Python client for the XGATE payments API."""

from .const import __version__
from ._classify import ApiErrorKind, NetworkErrorType
from ._client import XGateClient
from ._rate_limit import RateLimitInfo
from ._retry import RequestExecutor, RetryPolicy
from ._transport import Request, Response, TransportError
from .exceptions import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    ValidationError,
    XGateError,
    error_from_response,
)
from .messages import ErrorMessageHandler

__all__ = [
    "__version__",
    "XGateClient",
    "RetryPolicy",
    "RequestExecutor",
    "Request",
    "Response",
    "TransportError",
    "RateLimitInfo",
    "ApiErrorKind",
    "NetworkErrorType",
    "ApiError",
    "AuthenticationError",
    "NetworkError",
    "RateLimitError",
    "ValidationError",
    "XGateError",
    "error_from_response",
    "ErrorMessageHandler",
]
