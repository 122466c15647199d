"""Exception hierarchy for the XGATE API client."""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Mapping

from multidict import CIMultiDict, CIMultiDictProxy

from ._classify import (
    ApiErrorKind,
    NetworkErrorType,
    classify_network_error,
    classify_status,
    is_retryable_network_error,
    recommended_retry_delay,
    suggestion_for,
)
from ._rate_limit import RateLimitInfo, parse_retry_after
from ._transport import Request
from .const import ERROR_MESSAGE_FIELDS

_API_SUGGESTIONS: dict[int, str] = {
    400: "Check the request parameters and payload.",
    401: "Check your credentials and authenticate again.",
    403: "Your account does not have permission for this operation.",
    404: "Check that the resource identifier is correct.",
    422: "Fix the reported field errors and resend the request.",
    429: "Too many requests. Wait before retrying.",
}

_SENSITIVE_FIELD_RE = re.compile(
    r"password|secret|token|key|auth|credential|pin|cvv|ssn|cpf|cnpj", re.IGNORECASE
)

_FORMAT_RULES = frozenset({"format", "pattern", "regex", "email", "url"})
_TYPE_RULES = frozenset({"type", "numeric", "integer", "string", "boolean"})


def mask_value(field: str | None, value: Any) -> Any:
    """Mask string values of sensitive-looking fields (at most 8 stars)."""
    if not isinstance(value, str) or not _SENSITIVE_FIELD_RE.search(field or ""):
        return value
    return "*" * min(len(value), 8)


class XGateError(Exception):
    """Base exception for all XGATE API errors.

    Attributes:
        context: Free-form diagnostic data attached where the error was raised.
    """

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})

    @property
    def retryable(self) -> bool:
        return False

    @property
    def suggestion(self) -> str:
        return "Check the error details and try again."

    def to_dict(self) -> dict[str, Any]:
        """Structured representation for logging."""
        cause = self.__cause__
        return {
            "exception_class": type(self).__name__,
            "message": self.message,
            "context": self.context,
            "previous": (
                {"class": type(cause).__name__, "message": str(cause)} if cause else None
            ),
        }


class AuthenticationError(XGateError):
    """Login failed, or a request needed a token that isn't there."""

    @property
    def suggestion(self) -> str:
        return "Check your credentials and call authenticate() again."


class NetworkError(XGateError):
    """The API could not be reached (timeout, DNS, refused, SSL, unreachable).

    The kind is fixed at construction and everything else (retryable,
    suggestion, advisory delay) is derived from it.

    Attributes:
        kind: The classified :class:`NetworkErrorType`.
        request: The request that failed, if known.
    """

    def __init__(
        self,
        message: str,
        kind: NetworkErrorType,
        *,
        request: Request | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        if request is not None and request.url not in message:
            message = f"{message} [{request.describe()}]"
        super().__init__(message, context=context)
        self._kind = kind
        self.request = request

    @classmethod
    def from_failure(
        cls,
        message: str,
        *,
        request: Request | None = None,
        cause: BaseException | None = None,
    ) -> NetworkError:
        """Classify a transport failure message and build the error."""
        return cls(message, classify_network_error(message, cause), request=request)

    @property
    def kind(self) -> NetworkErrorType:
        return self._kind

    @property
    def retryable(self) -> bool:
        return is_retryable_network_error(self._kind)

    @property
    def suggestion(self) -> str:
        return suggestion_for(self._kind)

    @property
    def recommended_retry_delay(self) -> int:
        """Advisory wait in seconds; the executor's own backoff may differ."""
        return recommended_retry_delay(self._kind)

    @property
    def is_timeout(self) -> bool:
        return self._kind in (
            NetworkErrorType.CONNECTION_TIMEOUT,
            NetworkErrorType.READ_TIMEOUT,
        )

    @property
    def is_ssl_error(self) -> bool:
        return self._kind in (
            NetworkErrorType.SSL_CERTIFICATE,
            NetworkErrorType.SSL_HANDSHAKE,
        )

    @property
    def is_dns_error(self) -> bool:
        return self._kind is NetworkErrorType.DNS_RESOLUTION

    @property
    def is_connection_refused(self) -> bool:
        return self._kind is NetworkErrorType.CONNECTION_REFUSED

    @property
    def is_unreachable(self) -> bool:
        return self._kind in (
            NetworkErrorType.NETWORK_UNREACHABLE,
            NetworkErrorType.HOST_UNREACHABLE,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "type": "network_error",
                "error_type": self._kind.value,
                "is_retryable": self.retryable,
                "suggestion": self.suggestion,
                "recommended_retry_delay": self.recommended_retry_delay,
                "request": _request_dict(self.request),
            }
        )
        return data

    def __str__(self) -> str:
        return f"{self.message} (Type: {self._kind.value})"


class ApiError(XGateError):
    """The API answered with an error status (>= 400).

    Attributes:
        status_code: HTTP status code.
        body: Raw response body, possibly empty.
        parsed_body: The body decoded as a JSON object, or None.
        headers: Response headers (case-insensitive).
        request: The request that produced the response, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        request: Request | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.status_code = status_code
        self.body = body
        self.parsed_body = parse_error_body(body)
        self.headers: CIMultiDictProxy[str] = CIMultiDictProxy(CIMultiDict(headers or {}))
        self.request = request

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        *,
        request: Request | None = None,
        message: str | None = None,
    ) -> ApiError:
        """Build from a raw response. Never raises on a malformed body."""
        if message is None:
            message = extract_error_message(parse_error_body(body), status_code)
        return cls(
            message,
            status_code=status_code,
            body=body,
            headers=headers,
            request=request,
        )

    # -- status predicates -------------------------------------------------

    @property
    def kind(self) -> ApiErrorKind:
        return classify_status(self.status_code)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    @property
    def is_authentication_error(self) -> bool:
        return self.status_code == 401

    @property
    def is_authorization_error(self) -> bool:
        return self.status_code == 403

    @property
    def is_not_found_error(self) -> bool:
        return self.status_code == 404

    @property
    def is_validation_error(self) -> bool:
        return self.status_code == 422

    @property
    def is_rate_limit_error(self) -> bool:
        return self.status_code == 429

    @property
    def retryable(self) -> bool:
        return self.is_server_error or self.is_rate_limit_error

    @property
    def suggestion(self) -> str:
        if self.is_server_error:
            return "The server failed to process the request. Try again later."
        return _API_SUGGESTIONS.get(
            self.status_code, "Check the request and the API response body."
        )

    # -- body helpers ------------------------------------------------------

    @property
    def api_error_code(self) -> str | None:
        if not self.parsed_body:
            return None
        return self.parsed_body.get("code") or self.parsed_body.get("error_code")

    @property
    def error_details(self) -> Any:
        if not self.parsed_body:
            return None
        return self.parsed_body.get("details") or self.parsed_body.get("errors")

    def retry_after(self, now: float | None = None) -> int | None:
        """Seconds requested by the ``Retry-After`` header, if any."""
        return parse_retry_after(self.headers.get("Retry-After"), now)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "type": "api_error",
                "status_code": self.status_code,
                "api_error_code": self.api_error_code,
                "request": _request_dict(self.request),
                "response": {"body": self.body, "headers": dict(self.headers)},
                "error_data": self.parsed_body,
            }
        )
        return data

    def __str__(self) -> str:
        text = self.message
        if self.request is not None:
            text += f" [{self.request.describe()}]"
        if self.status_code:
            text += f" [{self.status_code}]"
        return text


class RateLimitError(ApiError):
    """The API returned 429 Too Many Requests.

    Attributes:
        rate_limit: Metadata from the ``*RateLimit*`` headers and body.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        rate_limit: RateLimitInfo | None = None,
        status_code: int = 429,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        request: Request | None = None,
    ) -> None:
        info = rate_limit or RateLimitInfo()
        super().__init__(
            message or info.describe(),
            status_code=status_code,
            body=body,
            headers=headers,
            request=request,
            context={"rate_limit_info": info.as_dict()},
        )
        self.rate_limit = info

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        *,
        request: Request | None = None,
        message: str | None = None,
    ) -> RateLimitError:
        info = RateLimitInfo.from_response(headers, parse_error_body(body))
        return cls(
            message,
            rate_limit=info,
            status_code=status_code,
            body=body,
            headers=headers,
            request=request,
        )

    @classmethod
    def from_info(
        cls,
        info: RateLimitInfo | Mapping[str, Any],
        message: str | None = None,
    ) -> RateLimitError:
        """Build from known values, e.g. for synthetic errors in tests."""
        if not isinstance(info, RateLimitInfo):
            info = RateLimitInfo.from_mapping(info)
        return cls(message, rate_limit=info)

    @classmethod
    def from_retry_after(cls, retry_after: int, message: str | None = None) -> RateLimitError:
        return cls(
            message or f"Rate limit exceeded. Retry after {retry_after} seconds",
            rate_limit=RateLimitInfo(retry_after=retry_after),
        )

    @classmethod
    def with_limit_info(
        cls,
        limit: int,
        remaining: int,
        reset_at: int,
        limit_type: str | None = None,
        message: str | None = None,
    ) -> RateLimitError:
        info = RateLimitInfo(
            limit=limit, remaining=remaining, reset_at=reset_at, limit_type=limit_type
        )
        return cls(message, rate_limit=info)

    def retry_after(self, now: float | None = None) -> int | None:
        return self.rate_limit.retry_after

    @property
    def has_retry_after(self) -> bool:
        return self.rate_limit.has_retry_after

    @property
    def limit(self) -> int | None:
        return self.rate_limit.limit

    @property
    def remaining(self) -> int | None:
        return self.rate_limit.remaining

    @property
    def reset_at(self) -> int | None:
        return self.rate_limit.reset_at

    @property
    def reset_datetime(self) -> datetime | None:
        return self.rate_limit.reset_datetime

    @property
    def limit_type(self) -> str | None:
        return self.rate_limit.limit_type

    @property
    def client_id(self) -> str | None:
        return self.rate_limit.client_id

    @property
    def is_exhausted(self) -> bool:
        return self.rate_limit.is_exhausted

    @property
    def usage_percent(self) -> float | None:
        return self.rate_limit.usage_percent

    def seconds_until_reset(self, now: float | None = None) -> int:
        return self.rate_limit.seconds_until_reset(now)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(self.rate_limit.as_dict())
        return data


class ValidationError(ApiError):
    """The API rejected the payload (422), or a local check failed.

    Attributes:
        errors: Field name -> list of messages. A body with only a flat
            message is stored under ``_general``.
        failed_rule: Rule that failed (``required``, ``format``, ``type``...).
            Errors parsed from an API response use ``api_validation``.
    """

    def __init__(
        self,
        message: str | None = None,
        *,
        errors: Mapping[str, Any] | None = None,
        failed_field: str | None = None,
        failed_value: Any = None,
        failed_rule: str | None = None,
        status_code: int = 422,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        request: Request | None = None,
    ) -> None:
        self.errors: dict[str, list[str]] = _normalize_errors(errors)
        self._failed_field = failed_field
        self._failed_value = failed_value
        self.failed_rule = failed_rule
        super().__init__(
            message or self._summarize(),
            status_code=status_code,
            body=body,
            headers=headers,
            request=request,
            context={
                "validation_errors": self.errors,
                "failed_field": self.failed_field,
                "failed_value": self.failed_value,
                "failed_rule": failed_rule,
            },
        )

    @classmethod
    def from_response(
        cls,
        status_code: int,
        body: str = "",
        headers: Mapping[str, str] | None = None,
        *,
        request: Request | None = None,
        message: str | None = None,
    ) -> ValidationError:
        data = parse_error_body(body)
        api_message = extract_error_message(data, status_code)
        return cls(
            message or f"Validation failed: {api_message}",
            errors=_validation_errors(data, api_message),
            failed_rule="api_validation",
            status_code=status_code,
            body=body,
            headers=headers,
            request=request,
        )

    @classmethod
    def required(cls, field: str, value: Any = None) -> ValidationError:
        return cls(
            f"The field '{field}' is required",
            errors={field: ["This field is required"]},
            failed_field=field,
            failed_value=value,
            failed_rule="required",
        )

    @classmethod
    def invalid_format(cls, field: str, value: Any, expected_format: str) -> ValidationError:
        return cls(
            f"The field '{field}' has invalid format. Expected: {expected_format}",
            errors={field: [f"Invalid format. Expected: {expected_format}"]},
            failed_field=field,
            failed_value=value,
            failed_rule="format",
        )

    @classmethod
    def invalid_type(cls, field: str, value: Any, expected_type: str) -> ValidationError:
        actual_type = type(value).__name__
        return cls(
            f"The field '{field}' must be of type {expected_type}, {actual_type} given",
            errors={field: [f"Must be of type {expected_type}, {actual_type} given"]},
            failed_field=field,
            failed_value=value,
            failed_rule="type",
        )

    @property
    def failed_field(self) -> str | None:
        """The field given at construction, else the first one with errors."""
        if self._failed_field is not None:
            return self._failed_field
        for field in self.errors:
            if field != "_general":
                return field
        return None

    @property
    def failed_value(self) -> Any:
        """The rejected value, masked when the field looks sensitive."""
        return mask_value(self.failed_field, self._failed_value)

    @property
    def is_required_field_error(self) -> bool:
        return self.failed_rule == "required" or _mentions(
            self.message, "required", "obrigatório"
        )

    @property
    def is_format_error(self) -> bool:
        return self.failed_rule in _FORMAT_RULES or _mentions(
            self.message, "format", "formato"
        )

    @property
    def is_type_error(self) -> bool:
        return self.failed_rule in _TYPE_RULES or _mentions(self.message, "type", "tipo")

    def field_errors(self, field: str) -> list[str]:
        return self.errors.get(field, [])

    def first_field_error(self, field: str) -> str | None:
        messages = self.field_errors(field)
        return messages[0] if messages else None

    def has_field_error(self, field: str) -> bool:
        return bool(self.errors.get(field))

    def all_errors(self) -> list[str]:
        return [message for messages in self.errors.values() for message in messages]

    def add_field_error(self, field: str, error: str) -> ValidationError:
        """Record one more message for ``field``; returns self for chaining."""
        self.errors.setdefault(field, []).append(str(error))
        self.context["validation_errors"] = self.errors
        return self

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "validation_errors": self.errors,
                "failed_field": self.failed_field,
                "failed_value": self.failed_value,
                "failed_rule": self.failed_rule,
                "error_count": len(self.all_errors()),
                "field_count": len(self.errors),
            }
        )
        return data

    def _summarize(self) -> str:
        if not self.errors:
            return "Validation failed"
        error_count = sum(len(messages) for messages in self.errors.values())
        if len(self.errors) == 1 and error_count == 1:
            field, messages = next(iter(self.errors.items()))
            return f"Validation failed for field '{field}': {messages[0]}"
        return (
            f"Validation failed for {len(self.errors)} field(s) "
            f"with {error_count} error(s)"
        )


# --------------------------------------------------------------------------- #
#  Response -> exception mapping
# --------------------------------------------------------------------------- #


def parse_error_body(body: str) -> dict[str, Any] | None:
    """Decode an error body, returning None unless it is a JSON object."""
    if not body:
        return None
    try:
        data = json.loads(body)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def extract_error_message(data: Mapping[str, Any] | None, status_code: int) -> str:
    """First string among the known message fields, else a generic message."""
    for key in ERROR_MESSAGE_FIELDS:
        value = (data or {}).get(key)
        if isinstance(value, str):
            return value
    return f"API error (HTTP {status_code})"


def error_from_response(
    status_code: int,
    body: str = "",
    headers: Mapping[str, str] | None = None,
    *,
    request: Request | None = None,
) -> ApiError:
    """Build the most specific :class:`ApiError` for an error response."""
    if status_code == 422:
        return ValidationError.from_response(status_code, body, headers, request=request)
    if status_code == 429:
        return RateLimitError.from_response(status_code, body, headers, request=request)
    return ApiError.from_response(status_code, body, headers, request=request)


def _validation_errors(
    data: Mapping[str, Any] | None, api_message: str
) -> dict[str, list[str]]:
    if data:
        for key in ("errors", "validation_errors"):
            raw = data.get(key)
            if isinstance(raw, dict) and raw:
                return _normalize_errors(raw)
    # A message that already says "validation" is kept as-is
    if "validation" in api_message.lower():
        return {"_general": [api_message]}
    return {"_general": [f"Validation failed: {api_message}"]}


def _normalize_errors(errors: Mapping[str, Any] | None) -> dict[str, list[str]]:
    """Field -> list of message strings, whatever shape the messages came in."""
    normalized: dict[str, list[str]] = {}
    for field, messages in (errors or {}).items():
        if isinstance(messages, (list, tuple)):
            normalized[str(field)] = [str(message) for message in messages]
        else:
            normalized[str(field)] = [str(messages)]
    return normalized


def _mentions(text: str, *words: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in words)


def _request_dict(request: Request | None) -> dict[str, str] | None:
    if request is None:
        return None
    return {"method": request.method, "uri": request.url}
