"""User-facing error messages, localized and scrubbed of personal data."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Sequence

from ._classify import NetworkErrorType
from .exceptions import (
    ApiError,
    AuthenticationError,
    NetworkError,
    RateLimitError,
    ValidationError,
    mask_value,
)

_LOGGER = logging.getLogger(__name__)

SEVERITY_LEVELS: dict[str, int] = {
    "critical": logging.CRITICAL,
    "high": logging.ERROR,
    "medium": logging.WARNING,
    "low": logging.INFO,
    "debug": logging.DEBUG,
}

# Order matters: card numbers before the shorter document patterns.
_PII_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b"), "[EMAIL]"),
    (re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"), "[CARD]"),
    (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "[SSN]"),
    (re.compile(r"\b\d{3}\.\d{3}\.\d{3}-\d{2}\b"), "[CPF]"),
    (re.compile(r"\b\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}\b"), "[CNPJ]"),
)

_TEMPLATES: dict[str, dict[str, dict[str, str]]] = {
    "en": {
        "validation": {
            "required": "The field '{field}' is required",
            "format": "The field '{field}' has invalid format",
            "type": "The field '{field}' must be of the correct type",
            "range": "The field '{field}' value is out of range",
            "pattern": "The field '{field}' doesn't match the required pattern",
            "email": "The field '{field}' must be a valid email address",
            "url": "The field '{field}' must be a valid URL",
            "numeric": "The field '{field}' must be numeric",
            "default": "Validation failed for field '{field}'",
        },
        "api": {
            "server_error": "Server error occurred. Please try again later. (Status: {status_code})",
            "rate_limit": "Too many requests. Please wait before trying again. (Status: {status_code})",
            "validation": "Request validation failed: {api_message}",
            "unauthorized": "Authentication required. Please check your credentials.",
            "forbidden": "Access denied. You don't have permission for this operation.",
            "not_found": "The requested resource was not found.",
            "client_error": "Request error: {api_message} (Status: {status_code})",
            "default": "API error: {api_message} (Status: {status_code})",
        },
        "network": {
            "connection_timeout": "Connection timeout. Please check your internet connection.",
            "read_timeout": "Request timeout. The server took too long to respond.",
            "connection_refused": "Connection refused. The service may be unavailable.",
            "dns_resolution": "DNS resolution failed. Please check the server address.",
            "ssl_certificate": "SSL certificate error. Please verify the certificate.",
            "ssl_handshake": "SSL handshake failed. Please check security settings.",
            "network_unreachable": "Network unreachable. Please check your connection.",
            "host_unreachable": "Host unreachable. Please verify the server address.",
            "default": "Network error: {original_message}",
        },
        "general": {
            "authentication": "Authentication failed: {message}",
            "rate_limit_wait": " Retry after {seconds} seconds.",
            "no_errors": "No errors found",
            "multiple_errors_header": "Found {count} error(s):",
            "more_errors": "... and {count} more error(s)",
            "context_details": "Additional details: {details}",
        },
    },
    "pt": {
        "validation": {
            "required": "O campo '{field}' é obrigatório",
            "format": "O campo '{field}' possui formato inválido",
            "type": "O campo '{field}' deve ser do tipo correto",
            "range": "O valor do campo '{field}' está fora do intervalo permitido",
            "pattern": "O campo '{field}' não atende ao padrão exigido",
            "email": "O campo '{field}' deve ser um endereço de email válido",
            "url": "O campo '{field}' deve ser uma URL válida",
            "numeric": "O campo '{field}' deve ser numérico",
            "default": "Falha na validação do campo '{field}'",
        },
        "api": {
            "server_error": "Erro no servidor. Tente novamente mais tarde. (Status: {status_code})",
            "rate_limit": "Muitas requisições. Aguarde antes de tentar novamente. (Status: {status_code})",
            "validation": "Falha na validação da requisição: {api_message}",
            "unauthorized": "Autenticação necessária. Verifique suas credenciais.",
            "forbidden": "Acesso negado. Você não tem permissão para esta operação.",
            "not_found": "O recurso solicitado não foi encontrado.",
            "client_error": "Erro na requisição: {api_message} (Status: {status_code})",
            "default": "Erro da API: {api_message} (Status: {status_code})",
        },
        "network": {
            "connection_timeout": "Timeout de conexão. Verifique sua conexão com a internet.",
            "read_timeout": "Timeout da requisição. O servidor demorou muito para responder.",
            "connection_refused": "Conexão recusada. O serviço pode estar indisponível.",
            "dns_resolution": "Falha na resolução DNS. Verifique o endereço do servidor.",
            "ssl_certificate": "Erro no certificado SSL. Verifique o certificado.",
            "ssl_handshake": "Falha no handshake SSL. Verifique as configurações de segurança.",
            "network_unreachable": "Rede inalcançável. Verifique sua conexão.",
            "host_unreachable": "Host inalcançável. Verifique o endereço do servidor.",
            "default": "Erro de rede: {original_message}",
        },
        "general": {
            "authentication": "Falha na autenticação: {message}",
            "rate_limit_wait": " Tente novamente em {seconds} segundos.",
            "no_errors": "Nenhum erro encontrado",
            "multiple_errors_header": "Encontrado(s) {count} erro(s):",
            "more_errors": "... e mais {count} erro(s)",
            "context_details": "Detalhes adicionais: {details}",
        },
    },
}

DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = tuple(_TEMPLATES)


def sanitize_message(message: str) -> str:
    """Mask emails, card numbers and SSN/CPF/CNPJ numbers in ``message``."""
    for pattern, replacement in _PII_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class ErrorMessageHandler:
    """Turns classified exceptions into messages fit for end users.

    Messages are looked up by error kind or status code in per-locale
    template tables (``en`` and ``pt``); unknown locales fall back to
    English. Anything interpolated from the API is passed through
    :func:`sanitize_message` first.
    """

    def __init__(
        self, locale: str = DEFAULT_LOCALE, logger: logging.Logger | None = None
    ) -> None:
        self.locale = locale
        self._logger = logger or _LOGGER

    def format_validation_error(
        self,
        field: str,
        rule: str,
        value: Any = None,
        parameters: Mapping[str, Any] | None = None,
    ) -> str:
        template = self._template("validation", rule, fallback="default")
        return _interpolate(
            template,
            {"field": field, "value": mask_value(field, value), **(parameters or {})},
        )

    def format_api_error(
        self, status_code: int, api_message: str, error_code: str | None = None
    ) -> str:
        if status_code >= 500:
            key = "server_error"
        elif status_code == 429:
            key = "rate_limit"
        elif status_code == 422:
            key = "validation"
        elif status_code == 401:
            key = "unauthorized"
        elif status_code == 403:
            key = "forbidden"
        elif status_code == 404:
            key = "not_found"
        elif status_code >= 400:
            key = "client_error"
        else:
            key = "default"
        return _interpolate(
            self._template("api", key),
            {
                "status_code": status_code,
                "api_message": sanitize_message(api_message),
                "error_code": error_code or "",
            },
        )

    def format_network_error(
        self, kind: NetworkErrorType | str, original_message: str
    ) -> str:
        key = kind.value if isinstance(kind, NetworkErrorType) else kind
        return _interpolate(
            self._template("network", key, fallback="default"),
            {"original_message": sanitize_message(original_message)},
        )

    def user_friendly_message(
        self, exc: BaseException, include_details: bool = False
    ) -> str:
        if isinstance(exc, ValidationError):
            message = self._validation_message(exc)
        elif isinstance(exc, RateLimitError):
            message = self.format_api_error(exc.status_code, exc.message)
            if exc.has_retry_after:
                message += _interpolate(
                    self._template("general", "rate_limit_wait"),
                    {"seconds": exc.rate_limit.retry_after},
                )
        elif isinstance(exc, ApiError):
            message = self.format_api_error(
                exc.status_code, exc.message, exc.api_error_code
            )
        elif isinstance(exc, NetworkError):
            message = self.format_network_error(exc.kind, exc.message)
        elif isinstance(exc, AuthenticationError):
            message = _interpolate(
                self._template("general", "authentication"),
                {"message": sanitize_message(exc.message)},
            )
        else:
            message = sanitize_message(str(exc))

        context = getattr(exc, "context", None)
        if include_details and context:
            details = ", ".join(
                f"{key}: {mask_value(key, value)}" for key, value in context.items()
            )
            message += " " + _interpolate(
                self._template("general", "context_details"), {"details": details}
            )
        return message

    def aggregate_errors(
        self, errors: Sequence[BaseException], max_display: int = 5
    ) -> str:
        if not errors:
            return self._template("general", "no_errors")
        lines = [
            _interpolate(
                self._template("general", "multiple_errors_header"),
                {"count": len(errors)},
            )
        ]
        lines.extend(
            f"  {i}. {self.user_friendly_message(exc)}"
            for i, exc in enumerate(errors[:max_display], start=1)
        )
        if len(errors) > max_display:
            lines.append(
                _interpolate(
                    self._template("general", "more_errors"),
                    {"count": len(errors) - max_display},
                )
            )
        return "\n".join(lines)

    def log_exception(
        self,
        exc: BaseException,
        extra_context: Mapping[str, Any] | None = None,
        severity: str = "medium",
    ) -> None:
        """Log the friendly message at the level mapped from ``severity``."""
        level = SEVERITY_LEVELS.get(severity, logging.ERROR)
        details: dict[str, Any] = {"exception_class": type(exc).__name__}
        to_dict = getattr(exc, "to_dict", None)
        if callable(to_dict):
            details.update(to_dict())
        if extra_context:
            details.update(extra_context)
        self._logger.log(level, "%s | %s", self.user_friendly_message(exc), details)

    def _validation_message(self, exc: ValidationError) -> str:
        fields = [field for field in exc.errors if field != "_general"]
        if not fields:
            return self.format_api_error(exc.status_code, exc.message)
        return "; ".join(
            f"{self.format_validation_error(field, 'default')}: "
            f"{sanitize_message(', '.join(exc.errors[field]))}"
            for field in fields
        )

    def _template(self, category: str, key: str, fallback: str | None = None) -> str:
        table = _TEMPLATES.get(self.locale, _TEMPLATES[DEFAULT_LOCALE])[category]
        if key in table:
            return table[key]
        if fallback is not None:
            return table[fallback]
        return key


def _interpolate(template: str, values: Mapping[str, Any]) -> str:
    for key, value in values.items():
        template = template.replace("{" + key + "}", str(value))
    return template
