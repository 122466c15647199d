"""HTTP transport seam between the retry executor and aiohttp."""

from __future__ import annotations

import asyncio
import errno
import json
import logging
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

import aiohttp
from multidict import CIMultiDict, CIMultiDictProxy

from .const import SENSITIVE_BODY_FIELDS, SENSITIVE_HEADERS

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Request:
    """A single API call, independent of the HTTP library."""

    method: str
    url: str
    params: Mapping[str, str] | None = None
    json: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        return f"{self.method} {self.url}"


@dataclass(frozen=True)
class Response:
    """A fully read HTTP response."""

    status: int
    headers: CIMultiDictProxy[str] = field(
        default_factory=lambda: CIMultiDictProxy(CIMultiDict())
    )
    body: str = ""

    @classmethod
    def build(
        cls, status: int, body: str = "", headers: Mapping[str, str] | None = None
    ) -> Response:
        """Convenience constructor accepting a plain header mapping."""
        return cls(
            status=status,
            headers=CIMultiDictProxy(CIMultiDict(headers or {})),
            body=body,
        )

    @property
    def ok(self) -> bool:
        return self.status < 400

    def json(self) -> Any:
        """Decode the body as JSON. An empty body decodes to None."""
        if not self.body:
            return None
        return json.loads(self.body)


class TransportError(Exception):
    """The transport could not complete a request.

    Attributes:
        response: The HTTP response, if one was received before the failure.
        cause: The underlying library exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        response: Response | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.response = response
        self.cause = cause


Transport = Callable[[Request], Awaitable[Response]]


def mask_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        name: "***" if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def mask_body(body: Any) -> Any:
    if not isinstance(body, dict):
        return body
    return {
        key: "***" if key in SENSITIVE_BODY_FIELDS else value
        for key, value in body.items()
    }


class AiohttpTransport:
    """Sends :class:`Request` objects through an ``aiohttp.ClientSession``.

    Every ``aiohttp`` failure is converted into a :class:`TransportError`
    whose message names the failure in terms the error classifier
    understands (timeout, DNS, refused, SSL, unreachable).
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        *,
        timeout: float,
        default_headers: Mapping[str, str] | None = None,
    ) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._default_headers = dict(default_headers or {})

    def build_url(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._base_url}/{url.lstrip('/')}"

    async def __call__(self, request: Request) -> Response:
        url = self.build_url(request.url)
        headers = {**self._default_headers, **request.headers}

        kwargs: dict[str, Any] = {"headers": headers, "timeout": self._timeout}
        if request.params:
            kwargs["params"] = dict(request.params)
        if request.json is not None:
            kwargs["json"] = request.json

        _LOGGER.debug(
            "HTTP request %s %s headers=%s body=%s",
            request.method,
            url,
            mask_headers(headers),
            mask_body(request.json),
        )
        start = time.monotonic()
        try:
            async with self._session.request(request.method, url, **kwargs) as resp:
                body = await resp.text(errors="replace")
                response = Response(status=resp.status, headers=resp.headers, body=body)
        except asyncio.TimeoutError as err:
            raise TransportError(self._timeout_message(err), cause=err) from err
        except aiohttp.ClientConnectorCertificateError as err:
            raise TransportError(
                f"SSL certificate verification failed: {err}", cause=err
            ) from err
        except aiohttp.ClientSSLError as err:
            raise TransportError(f"SSL handshake failed: {err}", cause=err) from err
        except aiohttp.ClientConnectorError as err:
            raise TransportError(_connector_message(err), cause=err) from err
        except aiohttp.ClientError as err:
            raise TransportError(f"Connection error: {err}", cause=err) from err

        _LOGGER.debug(
            "HTTP response %s %s -> %s in %.2f ms",
            request.method,
            url,
            response.status,
            (time.monotonic() - start) * 1000,
        )
        return response

    def _timeout_message(self, err: BaseException) -> str:
        text = str(err)
        if "connect" in text.lower():
            return f"Connection timeout: {text}"
        if text:
            return f"Read timeout: {text}"
        return f"Request timed out after {self._timeout.total} seconds"


def _connector_message(err: aiohttp.ClientConnectorError) -> str:
    """Describe a connect failure by the OS error behind it."""
    os_error = err.os_error
    if isinstance(os_error, socket.gaierror):
        return f"DNS resolution failed: {err}"
    code = getattr(os_error, "errno", None)
    if code == errno.ENETUNREACH:
        return f"Network unreachable: {err}"
    if code == errno.EHOSTUNREACH:
        return f"Host unreachable: {err}"
    if code == errno.ECONNREFUSED:
        return f"Connection refused: {err}"
    return f"Connection failed: {err}"
