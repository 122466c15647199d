"""Authentication handler for the XGATE API."""

from __future__ import annotations

import logging

from ._retry import RequestExecutor
from ._transport import Request
from .const import AUTH_TOKEN_ENDPOINT
from .exceptions import ApiError, AuthenticationError, NetworkError

_LOGGER = logging.getLogger(__name__)


class XGateAuth:
    """Obtains and holds the bearer token for API calls.

    Lifecycle:
        1. Call ``authenticate(email, password)`` to obtain a token.
        2. Use ``get_headers()`` to build the ``Authorization`` header.
        3. On 401 the client calls ``mark_unauthenticated()``; log in again.

    The token lives in memory only.
    """

    def __init__(self, executor: RequestExecutor) -> None:
        self._executor = executor
        self._token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    async def authenticate(self, email: str, password: str) -> None:
        """POST credentials to ``/auth/token`` and store the returned token.

        Raises:
            AuthenticationError: On invalid credentials, a failed login or
                a response without a token. Network failures are chained.
        """
        request = Request(
            "POST",
            AUTH_TOKEN_ENDPOINT,
            json={"email": email, "password": password},
        )
        try:
            response = await self._executor.execute(request)
        except ApiError as err:
            if err.is_authentication_error:
                raise AuthenticationError(
                    f"Invalid credentials for {email}",
                    context={"email": email, "status_code": err.status_code},
                ) from err
            raise AuthenticationError(
                f"Login failed: HTTP {err.status_code} - {err.message}",
                context={"status_code": err.status_code},
            ) from err
        except NetworkError as err:
            raise AuthenticationError(
                f"Network error during authentication: {err.message}"
            ) from err

        try:
            data = response.json()
        except ValueError as err:
            raise AuthenticationError("Login response is not valid JSON") from err
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError(
                "Access token not found in response",
                context={"status_code": response.status},
            )
        self._token = str(token)
        _LOGGER.debug("Authenticated as %s", email)

    def get_headers(self) -> dict[str, str]:
        """Build the authorization header.

        Raises:
            AuthenticationError: If not yet authenticated.
        """
        if self._token is None:
            raise AuthenticationError("Not authenticated. Call authenticate() first.")
        return {"Authorization": f"Bearer {self._token}"}

    def mark_unauthenticated(self) -> None:
        """Forget the token (e.g. after a 401)."""
        self._token = None
