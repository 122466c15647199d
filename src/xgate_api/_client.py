"""XGATE API client."""

from __future__ import annotations

from typing import Any, Mapping

import aiohttp

from ._auth import XGateAuth
from ._retry import RequestExecutor, RetryPolicy
from ._transport import AiohttpTransport, Request, Transport
from .const import (
    BASE_URL,
    COMPANY_CRYPTOCURRENCIES_ENDPOINT,
    COMPANY_CURRENCIES_ENDPOINT,
    CRYPTO_RATE_ENDPOINT,
    CUSTOMER_DETAIL_ENDPOINT,
    CUSTOMER_ENDPOINT,
    DEFAULT_TIMEOUT_SECONDS,
    DEPOSIT_CURRENCIES_ENDPOINT,
    DEPOSIT_DETAIL_ENDPOINT,
    DEPOSITS_ENDPOINT,
    DEPOSITS_SEARCH_ENDPOINT,
    EXCHANGE_RATE_ENDPOINT,
    EXCHANGE_RATE_HISTORY_ENDPOINT,
    PIX_KEY_DETAIL_ENDPOINT,
    PIX_KEYS_ENDPOINT,
    PIX_KEYS_SEARCH_ENDPOINT,
    TETHER_CONVERSION_ENDPOINT,
    USER_AGENT,
    WITHDRAWAL_CURRENCIES_ENDPOINT,
    WITHDRAWAL_DETAIL_ENDPOINT,
    WITHDRAWALS_ENDPOINT,
    WITHDRAWALS_SEARCH_ENDPOINT,
)
from .exceptions import ApiError, XGateError


class XGateClient:
    """Async client for the XGATE payments API.

    Usage::

        async with aiohttp.ClientSession() as session:
            client = XGateClient(session)
            await client.authenticate("user@example.com", "password")
            rate = await client.async_get_exchange_rate("BRL", "USDT")

    If no session is provided, the client creates and manages its own.
    The caller is responsible for calling ``async_close()`` when done
    (or use the client as an async context manager).

    Failed calls are retried according to ``retry_policy``; see
    :class:`RetryPolicy`. A custom ``transport`` replaces the aiohttp one
    (useful for tests).
    """

    def __init__(
        self,
        session: aiohttp.ClientSession | None = None,
        *,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy | None = None,
        headers: Mapping[str, str] | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._owns_session = session is None and transport is None
        self._session = session
        if transport is None:
            if self._session is None:
                self._session = aiohttp.ClientSession()
            transport = AiohttpTransport(
                self._session,
                base_url,
                timeout=timeout,
                default_headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                    **(headers or {}),
                },
            )
        self._executor = RequestExecutor(transport, retry_policy)
        self._auth = XGateAuth(self._executor)

    async def __aenter__(self) -> XGateClient:
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.async_close()

    @property
    def authenticated(self) -> bool:
        """Whether the client holds an access token."""
        return self._auth.is_authenticated

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._executor.policy

    # ------------------------------------------------------------------ #
    #  Authentication
    # ------------------------------------------------------------------ #

    async def authenticate(self, email: str, password: str) -> None:
        """Log in and keep the access token for subsequent requests.

        Raises:
            AuthenticationError: On invalid credentials or a failed login.
        """
        await self._auth.authenticate(email, password)

    def logout(self) -> None:
        """Drop the access token."""
        self._auth.mark_unauthenticated()

    async def async_close(self) -> None:
        """Close the HTTP session if the client owns it."""
        if self._owns_session and self._session is not None:
            await self._session.close()

    # ------------------------------------------------------------------ #
    #  Generic verbs
    # ------------------------------------------------------------------ #

    async def get(self, path: str, *, params: Mapping[str, Any] | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, json_body: Any = None) -> Any:
        return await self._request("POST", path, json_body=json_body)

    async def put(self, path: str, json_body: Any = None) -> Any:
        return await self._request("PUT", path, json_body=json_body)

    async def patch(self, path: str, json_body: Any = None) -> Any:
        return await self._request("PATCH", path, json_body=json_body)

    async def delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    # ------------------------------------------------------------------ #
    #  Customers
    # ------------------------------------------------------------------ #

    async def async_create_customer(
        self,
        name: str,
        email: str,
        *,
        phone: str | None = None,
        document: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"name": name, "email": email}
        if phone is not None:
            body["phone"] = phone
        if document is not None:
            body["document"] = document
        if metadata:
            body["metadata"] = dict(metadata)
        data = await self._request("POST", CUSTOMER_ENDPOINT, json_body=body)
        # The API nests the created customer under "customer"
        return data.get("customer", data) if isinstance(data, dict) else data

    async def async_get_customer(self, customer_id: str) -> dict[str, Any]:
        url = CUSTOMER_DETAIL_ENDPOINT.format(customer_id=customer_id)
        return await self._request("GET", url)

    async def async_update_customer(
        self, customer_id: str, update: Mapping[str, Any]
    ) -> dict[str, Any]:
        url = CUSTOMER_DETAIL_ENDPOINT.format(customer_id=customer_id)
        return await self._request("PUT", url, json_body=dict(update))

    async def async_delete_customer(self, customer_id: str) -> None:
        url = CUSTOMER_DETAIL_ENDPOINT.format(customer_id=customer_id)
        await self._request("DELETE", url)

    # ------------------------------------------------------------------ #
    #  PIX keys
    # ------------------------------------------------------------------ #

    async def async_register_pix_key(
        self, key_type: str, key: str, *, customer_id: str | None = None
    ) -> dict[str, Any]:
        body: dict[str, Any] = {"type": key_type, "key": key}
        if customer_id is not None:
            body["customer_id"] = customer_id
        return await self._request("POST", PIX_KEYS_ENDPOINT, json_body=body)

    async def async_get_pix_key(self, pix_key_id: str) -> dict[str, Any]:
        url = PIX_KEY_DETAIL_ENDPOINT.format(pix_key_id=pix_key_id)
        return await self._request("GET", url)

    async def async_update_pix_key(
        self, pix_key_id: str, update: Mapping[str, Any]
    ) -> dict[str, Any]:
        url = PIX_KEY_DETAIL_ENDPOINT.format(pix_key_id=pix_key_id)
        return await self._request("PUT", url, json_body=dict(update))

    async def async_delete_pix_key(self, pix_key_id: str) -> None:
        url = PIX_KEY_DETAIL_ENDPOINT.format(pix_key_id=pix_key_id)
        await self._request("DELETE", url)

    async def async_list_pix_keys(
        self, *, page: int = 1, limit: int = 20, filters: Mapping[str, Any] | None = None
    ) -> Any:
        return await self._request(
            "GET", PIX_KEYS_ENDPOINT, params=_page_params(page, limit, filters)
        )

    async def async_search_pix_keys(self, query: str, *, limit: int = 10) -> Any:
        return await self._request(
            "GET", PIX_KEYS_SEARCH_ENDPOINT, params={"q": query, "limit": limit}
        )

    # ------------------------------------------------------------------ #
    #  Deposits
    # ------------------------------------------------------------------ #

    async def async_list_deposit_currencies(self) -> Any:
        return await self._request("GET", DEPOSIT_CURRENCIES_ENDPOINT)

    async def async_create_deposit(self, deposit: Mapping[str, Any]) -> dict[str, Any]:
        return await self._request("POST", DEPOSITS_ENDPOINT, json_body=dict(deposit))

    async def async_get_deposit(self, deposit_id: str) -> dict[str, Any]:
        url = DEPOSIT_DETAIL_ENDPOINT.format(deposit_id=deposit_id)
        return await self._request("GET", url)

    async def async_list_deposits(
        self, *, page: int = 1, limit: int = 20, filters: Mapping[str, Any] | None = None
    ) -> Any:
        return await self._request(
            "GET", DEPOSITS_ENDPOINT, params=_page_params(page, limit, filters)
        )

    async def async_search_deposits(self, query: str, *, limit: int = 20) -> Any:
        return await self._request(
            "GET", DEPOSITS_SEARCH_ENDPOINT, params={"q": query, "limit": limit}
        )

    # ------------------------------------------------------------------ #
    #  Withdrawals
    # ------------------------------------------------------------------ #

    async def async_list_withdrawal_currencies(self) -> Any:
        return await self._request("GET", WITHDRAWAL_CURRENCIES_ENDPOINT)

    async def async_create_withdrawal(
        self, withdrawal: Mapping[str, Any]
    ) -> dict[str, Any]:
        return await self._request(
            "POST", WITHDRAWALS_ENDPOINT, json_body=dict(withdrawal)
        )

    async def async_get_withdrawal(self, withdrawal_id: str) -> dict[str, Any]:
        url = WITHDRAWAL_DETAIL_ENDPOINT.format(withdrawal_id=withdrawal_id)
        return await self._request("GET", url)

    async def async_list_withdrawals(
        self, *, page: int = 1, limit: int = 20, filters: Mapping[str, Any] | None = None
    ) -> Any:
        return await self._request(
            "GET", WITHDRAWALS_ENDPOINT, params=_page_params(page, limit, filters)
        )

    async def async_search_withdrawals(self, query: str, *, limit: int = 20) -> Any:
        return await self._request(
            "GET", WITHDRAWALS_SEARCH_ENDPOINT, params={"q": query, "limit": limit}
        )

    # ------------------------------------------------------------------ #
    #  Exchange rates
    # ------------------------------------------------------------------ #

    async def async_get_exchange_rate(
        self, from_currency: str, to_currency: str
    ) -> dict[str, Any]:
        url = EXCHANGE_RATE_ENDPOINT.format(
            from_currency=from_currency.upper(), to_currency=to_currency.upper()
        )
        return await self._request("GET", url)

    async def async_get_crypto_rate(
        self, crypto_currency: str, fiat_currency: str
    ) -> dict[str, Any]:
        url = CRYPTO_RATE_ENDPOINT.format(
            crypto_currency=crypto_currency.upper(), fiat_currency=fiat_currency.upper()
        )
        return await self._request("GET", url)

    async def async_get_historical_rates(
        self,
        from_currency: str,
        to_currency: str,
        *,
        start_date: str,
        end_date: str,
        interval: str = "daily",
    ) -> Any:
        """Fetch historical rates; dates are ISO ``YYYY-MM-DD`` strings."""
        url = EXCHANGE_RATE_HISTORY_ENDPOINT.format(
            from_currency=from_currency.upper(), to_currency=to_currency.upper()
        )
        params = {"start_date": start_date, "end_date": end_date, "interval": interval}
        return await self._request("GET", url, params=params)

    async def async_convert_amount(
        self, amount: float, from_currency: str, to_currency: str = "USDT"
    ) -> dict[str, Any]:
        """Convert ``amount`` of a company currency into crypto.

        Looks the currency up in the company currency list, then asks the
        conversion endpoint for a quote.

        Raises:
            XGateError: If ``from_currency`` is not a company currency.
        """
        currencies = await self.async_list_company_currencies()
        currency = next(
            (
                c
                for c in currencies or []
                if str(c.get("name", "")).upper() == from_currency.upper()
            ),
            None,
        )
        if currency is None:
            raise XGateError(
                f"Currency '{from_currency}' not found in company currencies",
                context={"to_currency": to_currency.upper()},
            )
        return await self.async_convert_to_tether(amount, currency)

    # ------------------------------------------------------------------ #
    #  Crypto payments
    # ------------------------------------------------------------------ #

    async def async_list_company_currencies(self) -> Any:
        return await self._request("GET", COMPANY_CURRENCIES_ENDPOINT)

    async def async_list_company_cryptocurrencies(self) -> Any:
        return await self._request("GET", COMPANY_CRYPTOCURRENCIES_ENDPOINT)

    async def async_convert_to_tether(
        self, amount: float, currency: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Quote ``amount`` of a company currency in USDT.

        ``currency`` is one entry of :meth:`async_list_company_currencies`.
        """
        body = {"amount": amount, "currency": dict(currency)}
        return await self._request("POST", TETHER_CONVERSION_ENDPOINT, json_body=body)

    # ------------------------------------------------------------------ #
    #  Internal HTTP layer
    # ------------------------------------------------------------------ #

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Execute an authenticated API request and decode the JSON body.

        Raises:
            AuthenticationError: If the client is not authenticated.
            NetworkError: On transport failures that outlived the retries.
            RateLimitError: On 429 responses that could not be waited out.
            ValidationError: On 422 responses.
            ApiError: On other non-2xx responses.
            XGateError: If a successful response carries a body that is not JSON.
        """
        headers = self._auth.get_headers()
        request = Request(
            method,
            path,
            params={k: str(v) for k, v in params.items()} if params else None,
            json=json_body,
            headers=headers,
        )

        try:
            response = await self._executor.execute(request)
        except ApiError as err:
            if err.is_authentication_error:
                self._auth.mark_unauthenticated()
            raise

        try:
            return response.json()
        except ValueError as err:
            raise XGateError(
                f"Invalid JSON in response: HTTP {response.status}",
                context={
                    "status_code": response.status,
                    "body": response.body,
                    "request": request.describe(),
                },
            ) from err


def _page_params(
    page: int, limit: int, filters: Mapping[str, Any] | None
) -> dict[str, Any]:
    params: dict[str, Any] = {"page": page, "limit": limit}
    if filters:
        params.update(filters)
    return params
