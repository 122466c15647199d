"""Retry policy and the request executor that applies it."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from ._transport import Request, Response, Transport, TransportError
from .const import (
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RATE_LIMIT_CEILING_SECONDS,
)
from .exceptions import (
    ApiError,
    NetworkError,
    RateLimitError,
    XGateError,
    error_from_response,
)

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """When and how long to wait before re-sending a failed request.

    Attributes:
        max_attempts: Total attempts per call, the first one included.
        backoff_base: Delay before the second attempt; doubles after that.
        backoff_max: Upper bound for the exponential delay.
        rate_limit_ceiling: Longest ``Retry-After`` the executor will honor.
            Longer waits are surfaced to the caller as a RateLimitError.
        retry_on_server_errors: Retry 5xx responses.
        deadline: Total seconds one call may take, waits included.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_max: float = DEFAULT_BACKOFF_MAX_SECONDS
    rate_limit_ceiling: int = DEFAULT_RATE_LIMIT_CEILING_SECONDS
    retry_on_server_errors: bool = True
    deadline: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ValueError("backoff delays must not be negative")

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay after failed attempt number ``attempt``."""
        return min(self.backoff_max, self.backoff_base * 2 ** (attempt - 1))

    def delay_for(self, error: XGateError, attempt: int, now: float) -> float | None:
        """Seconds to wait before the next attempt, or None to give up."""
        if not error.retryable or attempt >= self.max_attempts:
            return None
        if isinstance(error, RateLimitError):
            return self._rate_limit_delay(error, attempt, now)
        if isinstance(error, ApiError):
            if error.is_server_error and self.retry_on_server_errors:
                return self.backoff_delay(attempt)
            return None
        if isinstance(error, NetworkError):
            return self.backoff_delay(attempt)
        return None

    def _rate_limit_delay(
        self, error: RateLimitError, attempt: int, now: float
    ) -> float | None:
        info = error.rate_limit
        if info.has_retry_after:
            if info.retry_after > self.rate_limit_ceiling:
                return None
            return float(info.retry_after)
        if info.retry_after == 0:
            return self.backoff_delay(attempt)
        if info.reset_at is not None:
            wait = info.seconds_until_reset(now)
            if wait == 0:
                return self.backoff_delay(attempt)
            if wait <= self.rate_limit_ceiling:
                return float(wait)
        return None


@dataclass
class RetryAttempt:
    """Bookkeeping for one logical call."""

    max_attempts: int
    number: int = 0
    last_error: XGateError | None = None

    def next(self) -> int:
        self.number += 1
        return self.number


class RequestExecutor:
    """Sends a request through a transport, retrying per a :class:`RetryPolicy`.

    Transport failures and error responses are turned into classified
    exceptions before the policy sees them. When the policy gives up, the
    last classified exception is raised as-is. The executor keeps no state
    between calls and can be shared by concurrent tasks.
    """

    def __init__(
        self,
        transport: Transport,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._logger = logger or _LOGGER

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def execute(self, request: Request) -> Response:
        """Send ``request`` and return the first successful response.

        Raises:
            NetworkError: The API could not be reached.
            RateLimitError: 429 that could not be waited out.
            ValidationError: 422 response.
            ApiError: Any other error response.
        """
        deadline = self._policy.deadline
        if deadline is None:
            return await self._run(request, None)

        try:
            return await asyncio.wait_for(
                self._run(request, self._clock() + deadline), timeout=deadline
            )
        except asyncio.TimeoutError as err:
            raise NetworkError.from_failure(
                f"Request timed out after a deadline of {deadline} seconds",
                request=request,
                cause=err,
            ) from err

    async def _run(self, request: Request, deadline_at: float | None) -> Response:
        attempt = RetryAttempt(max_attempts=self._policy.max_attempts)
        while True:
            number = attempt.next()
            cause: BaseException | None = None
            try:
                response = await self._transport(request)
            except TransportError as err:
                error = self._from_transport_error(request, err)
                cause = err
            except asyncio.TimeoutError as err:
                error = NetworkError.from_failure(
                    "Request timed out", request=request, cause=err
                )
                cause = err
            else:
                if response.ok:
                    return response
                error = error_from_response(
                    response.status, response.body, response.headers, request=request
                )
            attempt.last_error = error

            now = self._clock()
            delay = self._policy.delay_for(error, number, now)
            if delay is not None and deadline_at is not None and now + delay > deadline_at:
                self._logger.debug(
                    "Not retrying %s: waiting %.1f seconds would pass the deadline",
                    request.describe(),
                    delay,
                )
                delay = None
            if delay is None:
                if number > 1:
                    self._logger.warning(
                        "Giving up on %s after %d attempt(s): %s",
                        request.describe(),
                        number,
                        error.message,
                    )
                raise error from cause

            self._log_retry(request, error, number, delay)
            await self._sleep(delay)

    @staticmethod
    def _from_transport_error(request: Request, err: TransportError) -> XGateError:
        if err.response is not None:
            return error_from_response(
                err.response.status,
                err.response.body,
                err.response.headers,
                request=request,
            )
        return NetworkError.from_failure(err.message, request=request, cause=err.cause)

    def _log_retry(
        self, request: Request, error: XGateError, number: int, delay: float
    ) -> None:
        if isinstance(error, RateLimitError):
            self._logger.info(
                "Rate limit hit, waiting %s seconds before retry (attempt %d/%d)",
                int(delay) if delay == int(delay) else round(delay, 2),
                number,
                self._policy.max_attempts,
            )
            return
        self._logger.warning(
            "Retrying %s in %.1f seconds after attempt %d/%d failed: %s",
            request.describe(),
            delay,
            number,
            self._policy.max_attempts,
            error.message,
        )
