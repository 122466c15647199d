"""Tests for RetryPolicy and RequestExecutor.

The executor gets a scripted transport, a sleep that only records the
requested delays and a frozen clock, so every wait is observable and no
test actually blocks.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

from conftest import NOW, FakeTransport, RecordingSleep
from xgate_api._classify import NetworkErrorType
from xgate_api._retry import RequestExecutor, RetryPolicy
from xgate_api._transport import Request, Response, TransportError
from xgate_api.exceptions import (
    ApiError,
    NetworkError,
    RateLimitError,
    ValidationError,
)

REQUEST = Request("POST", "/deposits", json={"amount": 10})


def _executor(transport, sleep, policy=None):
    return RequestExecutor(transport, policy, sleep=sleep, clock=lambda: NOW)


def _refused() -> TransportError:
    return TransportError(
        "Connection refused: api.xgate.global:443",
        cause=ConnectionRefusedError(111, "Connect call failed"),
    )


# =========================================================================== #
#  1. RetryPolicy
# =========================================================================== #


class TestRetryPolicy:
    """Backoff arithmetic and validation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.rate_limit_ceiling == 60
        assert policy.retry_on_server_errors
        assert policy.deadline is None

    def test_exponential_backoff(self):
        policy = RetryPolicy(backoff_base=1.0)
        assert [policy.backoff_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_backoff_is_capped(self):
        policy = RetryPolicy(backoff_base=10.0, backoff_max=30.0)
        assert policy.backoff_delay(3) == 30.0

    @pytest.mark.parametrize(
        "kwargs", [{"max_attempts": 0}, {"backoff_base": -1.0}, {"backoff_max": -1.0}]
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_no_retry_after_last_attempt(self):
        policy = RetryPolicy(max_attempts=2)
        err = ApiError.from_response(503)
        assert policy.delay_for(err, 1, NOW) == 1.0
        assert policy.delay_for(err, 2, NOW) is None

    def test_client_error_is_never_retried(self):
        assert RetryPolicy().delay_for(ApiError.from_response(400), 1, NOW) is None

    def test_rate_limit_reset_above_ceiling(self):
        err = RateLimitError.with_limit_info(100, 0, int(NOW) + 600)
        assert RetryPolicy().delay_for(err, 1, NOW) is None


# =========================================================================== #
#  2. Rate limiting
# =========================================================================== #


class TestRateLimitRetries:
    """429 handling: honor Retry-After up to the ceiling."""

    @pytest.mark.asyncio
    async def test_waits_retry_after_then_succeeds(self, sleep: RecordingSleep, caplog):
        transport = FakeTransport(
            Response.build(429, "", {"Retry-After": "2"}),
            Response.build(200, '{"id": "dep_1"}'),
        )
        with caplog.at_level(logging.INFO, logger="xgate_api"):
            response = await _executor(transport, sleep).execute(REQUEST)

        assert response.status == 200
        assert sleep.delays == [2.0]
        assert transport.calls == 2
        assert "Rate limit hit, waiting 2 seconds before retry (attempt 1/3)" in caplog.text

    @pytest.mark.asyncio
    async def test_retry_after_above_ceiling_raises_immediately(self, sleep: RecordingSleep):
        transport = FakeTransport(Response.build(429, "", {"Retry-After": "120"}))

        with pytest.raises(RateLimitError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)

        assert exc_info.value.retry_after() == 120
        assert transport.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_custom_ceiling(self, sleep: RecordingSleep):
        transport = FakeTransport(
            Response.build(429, "", {"Retry-After": "120"}),
            Response.build(200, "{}"),
        )
        policy = RetryPolicy(rate_limit_ceiling=300)
        response = await _executor(transport, sleep, policy).execute(REQUEST)
        assert response.ok
        assert sleep.delays == [120.0]

    @pytest.mark.asyncio
    async def test_waits_until_reset_without_retry_after(self, sleep: RecordingSleep):
        transport = FakeTransport(
            Response.build(429, "", {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(NOW) + 5)}),
            Response.build(200, "{}"),
        )
        await _executor(transport, sleep).execute(REQUEST)
        assert sleep.delays == [5.0]

    @pytest.mark.asyncio
    async def test_zero_retry_after_uses_backoff(self, sleep: RecordingSleep):
        transport = FakeTransport(
            Response.build(429, "", {"Retry-After": "0"}),
            Response.build(200, "{}"),
        )
        await _executor(transport, sleep).execute(REQUEST)
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_no_rate_limit_metadata_raises(self, sleep: RecordingSleep):
        transport = FakeTransport(Response.build(429, '{"message": "Too Many Requests"}'))
        with pytest.raises(RateLimitError):
            await _executor(transport, sleep).execute(REQUEST)
        assert transport.calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "headers",
        [
            {"X-RateLimit-Reset": "Infinity"},
            {"Retry-After": "inf"},
            {"Retry-After": "1e400", "X-RateLimit-Reset": "nan"},
        ],
    )
    async def test_non_finite_headers_raise_without_waiting(
        self, sleep: RecordingSleep, headers
    ):
        transport = FakeTransport(Response.build(429, "", headers))
        with pytest.raises(RateLimitError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)
        assert exc_info.value.retry_after() is None
        assert transport.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, sleep: RecordingSleep):
        transport = FakeTransport(Response.build(429, "", {"Retry-After": "1"}))
        with pytest.raises(RateLimitError):
            await _executor(transport, sleep).execute(REQUEST)
        assert transport.calls == 3
        assert sleep.delays == [1.0, 1.0]


# =========================================================================== #
#  3. Network failures and server errors
# =========================================================================== #


class TestNetworkRetries:
    """Transport failures are classified, backed off and finally surfaced."""

    @pytest.mark.asyncio
    async def test_surfaces_last_network_error(self, sleep: RecordingSleep, caplog):
        transport = FakeTransport(_refused(), _refused(), _refused(), _refused())

        with caplog.at_level(logging.WARNING, logger="xgate_api"):
            with pytest.raises(NetworkError) as exc_info:
                await _executor(transport, sleep).execute(REQUEST)

        err = exc_info.value
        assert err.kind is NetworkErrorType.CONNECTION_REFUSED
        assert err.request is REQUEST
        assert isinstance(err.__cause__, TransportError)
        assert transport.calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert "Giving up on POST /deposits after 3 attempt(s)" in caplog.text

    @pytest.mark.asyncio
    async def test_connect_timeout_message(self, sleep: RecordingSleep):
        transport = FakeTransport(TransportError("Connection timeout: connect to host"))
        with pytest.raises(NetworkError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)
        assert exc_info.value.kind is NetworkErrorType.CONNECTION_TIMEOUT

    @pytest.mark.asyncio
    async def test_recovers_after_network_failure(self, sleep: RecordingSleep):
        transport = FakeTransport(_refused(), Response.build(201, '{"id": "dep_1"}'))
        response = await _executor(transport, sleep).execute(REQUEST)
        assert response.json() == {"id": "dep_1"}
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_ssl_error_is_not_retried(self, sleep: RecordingSleep):
        transport = FakeTransport(TransportError("SSL certificate verification failed: x"))
        with pytest.raises(NetworkError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)
        assert exc_info.value.kind is NetworkErrorType.SSL_CERTIFICATE
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_raw_timeout_from_transport(self, sleep: RecordingSleep):
        transport = FakeTransport(asyncio.TimeoutError(), Response.build(200, "{}"))
        response = await _executor(transport, sleep).execute(REQUEST)
        assert response.ok
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_transport_error_with_response_is_an_api_error(self, sleep: RecordingSleep):
        failure = TransportError("bad status", response=Response.build(404, '{"message": "nope"}'))
        transport = FakeTransport(failure)
        with pytest.raises(ApiError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "nope"

    @pytest.mark.asyncio
    async def test_server_error_backoff(self, sleep: RecordingSleep):
        transport = FakeTransport(
            Response.build(500),
            Response.build(503),
            Response.build(200, "{}"),
        )
        response = await _executor(transport, sleep).execute(REQUEST)
        assert response.ok
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_server_errors_not_retried_when_disabled(self, sleep: RecordingSleep):
        transport = FakeTransport(Response.build(503))
        policy = RetryPolicy(retry_on_server_errors=False)
        with pytest.raises(ApiError):
            await _executor(transport, sleep, policy).execute(REQUEST)
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_client_error_fails_fast(self, sleep: RecordingSleep):
        transport = FakeTransport(Response.build(400, '{"message": "Invalid amount"}'))
        with pytest.raises(ApiError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)
        assert str(exc_info.value) == "Invalid amount [POST /deposits] [400]"
        assert transport.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_validation_error(self, sleep: RecordingSleep):
        body = '{"message": "Invalid", "errors": {"amount": ["must be positive"]}}'
        transport = FakeTransport(Response.build(422, body))
        with pytest.raises(ValidationError) as exc_info:
            await _executor(transport, sleep).execute(REQUEST)
        assert exc_info.value.failed_field == "amount"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, sleep: RecordingSleep):
        transport = FakeTransport(asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await _executor(transport, sleep).execute(REQUEST)
        assert sleep.delays == []


# =========================================================================== #
#  4. Deadline
# =========================================================================== #


class TestDeadline:
    @pytest.mark.asyncio
    async def test_wait_past_deadline_is_not_taken(self, sleep: RecordingSleep):
        transport = FakeTransport(Response.build(429, "", {"Retry-After": "10"}))
        policy = RetryPolicy(deadline=5.0)
        with pytest.raises(RateLimitError):
            await _executor(transport, sleep, policy).execute(REQUEST)
        assert transport.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_in_flight_call_past_deadline(self, sleep: RecordingSleep):
        async def stalled(request: Request) -> Response:
            await asyncio.sleep(10)
            return Response.build(200)

        policy = RetryPolicy(deadline=0.05)
        with pytest.raises(NetworkError) as exc_info:
            await _executor(stalled, sleep, policy).execute(REQUEST)

        err = exc_info.value
        assert err.kind is NetworkErrorType.CONNECTION_TIMEOUT
        assert isinstance(err.__cause__, asyncio.TimeoutError)
        assert "deadline of 0.05 seconds" in err.message
