"""Tests for network failure and status classification."""

from __future__ import annotations

import aiohttp
import pytest

from xgate_api._classify import (
    ApiErrorKind,
    NetworkErrorType,
    classify_network_error,
    classify_status,
    is_retryable_network_error,
    recommended_retry_delay,
    suggestion_for,
)


class TestClassifyNetworkError:
    """Ordered message matching, first rule wins."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Connection timed out after 30001 milliseconds", NetworkErrorType.CONNECTION_TIMEOUT),
            ("Request timed out", NetworkErrorType.CONNECTION_TIMEOUT),
            ("Read timeout: server stalled", NetworkErrorType.READ_TIMEOUT),
            ("Operation timeout", NetworkErrorType.READ_TIMEOUT),
            ("Connection refused: api.xgate.global:443", NetworkErrorType.CONNECTION_REFUSED),
            ("Could not resolve host: api.xgate.global", NetworkErrorType.DNS_RESOLUTION),
            ("Temporary failure in name resolution", NetworkErrorType.DNS_RESOLUTION),
            ("SSL certificate problem: self signed", NetworkErrorType.SSL_CERTIFICATE),
            ("certificate verify failed", NetworkErrorType.SSL_CERTIFICATE),
            ("SSL handshake failed: bad record", NetworkErrorType.SSL_HANDSHAKE),
            ("Network unreachable", NetworkErrorType.NETWORK_UNREACHABLE),
            ("Host unreachable", NetworkErrorType.HOST_UNREACHABLE),
            ("something odd happened", NetworkErrorType.UNKNOWN),
        ],
    )
    def test_message_patterns(self, message, expected):
        assert classify_network_error(message) is expected

    def test_match_is_case_insensitive(self):
        assert classify_network_error("CONNECTION REFUSED") is NetworkErrorType.CONNECTION_REFUSED

    def test_timed_out_wins_over_dns(self):
        """A DNS lookup that timed out is still a connection timeout."""
        assert classify_network_error("DNS lookup timed out") is NetworkErrorType.CONNECTION_TIMEOUT

    @pytest.mark.parametrize("message", ["timeout", "socket timeout while reading", "Gateway Timeout"])
    def test_bare_timeout_is_retryable_read_timeout(self, message):
        kind = classify_network_error(message)
        assert kind is NetworkErrorType.READ_TIMEOUT
        assert is_retryable_network_error(kind)

    def test_same_message_same_kind(self):
        message = "Connection refused by peer"
        assert classify_network_error(message) is classify_network_error(message)

    def test_connect_cause_without_timeout_is_refused(self):
        kind = classify_network_error("boom", ConnectionResetError("reset by peer"))
        assert kind is NetworkErrorType.CONNECTION_REFUSED

    def test_connect_cause_with_timeout_is_connection_timeout(self):
        kind = classify_network_error("boom", ConnectionError("timeout while connecting"))
        assert kind is NetworkErrorType.CONNECTION_TIMEOUT

    def test_non_connect_cause_is_unknown(self):
        assert classify_network_error("boom", ValueError("timeout")) is NetworkErrorType.UNKNOWN

    def test_aiohttp_payload_error_is_not_connect_level(self):
        cause = aiohttp.ClientPayloadError("truncated")
        assert classify_network_error("boom", cause) is NetworkErrorType.UNKNOWN


class TestNetworkErrorTables:
    """Retryable set, suggestions and advisory delays."""

    @pytest.mark.parametrize(
        "kind",
        [NetworkErrorType.SSL_CERTIFICATE, NetworkErrorType.SSL_HANDSHAKE, NetworkErrorType.UNKNOWN],
    )
    def test_not_retryable(self, kind):
        assert not is_retryable_network_error(kind)

    @pytest.mark.parametrize(
        ("kind", "delay"),
        [
            (NetworkErrorType.CONNECTION_TIMEOUT, 5),
            (NetworkErrorType.READ_TIMEOUT, 5),
            (NetworkErrorType.NETWORK_UNREACHABLE, 10),
            (NetworkErrorType.HOST_UNREACHABLE, 10),
            (NetworkErrorType.CONNECTION_REFUSED, 30),
            (NetworkErrorType.DNS_RESOLUTION, 15),
            (NetworkErrorType.UNKNOWN, 15),
        ],
    )
    def test_recommended_delay(self, kind, delay):
        assert recommended_retry_delay(kind) == delay

    def test_every_kind_has_a_suggestion(self):
        for kind in NetworkErrorType:
            assert suggestion_for(kind)


class TestClassifyStatus:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (400, ApiErrorKind.CLIENT_ERROR),
            (404, ApiErrorKind.CLIENT_ERROR),
            (429, ApiErrorKind.RATE_LIMITED),
            (500, ApiErrorKind.SERVER_ERROR),
            (599, ApiErrorKind.SERVER_ERROR),
            (302, ApiErrorKind.UNKNOWN),
        ],
    )
    def test_status_kinds(self, status, expected):
        assert classify_status(status) is expected
