"""Tests for the HTTP retry helper used by connectors."""

import logging

import httpx
import pytest

from knowledge_ingestor.utils.retry import (
    RetryableStatusError,
    RetryConfig,
    _parse_retry_after,
    execute_with_retry,
)

_REQUEST = httpx.Request("GET", "https://api.github.com/user")


def _response(status_code: int, **headers: str) -> httpx.Response:
    return httpx.Response(status_code, headers=headers, request=_REQUEST)


class _Sequence:
    """Async callable returning the queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> httpx.Response:
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestRetryConfig:
    """Test suite for RetryConfig model."""

    def test_retry_config_defaults(self):
        config = RetryConfig()

        assert config.enabled is True
        assert config.max_attempts == 3
        assert config.status_forcelist == [500, 502, 503, 504]

    def test_from_mapping(self):
        assert RetryConfig.from_mapping(None) == RetryConfig()
        assert RetryConfig.from_mapping({"max_attempts": 5}).max_attempts == 5
        with pytest.raises(ValueError):
            RetryConfig.from_mapping(["not", "a", "mapping"])

    def test_validation(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)
        with pytest.raises(ValueError):
            RetryConfig(backoff_factor=0)
        with pytest.raises(ValueError):
            RetryConfig(status_forcelist="500")

    def test_should_retry_response(self):
        config = RetryConfig(status_forcelist=[502])

        assert config.should_retry_response(_response(502))
        assert not config.should_retry_response(_response(404))


class TestParseRetryAfter:
    """Test suite for _parse_retry_after function."""

    def test_parse_retry_after_seconds(self):
        assert _parse_retry_after("120") == 120.0
        assert _parse_retry_after("") is None
        assert _parse_retry_after(None) is None

    def test_parse_retry_after_invalid_format(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert _parse_retry_after("invalid-format") is None
        assert "Failed to parse Retry-After header" in caplog.text


class TestExecuteWithRetry:
    """Test suite for execute_with_retry function."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        send = _Sequence(_response(200))

        result = await execute_with_retry(send, retry_config=RetryConfig())

        assert result.status_code == 200
        assert send.calls == 1

    @pytest.mark.asyncio
    async def test_retryable_status_then_success(self):
        send = _Sequence(_response(503), _response(200))
        config = RetryConfig(max_attempts=3, backoff_factor=0.001)

        result = await execute_with_retry(send, retry_config=config)

        assert result.status_code == 200
        assert send.calls == 2

    @pytest.mark.asyncio
    async def test_exhausted_status_returns_last_response(self):
        send = _Sequence(_response(502), _response(502))
        config = RetryConfig(max_attempts=2, backoff_factor=0.001)

        result = await execute_with_retry(send, retry_config=config)

        assert result.status_code == 502
        assert send.calls == 2

    @pytest.mark.asyncio
    async def test_transport_errors_are_reraised_when_exhausted(self):
        send = _Sequence(httpx.ConnectError("refused"), httpx.ConnectError("refused"))
        config = RetryConfig(max_attempts=2, backoff_factor=0.001)

        with pytest.raises(httpx.ConnectError):
            await execute_with_retry(send, retry_config=config)
        assert send.calls == 2

    @pytest.mark.asyncio
    async def test_disabled_retry_sends_once(self):
        send = _Sequence(_response(503))

        result = await execute_with_retry(send, retry_config=RetryConfig(enabled=False))

        assert result.status_code == 503
        assert send.calls == 1

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        send = _Sequence(_response(404))

        result = await execute_with_retry(send, retry_config=RetryConfig(backoff_factor=0.001))

        assert result.status_code == 404
        assert send.calls == 1


def test_retryable_status_error_keeps_response():
    response = _response(503)

    error = RetryableStatusError(response)

    assert "Retryable HTTP status 503" in str(error)
    assert error.response is response
