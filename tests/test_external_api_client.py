"""
Unit tests for the base external API client.

Tests cover:
- Successful API responses
- Retry logic on 5xx errors
- No retry on 4xx errors
- Conversion of exhausted retries to ExternalAPIError
- Async context manager
"""
import pytest
import httpx
import respx
from unittest.mock import AsyncMock

from app.config import settings
from app.infrastructure.external_api_client import (
    ExternalAPIClient,
    ExternalAPIError,
)


BASE_URL = "http://upstream.test"


# ============================================================
# Async Context Manager Tests
# ============================================================

class TestAsyncContextManager:
    """Tests for async context manager functionality."""

    @pytest.mark.asyncio
    async def test_context_manager_enter(self):
        """__aenter__ should return the client instance."""
        client = ExternalAPIClient(BASE_URL)

        async with client as ctx_client:
            assert ctx_client is client

    @pytest.mark.asyncio
    async def test_context_manager_exit_closes_client(self):
        """__aexit__ should close the HTTP client."""
        client = ExternalAPIClient(BASE_URL)
        client.close = AsyncMock()

        async with client:
            pass

        client.close.assert_called_once()


# ============================================================
# API Response Tests
# ============================================================

class TestAPIResponses:
    """Tests for API response handling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_successful_get_request(self):
        """Successful GET request should return parsed JSON."""
        client = ExternalAPIClient(BASE_URL)

        respx.get(f"{BASE_URL}/test").mock(
            return_value=httpx.Response(200, json={"result": "success"})
        )

        result = await client.request("GET", "/test")

        assert result == {"result": "success"}
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_default_params_and_headers_sent(self):
        """Client-level params and headers should be sent with every request."""
        client = ExternalAPIClient(
            BASE_URL,
            headers={"Authorization": "Bearer secret"},
            params={"key": "abc"},
        )
        route = respx.get(f"{BASE_URL}/test").mock(
            return_value=httpx.Response(200, json={})
        )

        await client.request("GET", "/test")

        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["key"] == "abc"
        await client.close()


# ============================================================
# Error Handling Tests
# ============================================================

class TestErrorHandling:
    """Tests for error handling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_4xx_error_no_retry(self):
        """4xx errors should not trigger retry."""
        client = ExternalAPIClient(BASE_URL)

        respx.get(f"{BASE_URL}/test").mock(
            return_value=httpx.Response(404, json={"error": "Not Found"})
        )

        with pytest.raises(ExternalAPIError, match="404") as exc_info:
            await client.request("GET", "/test")

        assert exc_info.value.status_code == 404
        assert exc_info.value.payload == {"error": "Not Found"}
        assert exc_info.value.retryable is False
        # Should only be called once (no retry)
        assert respx.calls.call_count == 1
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_5xx_error_triggers_retry(self):
        """5xx errors should trigger retry."""
        client = ExternalAPIClient(BASE_URL)

        # First call fails with 500, second succeeds
        route = respx.get(f"{BASE_URL}/test")
        route.side_effect = [
            httpx.Response(500, text="Internal Server Error"),
            httpx.Response(200, json={"result": "success"}),
        ]

        result = await client.request("GET", "/test")

        assert result == {"result": "success"}
        assert respx.calls.call_count == 2  # Retried once
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_exhausted_retries_marked_retryable(self):
        """Persistent 5xx errors should surface as a retryable ExternalAPIError."""
        client = ExternalAPIClient(BASE_URL)

        respx.get(f"{BASE_URL}/test").mock(
            return_value=httpx.Response(503, text="Service Unavailable")
        )

        with pytest.raises(ExternalAPIError) as exc_info:
            await client.request("GET", "/test")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True
        assert respx.calls.call_count == settings.max_retry_attempts
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_marked_retryable(self):
        """Connection failures should surface as a retryable ExternalAPIError."""
        client = ExternalAPIClient(BASE_URL)

        respx.get(f"{BASE_URL}/test").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ExternalAPIError, match="request error") as exc_info:
            await client.request("GET", "/test")

        assert exc_info.value.status_code is None
        assert exc_info.value.retryable is True
        await client.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
