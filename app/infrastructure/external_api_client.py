"""
Infrastructure layer: Base HTTP client with retry logic.

Shared by the weather provider clients and the payout ledger client.
"""
from typing import Any, Dict, Optional
import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from app.config import settings
from app.infrastructure.api_constants import APIConstants


class ExternalAPIError(Exception):
    """
    Custom exception for external API errors.

    ``retryable`` is True when the failure was transient (5xx, 429,
    timeouts, connection errors) and the retry budget ran out.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload
        self.retryable = retryable


def _safe_json(response: httpx.Response) -> Optional[Any]:
    try:
        return response.json()
    except ValueError:
        return None


class ExternalAPIClient:
    """
    Async HTTP client for a single external API.
    Implements retry logic with exponential backoff.
    """

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
        timeout: float = APIConstants.DEFAULT_TIMEOUT,
    ):
        """
        Initialize the API client.

        Args:
            base_url: Base URL of the API
            headers: Extra headers sent with every request
            params: Query parameters sent with every request (e.g. API keys)
            timeout: Request timeout in seconds
        """
        self.base_url = base_url
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"accept": APIConstants.CONTENT_TYPE_JSON, **(headers or {})},
            params=params,
            timeout=timeout,
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
        reraise=True,
    )
    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Any:
        """
        Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            **kwargs: Additional arguments for the request

        Returns:
            Response data as parsed JSON

        Raises:
            ExternalAPIError: On client errors (4xx other than 429)
            httpx.HTTPStatusError: On 5xx/429 once retries are exhausted
            httpx.RequestError: On transport errors once retries are exhausted
        """
        response = await self.client.request(method, endpoint, **kwargs)
        status_code = response.status_code

        # Retry on server errors (5xx) and throttling
        if status_code >= 500 or status_code == 429:
            response.raise_for_status()

        # Don't retry on client errors (4xx)
        if status_code >= 400:
            raise ExternalAPIError(
                f"API request failed: {status_code} - {response.text}",
                status_code=status_code,
                payload=_safe_json(response),
            )
        return response.json()

    async def request(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        Make a request, converting exhausted transient failures to ExternalAPIError.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments for the request

        Returns:
            Response data as parsed JSON

        Raises:
            ExternalAPIError: If the request fails
        """
        try:
            return await self._make_request(method, endpoint, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ExternalAPIError(
                f"API request failed: {e.response.status_code} - {e.response.text}",
                status_code=e.response.status_code,
                payload=_safe_json(e.response),
                retryable=True,
            )
        except httpx.RequestError as e:
            raise ExternalAPIError(f"API request error: {str(e)}", retryable=True)
