"""Rate-limited async HTTP transport shared by the quote adapters.

Each adapter owns one client so that a throttled provider never consumes
another provider's request budget.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from portfolio_pricer.core.exceptions import TransportError, UpstreamFormatError

logger = logging.getLogger(__name__)

# Retry configuration
_MAX_RETRIES_429 = 2
_DEFAULT_RETRY_AFTER = 5
_MAX_RETRY_AFTER = 15
_MAX_RETRIES_SERVER = 2
_MAX_RETRIES_CONNECTION = 1
_CONNECTION_RETRY_DELAY = 1.0


class QuoteHttpClient:
    """Async HTTP client with a token-bucket limiter and bounded retries.

    The per-request timeout is the effective cancellation mechanism for a
    batch: a request either completes or fails within it.

    Use via ``async with QuoteHttpClient(...) as client:`` or call
    ``close()`` explicitly.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        timeout: float = 15.0,
        rate_limit: int = 5,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._provider = provider
        self._limiter = AsyncLimiter(max_rate=rate_limit, time_period=1.0)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers or {},
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            transport=transport,
        )

    @property
    def provider(self) -> str:
        return self._provider

    async def __aenter__(self) -> QuoteHttpClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("GET", url, **kwargs)
        return self._decode(response)

    async def post_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.request("POST", url, **kwargs)
        return self._decode(response)

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFormatError(
                f"{self._provider} returned non-JSON body",
                context={
                    "provider": self._provider,
                    "url": str(response.request.url),
                    "reason": str(e),
                    "body": response.text[:200],
                },
            ) from e

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Execute an HTTP request with rate limiting and retry logic.

        Retry policy:
            - HTTP 429: wait for Retry-After (capped), retry up to 2 times.
            - HTTP 500/502/503: retry up to 2 times with exponential backoff.
            - Connection errors: retry once after a short delay.
            - Timeouts and other HTTP statuses: fail immediately.

        Raises:
            TransportError: on any failure once retries are exhausted.
        """
        for attempt in range(_MAX_RETRIES_429 + 1):
            try:
                await self._limiter.acquire()
                response = await self._client.request(method, url, **kwargs)
            except httpx.ConnectError as e:
                if attempt < _MAX_RETRIES_CONNECTION:
                    logger.warning(
                        "%s: connection error on %s, retrying in %.1fs (attempt %d/%d)",
                        self._provider, url, _CONNECTION_RETRY_DELAY,
                        attempt + 1, _MAX_RETRIES_CONNECTION,
                    )
                    await asyncio.sleep(_CONNECTION_RETRY_DELAY)
                    continue
                raise TransportError(
                    f"{self._provider}: connection failed: {url}",
                    context={"provider": self._provider, "url": url, "error": str(e)},
                ) from e
            except httpx.TimeoutException as e:
                raise TransportError(
                    f"{self._provider}: request timed out: {url}",
                    context={"provider": self._provider, "url": url},
                ) from e
            except httpx.HTTPError as e:
                raise TransportError(
                    f"{self._provider}: request failed: {e}",
                    context={"provider": self._provider, "url": url, "error": str(e)},
                ) from e

            if response.status_code == 200:
                return response

            if response.status_code == 429 and attempt < _MAX_RETRIES_429:
                retry_after = _retry_after_seconds(response)
                logger.warning(
                    "%s: rate limited (429) on %s, waiting %ds (attempt %d/%d)",
                    self._provider, url, retry_after, attempt + 1, _MAX_RETRIES_429,
                )
                await asyncio.sleep(retry_after)
                continue

            if response.status_code in (500, 502, 503) and attempt < _MAX_RETRIES_SERVER:
                delay = 2**attempt
                logger.warning(
                    "%s: server error %d on %s, retrying in %ds (attempt %d/%d)",
                    self._provider, response.status_code, url, delay,
                    attempt + 1, _MAX_RETRIES_SERVER,
                )
                await asyncio.sleep(delay)
                continue

            raise TransportError(
                f"{self._provider}: HTTP {response.status_code} from {url}",
                context={
                    "provider": self._provider,
                    "url": url,
                    "status_code": response.status_code,
                },
            )

        raise TransportError(
            f"{self._provider}: request failed after all retries: {url}",
            context={"provider": self._provider, "url": url},
        )


def _retry_after_seconds(response: httpx.Response) -> int:
    try:
        value = int(response.headers.get("Retry-After", _DEFAULT_RETRY_AFTER))
    except ValueError:
        value = _DEFAULT_RETRY_AFTER
    return max(0, min(value, _MAX_RETRY_AFTER))
