"""
Async HTTP client with retry logic for JSON APIs
"""
import aiohttp
import asyncio
from typing import Any, Optional
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    RetryCallState,
)
from loguru import logger

from shared.models.base import SourceError, RateLimitedError


TRANSIENT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, RateLimitedError)


def log_retry(retry_state: RetryCallState) -> None:
    """tenacity before_sleep hook routed to loguru"""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        f"Attempt {retry_state.attempt_number} failed ({error!r}); retrying in {wait:.2f}s"
    )


class AsyncJSONClient:
    """
    Async JSON client with retry logic

    Transient failures (network errors, timeouts, HTTP 429 and 5xx) are
    retried with exponential backoff. Once attempts are exhausted the last
    error is re-raised as SourceError (or RateLimitedError).
    """

    def __init__(
        self,
        timeout: int = 30,
        max_attempts: int = 3,
        backoff_min: float = 0.5,
        backoff_max: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize client

        Args:
            timeout: Request timeout in seconds
            max_attempts: Attempts per request including the first
            backoff_min: Lower bound for exponential backoff
            backoff_max: Upper bound for exponential backoff
            headers: Default headers for requests
            session: Optional externally owned session
        """
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_attempts = max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.headers = headers or {
            "User-Agent": "PerpLedger/0.1.0",
            "Accept": "application/json",
        }
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
            self._owns_session = True
        return self._session

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=log_retry,
            reraise=True
        )

    @staticmethod
    def _check_status(response: aiohttp.ClientResponse, url: str) -> None:
        if response.status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(
                f"Rate limited by {url}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None
            )
        if response.status >= 500:
            raise aiohttp.ClientResponseError(
                response.request_info,
                response.history,
                status=response.status,
                message=f"Server error from {url}"
            )
        if response.status >= 400:
            raise SourceError(f"HTTP {response.status} from {url}")

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        session = await self._get_session()
        async with session.request(method, url, **kwargs) as response:
            self._check_status(response, url)
            return await response.json(content_type=None)

    async def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """
        Perform a request and parse the JSON body, retrying transient errors

        Args:
            method: HTTP method
            url: Target URL
            **kwargs: Passed through to aiohttp (params, json, headers)

        Returns:
            Parsed JSON body

        Raises:
            SourceError: If the request fails after retries or the body is not JSON
        """
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._request(method, url, **kwargs)
        except RateLimitedError:
            logger.error(f"Giving up on {url}: still rate limited after {self.max_attempts} attempts")
            raise
        except SourceError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to fetch {url}: {e}")
            raise SourceError(f"Failed to fetch {url}: {e}") from e
        except ValueError as e:
            logger.error(f"Invalid JSON from {url}: {e}")
            raise SourceError(f"Invalid JSON from {url}: {e}") from e

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """GET and parse JSON"""
        return await self.request_json("GET", url, **kwargs)

    async def post_json(self, url: str, payload: Any, **kwargs: Any) -> Any:
        """POST a JSON payload and parse the JSON response"""
        return await self.request_json("POST", url, json=payload, **kwargs)

    async def close(self) -> None:
        """Close the owned session"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed HTTP session")

    async def __aenter__(self) -> "AsyncJSONClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
