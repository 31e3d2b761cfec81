"""
Provider HTTP Client with Rate Limiting
Handles requests to external stats providers with per-source pacing,
request budgets and exponential backoff with jitter.
"""

import asyncio
import random
import time
from typing import Any, Awaitable, Callable, Dict, Optional
import logging

import httpx

from scoutbase.core.config import RATE_LIMITS, settings
from scoutbase.exceptions import BudgetExhaustedError, ExternalAPIError, TransientSourceError

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class RequestBudget:
    """
    Request counter with a fixed ceiling, shared by every call of one run.

    Attributes:
        source: Source the budget belongs to
        max_requests: Ceiling for the run
        used: Requests spent so far
    """

    def __init__(self, max_requests: int, source: str = "") -> None:
        self.source = source
        self.max_requests = max(0, int(max_requests))
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(0, self.max_requests - self.used)

    @property
    def exhausted(self) -> bool:
        return self.used >= self.max_requests

    def can_spend(self) -> bool:
        return not self.exhausted

    def spend(self) -> None:
        """
        Reserve one request.

        Raises:
            BudgetExhaustedError: If the ceiling has been reached
        """
        if self.exhausted:
            raise BudgetExhaustedError(self.source, self.used, self.max_requests)
        self.used += 1


class RateLimiter:
    """
    Per-source request pacing.

    Keeps the last request time for each source and enforces
    max(60 / requests_per_minute - elapsed, min_delay) between requests,
    plus random jitter. One instance belongs to one run context.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, Dict[str, float]]] = None,
        max_jitter: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.limits = limits if limits is not None else RATE_LIMITS
        self.max_jitter = max_jitter
        self.clock = clock
        self.sleep = sleep
        self.rng = rng
        self.last_request: Dict[str, float] = {}

    def delay_for(self, source: str) -> float:
        """Seconds to wait before the next request to `source` (without jitter)."""
        config = self.limits.get(source)
        if not config:
            return 0.0
        min_delay = float(config.get("min_delay", 0.0))
        last = self.last_request.get(source)
        if last is None:
            return 0.0
        interval = 60.0 / float(config.get("requests_per_minute", 60))
        elapsed = self.clock() - last
        if elapsed >= interval:
            return max(0.0, min_delay - elapsed)
        return max(interval - elapsed, min_delay - elapsed, 0.0)

    async def acquire(self, source: str) -> None:
        """Wait until `source` may be called again, then record the call."""
        delay = self.delay_for(source)
        if delay > 0:
            await self.sleep(delay + self.rng() * self.max_jitter)
        self.last_request[source] = self.clock()

    def reset(self, source: Optional[str] = None) -> None:
        if source is None:
            self.last_request.clear()
        else:
            self.last_request.pop(source, None)


class ProviderHTTPClient:
    """
    Async JSON client for one provider.

    Each get_json call spends one unit of the run's budget before any
    network traffic, then retries 429/5xx responses, timeouts and network
    errors with exponential backoff plus jitter.
    """

    def __init__(
        self,
        source: str,
        base_url: str,
        budget: RequestBudget,
        rate_limiter: RateLimiter,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
        max_jitter: Optional[float] = None,
        timeout: Optional[float] = None,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: SleepFn = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.source = source
        self.base_url = base_url.rstrip("/")
        self.budget = budget
        self.rate_limiter = rate_limiter
        self.max_retries = max(0, max_retries if max_retries is not None else settings.HTTP_MAX_RETRIES)
        self.backoff_base = backoff_base if backoff_base is not None else settings.HTTP_BACKOFF_BASE_SECONDS
        self.max_jitter = max_jitter if max_jitter is not None else settings.HTTP_MAX_JITTER_SECONDS
        self.sleep = sleep
        self.rng = rng
        self.client = httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True,
            transport=transport,
            headers={
                "User-Agent": settings.HTTP_USER_AGENT,
                "Accept": "application/json",
                **(headers or {}),
            },
        )

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1)) + self.rng() * self.max_jitter

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document from the provider.

        Args:
            path: Path relative to base_url
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            BudgetExhaustedError: If the run's budget is spent
            TransientSourceError: If the first attempt and all max_retries
                retries fail with retryable errors
            ExternalAPIError: For other non-2xx responses or invalid JSON
        """
        self.budget.spend()
        await self.rate_limiter.acquire(self.source)

        url = f"{self.base_url}/{path.lstrip('/')}"
        attempts = self.max_retries + 1
        last_error = ""
        for attempt in range(1, attempts + 1):
            try:
                response = await self.client.get(url, params=params)
            except httpx.TransportError as e:
                kind = "Timeout" if isinstance(e, httpx.TimeoutException) else "Network error"
                last_error = f"{kind}: {str(e) or type(e).__name__}"
            else:
                if response.status_code == 429 or response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                elif response.is_success:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise ExternalAPIError(self.source, f"Invalid JSON from {url}: {str(e)}")
                else:
                    raise ExternalAPIError(
                        self.source,
                        f"HTTP {response.status_code} for {url}",
                        details={"status_code": response.status_code},
                    )

            if attempt < attempts:
                delay = self._backoff(attempt)
                logger.warning(
                    f"{self.source}: {last_error} for {url}, retrying in {delay:.2f}s "
                    f"(attempt {attempt}/{attempts})"
                )
                await self.sleep(delay)

        raise TransientSourceError(self.source, f"{last_error} for {url}", attempts=attempts)

    async def close(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "ProviderHTTPClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
