"""
Base Upstream Source - Abstract interface for all market data providers.

All providers MUST implement this interface to ensure:
- Isolation: one provider failing never affects another
- Fail-safety: ``fetch()`` returns a SourceResult, it never raises
- Bounded latency: every request carries a timeout
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

import aiohttp

from core.config import DEFAULT_USER_AGENT
from core.exceptions import ParseFailure, UpstreamUnavailable
from data_sources.exceptions import FetchError, NormalizationError, RateLimitError
from data_sources.models import (
    SourceHealth,
    SourceIncident,
    SourceMetadata,
    SourceResult,
    SourceStatus,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseUpstreamSource(ABC, Generic[T]):
    """
    Abstract base class for all upstream sources.

    Each implementation must:
    1. Implement fetch_raw() - Get the raw payload from the provider
    2. Implement normalize() - Convert it to canonical records
    3. Implement metadata() - Describe the provider

    Features:
    - Retry with exponential backoff on 5xx and connection errors
    - Health tracking (DEGRADED / UNAVAILABLE thresholds)
    - Incident log
    """

    DEFAULT_TIMEOUT = 10.0
    MAX_RETRIES = 2
    RETRY_BACKOFF_BASE = 0.5
    DEGRADED_THRESHOLD = 3  # consecutive failures before degraded
    UNAVAILABLE_THRESHOLD = 5  # consecutive failures before unavailable

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._user_agent = user_agent
        self._session = session
        self._owns_session = session is None

        self._health = SourceHealth(
            status=SourceStatus.UNKNOWN,
            last_check=datetime.now(timezone.utc),
        )
        self._last_successful_request: Optional[datetime] = None
        self._request_count = 0
        self._success_count = 0

        self._incidents: list[SourceIncident] = []
        self._max_incidents = 50

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this data source."""
        pass

    @abstractmethod
    async def fetch_raw(self, params: dict[str, Any]) -> Any:
        """
        Fetch the raw payload from the provider.

        Raises:
            FetchError: network / HTTP failure
        """
        pass

    @abstractmethod
    def normalize(self, raw: Any, params: dict[str, Any]) -> list[T]:
        """
        Map the raw payload to canonical records.

        Raises:
            NormalizationError: unexpected payload shape
        """
        pass

    @abstractmethod
    def metadata(self) -> SourceMetadata:
        pass

    async def fetch(self, params: Optional[dict[str, Any]] = None) -> SourceResult[T]:
        """
        Fetch and normalize (main entry point).

        Never raises for provider problems: failures come back as a
        failed SourceResult and are logged at WARNING. Cancellation
        still propagates so a caller-level deadline can stop the call.
        """
        params = params or {}
        started = time.monotonic()
        try:
            raw = await self._fetch_with_retry(params)
            records = self.normalize(raw, params)
        except (UpstreamUnavailable, ParseFailure) as e:
            self._on_error(e, params)
            return SourceResult.failure(self.name, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = NormalizationError(
                message=f"Unexpected error: {e}",
                source_name=self.name,
                original_error=e,
            )
            self._on_error(error, params)
            return SourceResult.failure(self.name, error)

        latency_ms = (time.monotonic() - started) * 1000
        self._on_success(latency_ms)
        return SourceResult.success(self.name, records, latency_ms=latency_ms)

    async def _fetch_with_retry(self, params: dict[str, Any]) -> Any:
        last_error: Optional[FetchError] = None

        for attempt in range(self._max_retries):
            try:
                return await self.fetch_raw(params)
            except RateLimitError:
                # public feeds: wait for the next cache cycle instead
                raise
            except FetchError as e:
                if e.is_client_error():
                    raise
                last_error = e
                if attempt + 1 < self._max_retries:
                    wait_time = self.RETRY_BACKOFF_BASE * (2 ** attempt)
                    logger.debug(
                        f"[{self.name}] {e.message}, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{self._max_retries})"
                    )
                    await asyncio.sleep(wait_time)

        assert last_error is not None
        raise last_error

    # --------------------------------------------------------
    # HTTP helpers
    # --------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }

    async def _request(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        as_json: bool = True,
    ) -> Any:
        session = await self._get_session()
        merged_headers = {**self._get_default_headers(), **(headers or {})}
        start_time = time.monotonic()
        try:
            async with session.get(url, params=params, headers=merged_headers) as response:
                if response.status == 429:
                    retry_after = response.headers.get("Retry-After")
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        source_name=self.name,
                        retry_after_seconds=int(retry_after) if retry_after and retry_after.isdigit() else None,
                        request_url=url,
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        source_name=self.name,
                        status_code=response.status,
                        response_body=body[:1000],
                        request_url=url,
                    )

                if as_json:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        raise NormalizationError(
                            message="Response is not valid JSON",
                            source_name=self.name,
                            original_error=e,
                        )
                else:
                    data = await response.text()

                latency_ms = (time.monotonic() - start_time) * 1000
                logger.debug(f"[{self.name}] GET {url} completed in {latency_ms:.1f}ms")
                return data

        except aiohttp.ClientError as e:
            raise FetchError(
                message=f"Connection error: {e}",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )
        except asyncio.TimeoutError as e:
            raise FetchError(
                message=f"Timed out after {self._timeout}s",
                source_name=self.name,
                request_url=url,
                original_error=e,
            )

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        return await self._request(url, params=params, headers=headers, as_json=True)

    async def _get_text(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> str:
        return await self._request(url, params=params, headers=headers, as_json=False)

    # --------------------------------------------------------
    # Health tracking
    # --------------------------------------------------------

    def _on_success(self, latency_ms: Optional[float] = None) -> None:
        self._request_count += 1
        self._success_count += 1
        self._last_successful_request = datetime.now(timezone.utc)
        self._health.last_check = self._last_successful_request
        self._health.latency_ms = latency_ms
        self._health.consecutive_failures = 0

        if self._health.status != SourceStatus.HEALTHY:
            if self._health.status != SourceStatus.UNKNOWN:
                logger.info(f"[{self.name}] Recovered to HEALTHY status")
            self._health.status = SourceStatus.HEALTHY

    def _on_error(self, error: Exception, params: Optional[dict[str, Any]] = None) -> None:
        now = datetime.now(timezone.utc)
        self._request_count += 1
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = now
        self._health.last_check = now

        if self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != SourceStatus.UNAVAILABLE:
                self._health.status = SourceStatus.UNAVAILABLE
                logger.error(
                    f"[{self.name}] Marked UNAVAILABLE after {self._health.consecutive_failures} failures"
                )
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != SourceStatus.DEGRADED:
                self._health.status = SourceStatus.DEGRADED
                logger.warning(
                    f"[{self.name}] Marked DEGRADED after {self._health.consecutive_failures} failures"
                )

        self._incidents.append(
            SourceIncident(
                source_name=self.name,
                incident_type=error.__class__.__name__,
                timestamp=now,
                error_message=str(error),
                request_params={k: str(v) for k, v in params.items()} if params else None,
            )
        )
        if len(self._incidents) > self._max_incidents:
            self._incidents = self._incidents[-self._max_incidents:]

        logger.warning(f"[{self.name}] Fetch failed: {error}")

    def get_health(self) -> SourceHealth:
        """Get current health status."""
        if self._request_count > 0:
            self._health.uptime_percentage = self._success_count / self._request_count * 100
        return self._health

    def get_incidents(self, limit: int = 10) -> list[SourceIncident]:
        return self._incidents[-limit:]

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseUpstreamSource[T]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"
