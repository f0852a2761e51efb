"""HTTP fetching with retry and politeness delay."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict

import httpx
import structlog

from ..config import FetchSettings


@dataclass(slots=True)
class FetchRequest:
    """Input for the fetcher."""

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    headers: dict[str, str] | None = None
    timeout: float | None = None
    retries: int | None = None


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    raw: httpx.Response | None = field(repr=False, default=None)


class Fetcher:
    """Execute HTTP requests with bounded retries; safe to share across threads."""

    def __init__(
        self,
        settings: FetchSettings,
        client: httpx.Client | None = None,
        logger: structlog.BoundLogger | None = None,
        sleep=time.sleep,
    ) -> None:
        self.settings = settings
        self.logger = logger or structlog.get_logger("intelli_tracker.fetcher")
        self._client = client or httpx.Client(follow_redirects=True, timeout=settings.request_timeout)
        self._sleep = sleep

    def close(self) -> None:
        self._client.close()

    def fetch(self, request: FetchRequest) -> FetchResponse:
        retries = self.settings.retry_on_fail if request.retries is None else request.retries
        max_attempts = 1 + max(retries, 0)
        timeout = request.timeout or self.settings.request_timeout
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            self._politeness_delay()
            try:
                response = self._client.request(
                    request.method,
                    request.url,
                    params=request.params,
                    headers=request.headers,
                    timeout=timeout,
                )
                if self._is_failure(response):
                    last_error = RuntimeError(f"Unexpected status {response.status_code}")
                    self.logger.warning(
                        "fetch_bad_status",
                        url=request.url,
                        attempt=attempt,
                        status=response.status_code,
                    )
                    continue
                return FetchResponse(
                    url=str(response.url),
                    status_code=response.status_code,
                    text=response.text,
                    headers=dict(response.headers),
                    raw=response,
                )
            except httpx.HTTPError as exc:
                self.logger.warning(
                    "fetch_error",
                    url=request.url,
                    attempt=attempt,
                    error=str(exc),
                )
                last_error = exc
        raise RuntimeError(f"Fetch failed after {max_attempts} attempts: {request.url}") from last_error

    def _politeness_delay(self) -> None:
        low, high = self.settings.delay_range
        if high <= 0:
            return
        self._sleep(min(random.uniform(low, high), 5.0))

    @staticmethod
    def _is_failure(response: httpx.Response) -> bool:
        return response.status_code >= 400


__all__ = ["FetchRequest", "FetchResponse", "Fetcher"]
