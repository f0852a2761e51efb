"""List and detail collaborators: protocols plus the HTTP implementations."""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable

import structlog

from ..config import SourceEndpoints
from ..models import DetailResult, ListRow
from .fetcher import FetchRequest, Fetcher
from .parser import PageParser


@runtime_checkable
class Lister(Protocol):
    """Delivers the current set of item summaries."""

    def is_ready(self) -> bool:
        """Return True once the list source can answer ``fetch_summaries``."""

    def fetch_summaries(self) -> list[ListRow]:
        """Return one row per live item."""


@runtime_checkable
class PageExtractor(Protocol):
    """Turns one item page into a structured detail record."""

    def fetch_detail(self, item_id: str) -> DetailResult:
        """Fetch and extract the detail fields of ``item_id``; raise on failure."""


class HttpLister:
    """List source reading a server-rendered list page."""

    def __init__(
        self,
        fetcher: Fetcher,
        endpoints: SourceEndpoints,
        parser: PageParser | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.endpoints = endpoints
        self.parser = parser or PageParser(endpoints)
        self.logger = structlog.get_logger("intelli_tracker.lister")

    def is_ready(self) -> bool:
        try:
            response = self.fetcher.fetch(FetchRequest(url=self.endpoints.list_url, retries=0))
        except RuntimeError as exc:
            self.logger.debug("list_readiness_check_failed", error=str(exc))
            return False
        return self.parser.list_is_ready(response.text)

    def fetch_summaries(self) -> list[ListRow]:
        response = self.fetcher.fetch(FetchRequest(url=self.endpoints.list_url))
        rows = self.parser.parse_list(response.text)
        self.logger.info("list_parsed", rows=len(rows), url=response.url)
        return rows


class HttpPageExtractor:
    """Detail source fetching one page per item.

    Pages whose status or activity log is not fully rendered yet are
    re-requested every ``poll_interval`` seconds up to ``poll_attempts`` times,
    or until ``time_budget`` seconds have passed; after that the partial page
    is extracted as-is.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        endpoints: SourceEndpoints,
        parser: PageParser | None = None,
        poll_attempts: int = 3,
        poll_interval: float = 0.3,
        time_budget: float | None = None,
        sleep=time.sleep,
        clock=time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.endpoints = endpoints
        self.parser = parser or PageParser(endpoints)
        self.poll_attempts = max(poll_attempts, 1)
        self.poll_interval = poll_interval
        self.time_budget = time_budget
        self._sleep = sleep
        self._clock = clock
        self.logger = structlog.get_logger("intelli_tracker.extractor")

    def detail_url(self, item_id: str) -> str:
        return self.endpoints.detail_url_template.format(id=item_id)

    def fetch_detail(self, item_id: str) -> DetailResult:
        url = self.detail_url(item_id)
        started = self._clock()
        html = ""
        for attempt in range(1, self.poll_attempts + 1):
            html = self.fetcher.fetch(FetchRequest(url=url)).text
            if self.parser.detail_is_complete(html):
                break
            if attempt == self.poll_attempts or self._out_of_time(started):
                self.logger.warning("detail_partial", item_id=item_id, attempts=attempt)
                break
            self._sleep(self.poll_interval)
        return self.parser.parse_detail(item_id, html)

    def _out_of_time(self, started: float) -> bool:
        if self.time_budget is None:
            return False
        return self._clock() - started + self.poll_interval >= self.time_budget


__all__ = ["HttpLister", "HttpPageExtractor", "Lister", "PageExtractor"]
