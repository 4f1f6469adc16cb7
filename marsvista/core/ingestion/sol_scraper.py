# ============================================================================
# MarsVista - Sol Scraper
# ============================================================================
"""
Scrapes one (source, sol) pair from its upstream feed into the photo store.

Per-invocation state machine:

    Fetching(page=0) -> Fetching(page+1) -> ... -> Done
                     -> NotFound   (404 on page 0: sol is genuinely empty)
                     -> Failed     (transport error, timeout, non-404 HTTP error)

All pages are gathered first. Then every raw item runs through the source
adapter. ParseErrors and thumbnails are counted as skipped, and the rest go
through the deduplicator and are inserted. A failure on any page aborts the
whole sol by raising SourceFetchError; the caller records it as a
completeness failure.

Usage:
    from marsvista.core.ingestion.sol_scraper import sol_scraper

    async with database_service.get_session() as session:
        result = await sol_scraper.scrape_sol(session, "curiosity", 4102)
        print(result.inserted, result.skipped)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from marsvista.config import settings
from marsvista.core.ingestion.deduplication_service import (
    DeduplicationService,
    deduplication_service,
)
from marsvista.core.ingestion.source_adapters import (
    CanonicalPhoto,
    ParseError,
    SourceAdapter,
    get_source_adapter,
)

logger = logging.getLogger("marsvista.ingestion.sol_scraper")

# Upstream statuses worth another attempt before failing the sol
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class SourceFetchError(Exception):
    """A page of a sol could not be fetched; the sol is failed, not empty."""

    def __init__(
        self,
        source: str,
        sol: Optional[int],
        error_type: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.source = source
        self.sol = sol
        self.error_type = error_type
        self.status_code = status_code
        target = f"sol {sol}" if sol is not None else "latest"
        super().__init__(f"{source} {target}: {error_type}: {message}")


def classify_error(exc: BaseException) -> str:
    """
    Map an exception raised while scraping a sol to a short failure type.

    Returns one of HTTP_<code>, Timeout, NetworkError, ParseError,
    Cancelled or Unknown.
    """
    if isinstance(exc, SourceFetchError):
        return exc.error_type
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP_{exc.response.status_code}"
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return "Timeout"
    if isinstance(exc, httpx.TransportError):
        return "NetworkError"
    if isinstance(exc, ValueError):
        return "ParseError"
    if isinstance(exc, asyncio.CancelledError):
        return "Cancelled"
    return "Unknown"


@dataclass
class SolScrapeResult:
    """Outcome of one successful sol scrape."""

    source: str
    sol: int
    inserted: int = 0
    skipped: int = 0
    duplicates: int = 0
    items_fetched: int = 0
    pages_fetched: int = 0
    expected_count: Optional[int] = None
    not_found: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "sol": self.sol,
            "inserted": self.inserted,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "items_fetched": self.items_fetched,
            "pages_fetched": self.pages_fetched,
            "expected_count": self.expected_count,
            "not_found": self.not_found,
            "errors": list(self.errors),
        }


class SolScraper:
    """
    Paginated fetch + parse + dedupe + insert for one sol at a time.

    Attributes:
        timeout: Per-request timeout in seconds
        retry_attempts: Attempts per page for retryable failures
        retry_backoff: Base backoff in seconds (doubles per attempt)
        max_pages: Hard cap on pages fetched for one sol
    """

    def __init__(
        self,
        dedup: Optional[DeduplicationService] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        max_pages: Optional[int] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._dedup = dedup or deduplication_service
        self._http_client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None
        self._client_loop: Optional[asyncio.AbstractEventLoop] = None
        self.timeout = timeout if timeout is not None else settings.nasa_request_timeout
        self.retry_attempts = max(1, retry_attempts if retry_attempts is not None else settings.page_retry_attempts)
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.page_retry_backoff_seconds
        self.max_pages = max_pages or settings.max_pages_per_sol
        self._sleep = sleep or asyncio.sleep

    async def _get_client(self) -> httpx.AsyncClient:
        """
        Get or create the shared HTTP client.

        A client created under a previous event loop (e.g. an earlier
        asyncio.run() in a Celery task) is abandoned and replaced.
        """
        if not self._owns_client:
            return self._http_client
        loop = asyncio.get_running_loop()
        if self._http_client is None or self._http_client.is_closed or self._client_loop is not loop:
            self._client_loop = loop
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
                follow_redirects=True,
            )
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client."""
        if not self._owns_client:
            return
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        self._http_client = None

    # =========================================================================
    # FETCHING
    # =========================================================================

    async def fetch_json(
        self,
        source: str,
        sol: Optional[int],
        url: str,
        params: Dict[str, Any],
        retry_attempts: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        GET one upstream page with retries.

        Args:
            source: Source key, for error reporting
            sol: Sol being fetched, or None for feed-level requests
            url: Endpoint
            params: Query parameters
            retry_attempts: Override for the configured attempts per page

        Returns:
            Decoded JSON object, or None when upstream answered 404

        Raises:
            SourceFetchError: Transport failure, timeout, non-404 HTTP error
                after retries, or a body that is not a JSON object
        """
        client = await self._get_client()
        attempts = max(1, retry_attempts or self.retry_attempts)
        last_error: Optional[SourceFetchError] = None

        for attempt in range(1, attempts + 1):
            try:
                response = await client.get(url, params=params)
            except httpx.TimeoutException as e:
                last_error = SourceFetchError(source, sol, "Timeout", str(e) or "request timed out")
            except httpx.TransportError as e:
                last_error = SourceFetchError(source, sol, "NetworkError", str(e) or type(e).__name__)
            else:
                status = response.status_code
                if status == 404:
                    return None
                if status >= 400:
                    error = SourceFetchError(
                        source, sol, f"HTTP_{status}", response.text[:200] if response.text else "No body",
                        status_code=status,
                    )
                    if status not in RETRYABLE_STATUS_CODES:
                        raise error
                    last_error = error
                else:
                    try:
                        payload = response.json()
                    except ValueError as e:
                        raise SourceFetchError(source, sol, "ParseError", f"invalid JSON: {e}") from e
                    if not isinstance(payload, dict):
                        raise SourceFetchError(source, sol, "ParseError", "response is not a JSON object")
                    return payload

            if attempt < attempts:
                wait = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"{last_error}: attempt {attempt}/"
                    f"{attempts} failed, retrying in {wait:.1f}s"
                )
                await self._sleep(wait)

        raise last_error

    async def fetch_sol_items(
        self,
        adapter: SourceAdapter,
        sol: int,
    ) -> Tuple[List[Dict[str, Any]], Optional[int], bool, int]:
        """
        Walk every page of one sol.

        Returns:
            (raw_items, expected_total, not_found, pages_fetched)
        """
        items: List[Dict[str, Any]] = []
        expected_total: Optional[int] = None
        page = 0
        pages_fetched = 0

        while page < self.max_pages:
            url, params = adapter.build_page_request(sol, page)
            payload = await self.fetch_json(adapter.name, sol, url, params)

            if payload is None:
                if page == 0 and adapter.not_found_means_empty:
                    logger.info(f"{adapter.name} sol {sol}: not found upstream, treating as empty")
                    return [], None, True, 0
                break

            pages_fetched += 1
            page_items = adapter.extract_items(payload)
            if page == 0:
                expected_total = adapter.extract_total(payload)
            if not page_items:
                break

            items.extend(page_items)
            if not adapter.has_more(page, page_items, expected_total):
                break
            page += 1
        else:
            logger.warning(f"{adapter.name} sol {sol}: stopped at page cap ({self.max_pages})")

        return items, expected_total, False, pages_fetched

    # =========================================================================
    # SCRAPING
    # =========================================================================

    async def scrape_sol(
        self,
        session: AsyncSession,
        source: str,
        sol: int,
        adapter: Optional[SourceAdapter] = None,
    ) -> SolScrapeResult:
        """
        Fetch, parse, deduplicate and store all photos of one sol.

        Args:
            session: Database session used for the dedupe check and inserts
            source: Source key (curiosity, perseverance)
            sol: Sol to scrape
            adapter: Adapter override; defaults to the registered one

        Returns:
            SolScrapeResult with inserted / skipped / duplicate counts

        Raises:
            SourceFetchError: If any page could not be fetched
        """
        adapter = adapter or get_source_adapter(source)
        result = SolScrapeResult(source=adapter.name, sol=sol)

        raw_items, expected_total, not_found, pages = await self.fetch_sol_items(adapter, sol)
        result.expected_count = expected_total
        result.not_found = not_found
        result.pages_fetched = pages
        result.items_fetched = len(raw_items)
        if not raw_items:
            return result

        candidates: List[CanonicalPhoto] = []
        for raw in raw_items:
            parsed = adapter.parse(raw, sol=sol)
            if isinstance(parsed, ParseError):
                result.skipped += 1
                result.errors.append(str(parsed))
                continue
            if parsed.skip:
                result.skipped += 1
                continue
            candidates.append(parsed)

        if result.errors:
            logger.warning(
                f"{adapter.name} sol {sol}: {len(result.errors)} items could not be parsed "
                f"(first: {result.errors[0]})"
            )

        counts = await self._dedup.store_new_photos(session, candidates)
        result.inserted = counts["inserted"]
        result.duplicates = counts["duplicates"]

        logger.info(
            f"{adapter.name} sol {sol}: {result.items_fetched} items over {pages} pages, "
            f"{result.inserted} inserted, {result.duplicates} duplicates, {result.skipped} skipped"
        )
        return result


# Global scraper instance
sol_scraper = SolScraper()
