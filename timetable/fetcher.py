"""
Async HTTP access to the schedule source and the class to slug mapping.
Implements throttled requests with retry logic and exponential backoff.
"""

import asyncio
from typing import Dict, Optional

import httpx
import structlog
from asyncio_throttle import Throttler

from timetable.errors import FetchError, MappingError, MappingFetchError
from utilities.config import config
from utilities.logger import CheckLogger

logger = structlog.get_logger(__name__)


class ScheduleFetcher:
    """
    Fetches weekly schedule pages and the class to slug mapping document.

    One fetcher can serve a whole batch; the underlying client is opened lazily
    and shared between concurrent class checks.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the fetcher.

        Args:
            client: Optional preconfigured HTTP client (tests pass one backed by a mock transport)
        """
        self.logger = logger.bind(component="schedule_fetcher")
        self.check_logger = CheckLogger("schedule_fetcher")
        self.throttler = Throttler(rate_limit=config.rate_limit_per_second)
        self._client = client
        self._owns_client = client is None
        self.schedule_auth = httpx.BasicAuth(config.schedule_username, config.schedule_password)

        self.client_config = {
            "timeout": config.request_timeout,
            "headers": config.get_headers(),
            "follow_redirects": True,
            "limits": httpx.Limits(max_keepalive_connections=10, max_connections=20),
        }

    async def __aenter__(self) -> "ScheduleFetcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(**self.client_config)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def schedule_url(slug: str, week: int) -> str:
        """
        Build the schedule page URL for a class slug and ISO week.

        Args:
            slug: Opaque per-class identifier from the mapping document
            week: ISO week number (1-53)

        Returns:
            Absolute URL of the weekly schedule page
        """
        path = config.schedule_path_template.format(week=week, slug=slug)
        return config.schedule_base_url.rstrip("/") + path

    async def fetch_mapping(self) -> Dict[str, str]:
        """
        Load the class to slug mapping.

        Returns:
            Mapping of class name to slug

        Raises:
            MappingFetchError: If the document cannot be loaded or is not a JSON object
        """
        try:
            response = await self._make_request_with_retry(config.mapping_url)
            mapping = response.json()
        except FetchError as e:
            raise MappingFetchError(f"Failed to load class mapping: {e}") from e
        except ValueError as e:
            raise MappingFetchError(f"Class mapping is not valid JSON: {e}") from e

        if not isinstance(mapping, dict):
            raise MappingFetchError("Class mapping is not a JSON object")

        self.logger.info("Loaded class mapping", classes=len(mapping))
        return {str(name): str(slug) for name, slug in mapping.items()}

    @staticmethod
    def resolve_slug(mapping: Dict[str, str], class_name: str) -> str:
        """
        Look up the slug for a class.

        Raises:
            MappingError: If the class has no entry in the mapping
        """
        slug = mapping.get(class_name)
        if not slug:
            raise MappingError(class_name)
        return slug

    async def fetch_schedule(self, slug: str, week: int) -> str:
        """
        Fetch the raw schedule page for one class and week.

        Args:
            slug: Class slug from the mapping
            week: ISO week number

        Returns:
            Raw HTML markup

        Raises:
            FetchError: If the page is unreachable or answers with a non-2xx status
        """
        url = self.schedule_url(slug, week)
        response = await self._make_request_with_retry(url, auth=self.schedule_auth)
        # The schedule host serves Latin-1 pages without a charset header.
        if response.charset_encoding is None:
            response.encoding = "iso-8859-1"
        return response.text

    async def _make_request_with_retry(self, url: str, auth: Optional[httpx.Auth] = None) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Network errors and 5xx answers are retried; 4xx answers fail at once.

        Args:
            url: URL to request
            auth: Credentials for this request; the mapping host takes none

        Returns:
            HTTP response with a 2xx status

        Raises:
            FetchError: When every attempt failed
        """
        client = self._get_client()
        last_error: Optional[FetchError] = None

        for attempt in range(config.retry_attempts + 1):
            try:
                async with self.throttler:
                    response = await client.get(url, auth=auth)
                response.raise_for_status()
                return response

            except httpx.HTTPStatusError as e:
                last_error = FetchError(
                    f"HTTP {e.response.status_code} for {url}",
                    url=url,
                    status_code=e.response.status_code,
                )
            except httpx.HTTPError as e:
                last_error = FetchError(f"Request to {url} failed: {e!r}", url=url)

            if not last_error.is_transient:
                break

            if attempt < config.retry_attempts:
                delay = config.retry_delay * (2 ** attempt)
                self.check_logger.log_retry(url, attempt + 1, config.retry_attempts, delay)
                await asyncio.sleep(delay)

        self.logger.warning("Request failed", url=url, status_code=last_error.status_code, error=str(last_error))
        raise last_error
