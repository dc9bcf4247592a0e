"""
Catalog source fetcher with bounded timeouts and retry logic.

The source answers one GET with the full product list. Transient failures
(5xx, timeouts, connection errors) are retried with exponential backoff; any
other non-2xx status fails immediately. Every failure surfaces as a
FetchFailure carrying the status code when there is one.
"""

import asyncio
import logging
from typing import List, Optional

import httpx
from pydantic import ValidationError

from core.config import settings
from core.exceptions import FetchFailure
from schemas.catalog import SourceRecord

logger = logging.getLogger(__name__)


class CatalogFetcher:
    """
    Retrieve the complete catalog as a list of SourceRecord.

    Attributes:
        source_url: Catalog endpoint returning a JSON array of products
        timeout: Request timeout in seconds
        max_retries: Maximum attempts for transient failures
        retry_delay: Initial backoff delay in seconds
    """

    def __init__(
        self,
        source_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.source_url = source_url or settings.CATALOG_API_URL
        self.timeout = timeout if timeout is not None else settings.FETCH_TIMEOUT
        self.max_retries = max(1, max_retries if max_retries is not None else settings.MAX_RETRIES)
        self.retry_delay = retry_delay
        self._client = client

    def for_url(self, source_url: str) -> "CatalogFetcher":
        """Same fetcher settings pointed at another endpoint."""
        return CatalogFetcher(
            source_url=source_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
            retry_delay=self.retry_delay,
            client=self._client
        )

    async def fetch(self) -> List[SourceRecord]:
        """
        Fetch and validate the full record set.

        Records that do not match the SourceRecord shape are logged and left
        out; they cannot be reconciled without a title and category.

        Raises:
            FetchFailure: source unreachable, non-2xx status, or a body that is
                not a JSON list
        """
        if self._client is not None:
            response = await self._get_with_retry(self._client)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await self._get_with_retry(client)

        try:
            data = response.json()
        except ValueError as e:
            raise FetchFailure(
                "Failed to parse JSON response",
                status_code=response.status_code,
                context={"source_url": self.source_url, "response_body": response.text[:500]},
                original_exception=e
            )

        if isinstance(data, dict):
            data = data.get("data", data.get("products", data.get("results")))

        if not isinstance(data, list):
            raise FetchFailure(
                "Catalog response is not a list of products",
                status_code=response.status_code,
                context={"source_url": self.source_url}
            )

        records = []
        for index, raw in enumerate(data):
            try:
                records.append(SourceRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    f"Discarding malformed catalog record at index {index}: "
                    f"{e.error_count()} validation error(s)"
                )

        logger.info(f"Fetched {len(records)} products from {self.source_url}")
        return records

    async def _get_with_retry(self, client: httpx.AsyncClient) -> httpx.Response:
        last_exception = None

        for attempt in range(self.max_retries):
            is_last = attempt == self.max_retries - 1
            delay = self.retry_delay * (2 ** attempt)

            try:
                logger.debug(f"Fetch attempt {attempt + 1}/{self.max_retries} to {self.source_url}")
                response = await client.get(self.source_url, timeout=self.timeout)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_exception = e
                if not is_last:
                    logger.warning(f"{type(e).__name__} fetching catalog. Retrying in {delay} seconds")
                    await asyncio.sleep(delay)
                    continue
                break

            if response.status_code >= 500 and not is_last:
                logger.warning(
                    f"Server error {response.status_code}. "
                    f"Retrying in {delay} seconds (attempt {attempt + 1}/{self.max_retries})"
                )
                await asyncio.sleep(delay)
                continue

            if not response.is_success:
                raise FetchFailure(
                    f"Failed to fetch products from API: {response.status_code}",
                    status_code=response.status_code,
                    context={
                        "source_url": self.source_url,
                        "retry_count": attempt + 1,
                        "response_body": response.text[:500]
                    }
                )

            return response

        raise FetchFailure(
            f"Failed to fetch products from API after {self.max_retries} attempts",
            context={"source_url": self.source_url, "retry_count": self.max_retries},
            original_exception=last_exception
        )
