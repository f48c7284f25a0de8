"""
Paginated fetcher for ``{value: [...], @odata.nextLink?}`` listings.

The first request goes through the endpoint builder; every later one uses
the server's next-link verbatim.  Fetching stops when no next-link comes
back or when ``max_records`` is reached.  Hitting the cap is a logged
warning and a truncated-but-successful result; any HTTP error aborts the
whole fetch with ``RemoteApiError`` and nothing partial is returned.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from sources.http import JsonApiClient, TokenProvider

logger = logging.getLogger(__name__)

MAX_RECORDS = 100_000


class PaginatedFetcher:
    def __init__(
        self,
        api: JsonApiClient,
        *,
        max_records: int = MAX_RECORDS,
        items_key: str = "value",
        next_link_key: str = "@odata.nextLink",
    ):
        self._api = api
        self.max_records = max_records
        self._items_key = items_key
        self._next_link_key = next_link_key
        self.requests_made = 0

    async def fetch_all(self, initial_request: str, token_provider: TokenProvider) -> List[Dict[str, Any]]:
        records: List[Dict[str, Any]] = []
        next_link: str | None = initial_request
        self.requests_made = 0

        async with self._api.open() as client:
            while next_link:
                page = await self._api.get_json(client, next_link, await token_provider())
                self.requests_made += 1

                records.extend(page.get(self._items_key) or [])
                next_link = page.get(self._next_link_key) or None
                logger.debug("Fetched %d items so far…", len(records))

                if len(records) >= self.max_records:
                    if next_link or len(records) > self.max_records:
                        logger.warning(
                            "Reached %d item limit, stopping pagination", self.max_records
                        )
                    del records[self.max_records:]
                    break

        logger.info("Total items fetched: %d", len(records))
        return records
