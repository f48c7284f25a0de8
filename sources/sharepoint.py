"""
SharePoint lists via Microsoft Graph, in two authentication modes.

  • ``sharepoint``: service account (client-credentials) token
  • ``sharepoint_oauth``: the importing user's delegated token; a 401
    from Graph drops the user's stored connection
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional
from urllib.parse import quote, urlparse

import httpx

from connectors.token_manager import ServiceTokenBroker, UserTokenBroker
from core.errors import ConfigurationError, InvalidSourceError
from core.normalizer import ColumnSpec, graph_field
from sources.base import SourceSession, TableSource
from sources.http import JsonApiClient, TokenProvider, UnauthorizedHook
from sources.pagination import MAX_RECORDS, PaginatedFetcher
from utils.schemas import SharePointListSource, SharePointUserListSource

logger = logging.getLogger(__name__)

GRAPH_BASE = "https://graph.microsoft.com/v1.0"
DEFAULT_PAGE_SIZE = 5000


class SharePointGraph:
    """Graph calls for sites, lists, columns and list items."""

    def __init__(
        self,
        token_provider: TokenProvider,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_unauthorized: Optional[UnauthorizedHook] = None,
        max_records: int = MAX_RECORDS,
    ):
        self._token_provider = token_provider
        self._api = JsonApiClient(GRAPH_BASE, transport=transport, on_unauthorized=on_unauthorized)
        self._max_records = max_records

    async def list_sites(self) -> List[Dict[str, Any]]:
        data = await self._api.get("/sites?search=*", self._token_provider)
        return [
            {
                "id": site["id"],
                "name": site.get("displayName") or site.get("name"),
                "webUrl": site.get("webUrl"),
                "description": site.get("description") or "",
            }
            for site in data.get("value", [])
        ]

    async def get_site(self, site_id_or_url: str) -> Dict[str, Any]:
        if site_id_or_url.startswith("http"):
            parsed = urlparse(site_id_or_url)
            endpoint = f"/sites/{parsed.hostname}:{parsed.path or '/'}"
        else:
            endpoint = f"/sites/{site_id_or_url}"
        return await self._api.get(endpoint, self._token_provider)

    async def list_lists(self, site_id: str) -> List[Dict[str, Any]]:
        data = await self._api.get(f"/sites/{site_id}/lists", self._token_provider)
        lists = []
        for item in data.get("value", []):
            meta = item.get("list") or {}
            lists.append(
                {
                    "id": item["id"],
                    "name": item.get("displayName") or item.get("name"),
                    "description": item.get("description") or "",
                    "itemCount": 0 if meta.get("contentTypesEnabled") else meta.get("itemCount", 0),
                    "webUrl": item.get("webUrl"),
                    "listType": meta.get("template") or "genericList",
                }
            )
        return lists

    async def list_columns(self, site_id: str, list_id: str) -> List[ColumnSpec]:
        """User-visible, writable columns; system columns are dropped."""
        data = await self._api.get(f"/sites/{site_id}/lists/{list_id}/columns", self._token_provider)
        return [
            ColumnSpec(
                name=col["name"],
                display_name=col.get("displayName"),
                type=col.get("columnType") or col.get("type"),
                required=bool(col.get("required")),
            )
            for col in data.get("value", [])
            if not col.get("hidden") and not col.get("readOnly")
        ]

    async def list_items(
        self,
        site_id: str,
        list_id: str,
        *,
        top: int = DEFAULT_PAGE_SIZE,
        select: Optional[str] = None,
        filter: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        endpoint = f"/sites/{site_id}/lists/{list_id}/items?expand=fields&$top={top}"
        if select:
            endpoint += f"&$select={select}"
        if filter:
            endpoint += f"&$filter={quote(filter)}"
        fetcher = PaginatedFetcher(self._api, max_records=self._max_records)
        return await fetcher.fetch_all(endpoint, self._token_provider)


class _ListSession(SourceSession):
    extractor = staticmethod(graph_field)

    def __init__(self, graph: SharePointGraph, descriptor: SharePointListSource):
        self._graph = graph
        self._descriptor = descriptor

    async def columns(self) -> List[ColumnSpec]:
        columns = await self._graph.list_columns(self._descriptor.site_id, self._descriptor.list_id)
        logger.info("Found %d columns", len(columns))
        return columns

    async def records(self, columns: List[ColumnSpec]) -> List[Mapping[str, Any]]:
        items = await self._graph.list_items(
            self._descriptor.site_id,
            self._descriptor.list_id,
            select=self._descriptor.select,
            filter=self._descriptor.filter,
        )
        logger.info("Found %d items", len(items))
        return [item.get("fields") or {} for item in items]


def _memoize(provider: TokenProvider) -> TokenProvider:
    token: Dict[str, str] = {}

    async def _get() -> str:
        if "value" not in token:
            token["value"] = await provider()
        return token["value"]

    return _get


class SharePointSource(TableSource):
    """Service-account SharePoint list import."""

    descriptor_model = SharePointListSource

    def __init__(
        self,
        broker: ServiceTokenBroker,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._broker = broker
        self._transport = transport

    @property
    def source_type(self) -> str:
        return "sharepoint"

    @property
    def mime_type(self) -> str:
        return "application/vnd.ms-sharepoint"

    def is_configured(self) -> bool:
        return self._broker.is_configured()

    def sheet_name(self, descriptor: SharePointListSource) -> str:
        return descriptor.list_name or "SharePoint List"

    def default_title(self, descriptor: SharePointListSource) -> str:
        return f"SP: {self.sheet_name(descriptor)}"

    def source_info(self, descriptor: SharePointListSource, owner_id: Optional[int] = None) -> Dict[str, Any]:
        info = super().source_info(descriptor, owner_id)
        info.setdefault("siteName", "SharePoint Site")
        info.setdefault("listName", "SharePoint List")
        return info

    def graph(self, credentials: Mapping[str, Any] | None = None) -> SharePointGraph:
        if not self.is_configured():
            raise ConfigurationError(
                "SharePoint is not configured. Please contact your administrator "
                "to set up SharePoint integration."
            )
        return SharePointGraph(self._broker.get_token, transport=self._transport)

    @asynccontextmanager
    async def open(self, descriptor: SharePointListSource, credentials: Mapping[str, Any]) -> AsyncIterator[SourceSession]:
        logger.info("Importing SharePoint list: %s from site: %s", descriptor.list_id, descriptor.site_id)
        yield _ListSession(self.graph(credentials), descriptor)


class SharePointOAuthSource(SharePointSource):
    """Per-user delegated SharePoint list import."""

    descriptor_model = SharePointUserListSource

    def __init__(
        self,
        broker: UserTokenBroker,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._user_broker = broker
        self._transport = transport

    @property
    def source_type(self) -> str:
        return "sharepoint_oauth"

    def is_configured(self) -> bool:
        return self._user_broker.is_configured()

    def source_info(self, descriptor: SharePointUserListSource, owner_id: Optional[int] = None) -> Dict[str, Any]:
        info = super().source_info(descriptor, owner_id)
        info.pop("userId", None)
        if owner_id is not None:
            info["userId"] = owner_id
        return info

    def graph(self, credentials: Mapping[str, Any] | None = None) -> SharePointGraph:
        user_id = (credentials or {}).get("user_id")
        if user_id is None:
            raise InvalidSourceError("A user id is required for a per-user SharePoint import")
        user_id = int(user_id)

        async def _on_unauthorized() -> None:
            await self._user_broker.handle_unauthorized(user_id)

        return SharePointGraph(
            _memoize(lambda: self._user_broker.get_user_access_token(user_id)),
            transport=self._transport,
            on_unauthorized=_on_unauthorized,
        )

    @asynccontextmanager
    async def open(self, descriptor: SharePointUserListSource, credentials: Mapping[str, Any]) -> AsyncIterator[SourceSession]:
        # a stored import keeps running as its owner, whoever triggers the refresh
        if descriptor.user_id is not None:
            credentials = {**(credentials or {}), "user_id": descriptor.user_id}
        logger.info(
            "Importing SharePoint list: %s from site: %s as user %s",
            descriptor.list_id, descriptor.site_id, credentials.get("user_id"),
        )
        yield _ListSession(self.graph(credentials), descriptor)
