"""
FastAPI dependencies (shared across routes) and the composition root.

``build_services()`` wires every long-lived collaborator exactly once per
process: the credential vault, the service-token cache, the Microsoft
connector, both token brokers and the per-source clients.  ``create_app``
stores the result on ``app.state.services``; routes reach it through
``get_services``.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, AsyncGenerator, Callable, Dict, Optional

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from connectors.encryption import CredentialVault
from connectors.microsoft import MicrosoftConnector
from connectors.token_cache import TokenCache
from connectors.token_manager import ConnectionStore, ServiceTokenBroker, SqlConnectionStore, UserTokenBroker
from core.orchestrator import ImportOrchestrator
from database.helpers import FileStore
from database.session import get_db_session
from sources.base import TableSource
from sources.google_sheets import GoogleSheetsClient, GoogleSheetsSource
from sources.sharepoint import SharePointOAuthSource, SharePointSource
from sources.sql_database import SqlDatabaseClient, SqlDatabaseSource
from sources.sql_dump import SqlDumpTableSource, resolve_dump_path


async def db_session(session: AsyncSession = Depends(get_db_session)) -> AsyncGenerator[AsyncSession, None]:
    """Re-export so routes import from a single place."""
    yield session


@dataclass
class Services:
    settings: Settings
    vault: CredentialVault
    token_cache: TokenCache
    connector: MicrosoftConnector
    service_broker: ServiceTokenBroker
    user_broker: UserTokenBroker
    sheets: GoogleSheetsClient
    sql: SqlDatabaseClient
    transport: Optional[httpx.AsyncBaseTransport] = None

    def sharepoint(self) -> SharePointSource:
        return SharePointSource(self.service_broker, transport=self.transport)

    def sharepoint_oauth(self) -> SharePointOAuthSource:
        return SharePointOAuthSource(self.user_broker, transport=self.transport)

    def sources(self, store: FileStore) -> Dict[str, TableSource]:
        return {
            "sharepoint": self.sharepoint(),
            "sharepoint_oauth": self.sharepoint_oauth(),
            "google_sheet": GoogleSheetsSource(self.sheets),
            "sql_mysql": SqlDatabaseSource("mysql", self.sql),
            "sql_postgresql": SqlDatabaseSource("postgresql", self.sql),
            "sql_dump": SqlDumpTableSource(partial(resolve_dump_path, store)),
        }

    def orchestrator(self, session: Optional[AsyncSession] = None) -> ImportOrchestrator:
        store = FileStore(session)
        return ImportOrchestrator(self.sources(store), store)


def build_services(
    settings: Settings = config,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    connection_store: Optional[ConnectionStore] = None,
    sheets_service_factory: Optional[Callable[[], Any]] = None,
    token_cache: Optional[TokenCache] = None,
) -> Services:
    vault = CredentialVault(settings.sharepoint_encryption_key)
    cache = token_cache or TokenCache()
    connector = MicrosoftConnector(settings, transport=transport)
    # connection rows live in their own sessions so a 401-triggered
    # disconnect survives the failing request's rollback
    user_broker = UserTokenBroker(connector, vault, connection_store or SqlConnectionStore())
    return Services(
        settings=settings,
        vault=vault,
        token_cache=cache,
        connector=connector,
        service_broker=ServiceTokenBroker(connector, cache),
        user_broker=user_broker,
        sheets=GoogleSheetsClient(settings, service_factory=sheets_service_factory),
        sql=SqlDatabaseClient(),
        transport=transport,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_orchestrator(
    services: Services = Depends(get_services),
    session: AsyncSession = Depends(db_session),
) -> ImportOrchestrator:
    return services.orchestrator(session)


def get_file_store(session: AsyncSession = Depends(db_session)) -> FileStore:
    return FileStore(session)
