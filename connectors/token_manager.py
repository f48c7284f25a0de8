"""
Token manager: service-mode and per-user bearer tokens for SharePoint.

``ServiceTokenBroker`` wraps the client-credentials grant around an injected
``TokenCache``.  ``UserTokenBroker`` owns the per-user lifecycle: connect
(authorize URL + callback), get-with-refresh, and disconnect.  Tokens are
stored encrypted through ``CredentialVault`` in a ``ConnectionStore``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.base import BaseConnector
from connectors.encryption import CredentialVault
from connectors.oauth_state import create_state, parse_state
from connectors.token_cache import TokenCache
from core.errors import NotConnectedError
from database.models import SharePointConnection
from database.session import run_in_session

logger = logging.getLogger(__name__)

REFRESH_WINDOW = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Service mode ───────────────────────────────────────────────────────


class ServiceTokenBroker:
    """Client-credentials token, cached process-wide by the injected cache."""

    def __init__(self, connector: BaseConnector, cache: TokenCache):
        self._connector = connector
        self._cache = cache

    def is_configured(self) -> bool:
        return self._connector.is_app_configured()

    async def get_token(self) -> str:
        return await self._cache.get(self._connector.acquire_app_token)


# ── Connection storage ─────────────────────────────────────────────────


@dataclass
class ConnectionRecord:
    user_id: int
    access_token: str   # encrypted
    refresh_token: str  # encrypted
    expires_at: datetime
    tenant_id: Optional[str] = None


class ConnectionStore(Protocol):
    async def get(self, user_id: int) -> Optional[ConnectionRecord]: ...

    async def upsert(self, record: ConnectionRecord) -> None: ...

    async def delete(self, user_id: int) -> bool: ...


class SqlConnectionStore:
    """``sharepoint_connections`` table; one row per user."""

    def __init__(self, db_session: Optional[AsyncSession] = None):
        self._db_session = db_session

    async def _run(self, fn):
        return await run_in_session(self._db_session, fn)

    async def get(self, user_id: int) -> Optional[ConnectionRecord]:
        async def _get(session: AsyncSession):
            result = await session.execute(
                select(SharePointConnection).where(SharePointConnection.user_id == user_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return ConnectionRecord(
                user_id=row.user_id,
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                expires_at=row.expires_at,
                tenant_id=row.tenant_id,
            )

        return await self._run(_get)

    async def upsert(self, record: ConnectionRecord) -> None:
        async def _upsert(session: AsyncSession):
            result = await session.execute(
                select(SharePointConnection).where(SharePointConnection.user_id == record.user_id)
            )
            existing = result.scalar_one_or_none()
            if existing:
                existing.access_token = record.access_token
                existing.refresh_token = record.refresh_token
                existing.expires_at = record.expires_at
                existing.tenant_id = record.tenant_id
                existing.updated_at = _utcnow()
            else:
                session.add(
                    SharePointConnection(
                        user_id=record.user_id,
                        access_token=record.access_token,
                        refresh_token=record.refresh_token,
                        expires_at=record.expires_at,
                        tenant_id=record.tenant_id,
                    )
                )

        await self._run(_upsert)

    async def delete(self, user_id: int) -> bool:
        async def _delete(session: AsyncSession):
            result = await session.execute(
                delete(SharePointConnection).where(SharePointConnection.user_id == user_id)
            )
            return bool(result.rowcount)

        return await self._run(_delete)


# ── User mode ──────────────────────────────────────────────────────────


class UserTokenBroker:
    """Per-user OAuth tokens with transparent refresh."""

    def __init__(
        self,
        connector: BaseConnector,
        vault: CredentialVault,
        store: ConnectionStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._connector = connector
        self._vault = vault
        self._store = store
        self._clock = clock

    def is_configured(self) -> bool:
        return self._connector.is_configured() and self._vault.is_configured

    def build_auth_url(self, user_id: int) -> str:
        state = create_state(user_id, now=self._clock().timestamp())
        return self._connector.get_auth_url(state)

    async def complete_authorization(self, code: str, state: str) -> int:
        """
        Handle the OAuth redirect: recover the user from *state*, exchange the
        code, and store the encrypted tokens.  Returns the user id.
        """
        user_id = parse_state(state, now=self._clock().timestamp())
        token_data = await self._connector.handle_callback(code)
        await self.store_tokens(
            user_id,
            token_data["access_token"],
            token_data.get("refresh_token") or "",
            token_data.get("expires_in", 3600),
            token_data.get("tenant_id"),
        )
        logger.info("SharePoint connection established for user %s", user_id)
        return user_id

    async def store_tokens(
        self,
        user_id: int,
        access_token: str,
        refresh_token: str,
        expires_in: int,
        tenant_id: Optional[str] = None,
    ) -> None:
        await self._store.upsert(
            ConnectionRecord(
                user_id=user_id,
                access_token=self._vault.encrypt(access_token),
                refresh_token=self._vault.encrypt(refresh_token),
                expires_at=self._clock() + timedelta(seconds=int(expires_in)),
                tenant_id=tenant_id,
            )
        )

    async def get_user_access_token(self, user_id: int) -> str:
        """
        Return a usable access token for *user_id*.

        1. Load the connection (``NotConnectedError`` if absent).
        2. If it expires within five minutes, refresh and rewrite both tokens.
        3. Return the decrypted access token.
        """
        conn = await self._store.get(user_id)
        if conn is None:
            raise NotConnectedError(user_id)

        if conn.expires_at <= self._clock() + REFRESH_WINDOW:
            logger.info("SharePoint token for user %s is expired or expiring soon, refreshing…", user_id)
            refreshed = await self._connector.refresh_access_token(
                self._vault.decrypt(conn.refresh_token)
            )
            await self.store_tokens(
                user_id,
                refreshed["access_token"],
                refreshed["refresh_token"],
                refreshed.get("expires_in", 3600),
                conn.tenant_id,
            )
            return refreshed["access_token"]

        return self._vault.decrypt(conn.access_token)

    async def is_connected(self, user_id: int) -> bool:
        return await self._store.get(user_id) is not None

    async def disconnect(self, user_id: int) -> bool:
        deleted = await self._store.delete(user_id)
        if deleted:
            logger.info("SharePoint connection removed for user %s", user_id)
        return deleted

    async def handle_unauthorized(self, user_id: int) -> None:
        """Remote API answered 401: the stored token is dead, drop it."""
        logger.warning("Invalid token for user %s, disconnecting…", user_id)
        await self.disconnect(user_id)
