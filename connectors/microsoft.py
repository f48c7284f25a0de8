"""
MicrosoftConnector: Microsoft identity platform (Entra ID) for SharePoint.

Two grants share this class:
  • client-credentials with the service-account app (no user involved)
  • authorization-code + refresh with the delegated (per-user) app
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from config.settings import Settings, config as default_config
from connectors.base import BaseConnector
from core.errors import ConfigurationError, RemoteApiError

logger = logging.getLogger(__name__)

_LOGIN_BASE = "https://login.microsoftonline.com"
_GRAPH_DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
_DELEGATED_SCOPES = ["User.Read", "Sites.Read.All", "offline_access"]


def _token_error(prefix: str, exc: httpx.HTTPError) -> RemoteApiError:
    status_code: Optional[int] = None
    detail = str(exc)
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        try:
            body = exc.response.json()
            detail = body.get("error_description") or body.get("error") or detail
        except ValueError:
            pass
    return RemoteApiError(f"{prefix}: {detail}", status_code=status_code)


class MicrosoftConnector(BaseConnector):
    """OAuth2 connector for SharePoint via Microsoft Graph."""

    def __init__(
        self,
        settings: Settings = default_config,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._transport = transport

    @property
    def provider_name(self) -> str:
        return "sharepoint"

    @property
    def display_name(self) -> str:
        return "SharePoint"

    @property
    def scopes(self) -> List[str]:
        return list(_DELEGATED_SCOPES)

    def is_configured(self) -> bool:
        s = self._settings
        return bool(
            s.oauth_client_id
            and s.oauth_client_secret
            and s.sharepoint_redirect_uri
            and len(s.sharepoint_encryption_key.encode()) == 32
        )

    def is_app_configured(self) -> bool:
        s = self._settings
        return bool(s.sharepoint_tenant_id and s.sharepoint_client_id and s.sharepoint_client_secret)

    def _token_url(self, tenant: str) -> str:
        return f"{_LOGIN_BASE}/{tenant}/oauth2/v2.0/token"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport)

    async def _post_token(self, tenant: str, form: Dict[str, str], error_prefix: str) -> Dict[str, Any]:
        async with self._client() as client:
            try:
                resp = await client.post(
                    self._token_url(tenant),
                    data=form,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                logger.error("%s: %s", error_prefix, exc)
                raise _token_error(error_prefix, exc) from exc
            return resp.json()

    # ── Delegated flow ──────────────────────────────────────────────────

    def get_auth_url(self, state: str) -> str:
        if not self.is_configured():
            raise ConfigurationError("SharePoint OAuth is not properly configured")
        params = {
            "client_id": self._settings.oauth_client_id,
            "response_type": "code",
            "redirect_uri": self._settings.sharepoint_redirect_uri,
            "response_mode": "query",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{_LOGIN_BASE}/{self._settings.oauth_tenant_id}/oauth2/v2.0/authorize?{urlencode(params)}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """Exchange auth code for tokens."""
        if not self.is_configured():
            raise ConfigurationError("SharePoint OAuth is not properly configured")
        data = await self._post_token(
            self._settings.oauth_tenant_id,
            {
                "client_id": self._settings.oauth_client_id,
                "client_secret": self._settings.oauth_client_secret,
                "code": code,
                "redirect_uri": self._settings.sharepoint_redirect_uri,
                "grant_type": "authorization_code",
                "scope": " ".join(self.scopes),
            },
            "Failed to obtain SharePoint access token",
        )
        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": data.get("expires_in", 3600),
            "tenant_id": data.get("tenant_id"),
        }

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """Use refresh token to get a new access token."""
        if not self.is_configured():
            raise ConfigurationError("SharePoint OAuth is not properly configured")
        data = await self._post_token(
            self._settings.oauth_tenant_id,
            {
                "client_id": self._settings.oauth_client_id,
                "client_secret": self._settings.oauth_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "scope": " ".join(self.scopes),
            },
            "Failed to refresh SharePoint token",
        )
        return {
            "access_token": data["access_token"],
            "expires_in": data.get("expires_in", 3600),
            # Microsoft does not always rotate the refresh token
            "refresh_token": data.get("refresh_token") or refresh_token,
        }

    # ── Service-account flow ────────────────────────────────────────────

    async def acquire_app_token(self) -> Tuple[str, int]:
        if not self.is_app_configured():
            raise ConfigurationError(
                "SharePoint is not properly configured. Required env vars: "
                "SHAREPOINT_TENANT_ID, SHAREPOINT_CLIENT_ID, SHAREPOINT_CLIENT_SECRET"
            )
        logger.info("Acquiring new SharePoint service token…")
        data = await self._post_token(
            self._settings.sharepoint_tenant_id,
            {
                "client_id": self._settings.sharepoint_client_id,
                "client_secret": self._settings.sharepoint_client_secret,
                "scope": _GRAPH_DEFAULT_SCOPE,
                "grant_type": "client_credentials",
            },
            "Failed to authenticate with SharePoint",
        )
        return data["access_token"], int(data.get("expires_in", 3600))
