"""
BaseConnector: abstract interface for OAuth2 identity providers.

A connector knows how to build the authorization URL, exchange a code,
refresh a user token and, for providers that support it, obtain an
application (service-mode) token.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'sharepoint'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'SharePoint'."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """Delegated OAuth scopes requested on behalf of a user."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque state string (encodes user_id + timestamp).
        """
        ...

    @abstractmethod
    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns
        -------
        dict with keys: access_token, refresh_token, expires_in, tenant_id
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Refresh an expired access token.

        Returns
        -------
        dict with keys: access_token, expires_in, refresh_token (the old one
        when the provider does not rotate it)
        """
        ...

    async def acquire_app_token(self) -> Tuple[str, int]:
        """Client-credentials grant: ``(access_token, expires_in)``."""
        raise NotImplementedError(f"{self.display_name} has no service-mode grant")

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """Return True if delegated (per-user) OAuth can run."""
        return True

    def is_app_configured(self) -> bool:
        """Return True if the service-mode grant can run."""
        return False
