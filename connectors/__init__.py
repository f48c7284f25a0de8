"""
connectors: Microsoft identity integration for SharePoint.

Handles:
  • OAuth2 auth-URL generation with a stateless ``state`` parameter
  • Callback handling (code → token exchange)
  • Per-user token storage & auto-refresh
  • Client-credentials service token with an in-memory cache
  • AES-256-CBC encryption of tokens at rest
  • Disconnect, including after a 401 from Graph
"""
