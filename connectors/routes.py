"""
SharePoint connector routes: OAuth connect/callback/disconnect, status,
and site / list / column discovery in both authentication modes.

Route prefix: /api/v1/sharepoint
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from api.dependencies import Services, get_services
from auth.dependencies import get_current_user_id
from connectors.oauth_state import InvalidStateError
from core.errors import ImportServiceError
from sources.sharepoint import SharePointGraph
from utils.schemas import SharePointListRequest, SharePointSiteRequest

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sharepoint"])


def _frontend_redirect(services: Services, **params: str) -> RedirectResponse:
    query = "&".join(f"{k}={quote(v)}" for k, v in params.items())
    return RedirectResponse(url=f"{services.settings.frontend_url}?{query}", status_code=status.HTTP_302_FOUND)


def _service_graph(services: Services) -> SharePointGraph:
    return services.sharepoint().graph()


def _user_graph(services: Services, user_id: int) -> SharePointGraph:
    return services.sharepoint_oauth().graph({"user_id": user_id})


# ── Status ─────────────────────────────────────────────────────────────


@router.get("/config-status")
async def config_status(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Whether the service account and the per-user OAuth app are configured."""
    configured = services.service_broker.is_configured()
    return {
        "configured": configured,
        "oauthConfigured": services.user_broker.is_configured(),
        "message": "SharePoint is configured" if configured else "SharePoint credentials not configured",
    }


@router.get("/connection-status")
async def connection_status(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return {
        "connected": await services.user_broker.is_connected(user_id),
        "oauthConfigured": services.user_broker.is_configured(),
    }


# ── OAuth flow ─────────────────────────────────────────────────────────


@router.get("/oauth/start")
async def oauth_start(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, str]:
    """
    Authorization URL for the signed-in user.

    Frontend should navigate (or open a popup) to this URL.
    """
    if not services.user_broker.is_configured():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SharePoint OAuth is not configured. Please contact your administrator.",
        )
    return {"authUrl": services.user_broker.build_auth_url(user_id)}


@router.get("/oauth/callback")
async def oauth_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    services: Services = Depends(get_services),
) -> RedirectResponse:
    """
    Microsoft redirects here after consent.  The initiating user is
    recovered from ``state``; the browser is sent back to the frontend
    with ``sharepoint_connected=true`` or ``sharepoint_error=...``.
    """
    if error:
        logger.error("OAuth error: %s %s", error, error_description)
        return _frontend_redirect(services, sharepoint_error=error_description or error)
    if not code or not state:
        return _frontend_redirect(services, sharepoint_error="Missing authorization code or state")

    try:
        user_id = await services.user_broker.complete_authorization(code, state)
    except InvalidStateError as exc:
        logger.warning("Rejected OAuth state: %s", exc)
        return _frontend_redirect(services, sharepoint_error=str(exc))
    except ImportServiceError as exc:
        logger.error("OAuth callback failed: %s", exc)
        return _frontend_redirect(services, sharepoint_error=str(exc))

    logger.info("SharePoint connected for user %s", user_id)
    return _frontend_redirect(services, sharepoint_connected="true")


@router.delete("/oauth/disconnect")
async def oauth_disconnect(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    await services.user_broker.disconnect(user_id)
    return {"success": True, "message": "SharePoint disconnected successfully"}


# ── Service-account discovery ──────────────────────────────────────────


@router.get("/sites")
async def list_sites(
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    return {"sites": await _service_graph(services).list_sites()}


@router.get("/site")
async def get_site(
    site: str = Query(..., description="Site id or full site URL"),
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return await _service_graph(services).get_site(site)


@router.post("/lists")
async def list_lists(
    req: SharePointSiteRequest,
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    return {"lists": await _service_graph(services).list_lists(req.site_id)}


@router.post("/metadata")
async def list_metadata(
    req: SharePointListRequest,
    _: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    columns = await _service_graph(services).list_columns(req.site_id, req.list_id)
    return {"columns": [c.to_dict() for c in columns]}


# ── Per-user discovery ─────────────────────────────────────────────────


@router.get("/user/sites")
async def list_user_sites(
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    return {"sites": await _user_graph(services, user_id).list_sites()}


@router.post("/user/lists")
async def list_user_lists(
    req: SharePointSiteRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    return {"lists": await _user_graph(services, user_id).list_lists(req.site_id)}


@router.post("/user/metadata")
async def list_user_metadata(
    req: SharePointListRequest,
    user_id: int = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> Dict[str, List[Dict[str, Any]]]:
    columns = await _user_graph(services, user_id).list_columns(req.site_id, req.list_id)
    return {"columns": [c.to_dict() for c in columns]}
