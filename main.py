"""
Tabular Import Service: application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import Services, build_services
from api.errors import register_exception_handlers
from api.imports import router as imports_router
from api.middleware import register_middleware
from api.routes import router as api_router
from auth.routes import router as auth_router
from config.settings import config
from connectors.routes import router as sharepoint_router
from database.session import dispose_engine, init_models

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s | %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "googleapiclient.discovery_cache", "sqlalchemy.engine", "urllib3"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(services: Optional[Services] = None, *, init_db: bool = True) -> FastAPI:
    app = FastAPI(
        title="Tabular Import Service",
        version="1.0.0",
        description="Import tables from Excel, Google Sheets, SharePoint and SQL sources.",
    )
    app.state.services = services or build_services(config)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)
    register_exception_handlers(app)

    # Routes
    app.include_router(auth_router, prefix="/api/v1/auth")
    app.include_router(api_router, prefix="/api/v1")
    app.include_router(imports_router, prefix="/api/v1")
    app.include_router(sharepoint_router, prefix="/api/v1/sharepoint")

    @app.on_event("startup")
    async def on_startup():
        svc: Services = app.state.services
        if init_db:
            await init_models()

        if not svc.service_broker.is_configured():
            logger.warning("SharePoint service account not configured; service-mode imports disabled")
        if not svc.user_broker.is_configured():
            logger.warning("SharePoint OAuth not configured; per-user imports disabled")
        if not svc.sheets.is_configured():
            logger.warning("Google Sheets not configured; sheet imports disabled")

        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        if init_db:
            await dispose_engine()

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
