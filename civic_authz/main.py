from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse

from civic_authz.db.init_db import init_db
from civic_authz.db.session import SessionLocal, engine
from civic_authz.logging_config import configure_app_logging
from civic_authz.rbac.catalog import load_permission_catalog
from civic_authz.rbac.errors import AuthorizationDenied, LookupFailure
from civic_authz.rbac.hooks import InvalidationHooks
from civic_authz.rbac.service import AuthorizationService
from civic_authz.routers import admin, health
from civic_authz.security.dependencies import enforce_declared_permissions
from civic_authz.services.assignments import AssignmentService, RecordNotFound
from civic_authz.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthorizationDenied)
    async def _denied(request: Request, exc: AuthorizationDenied) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content=exc.to_dict())

    @app.exception_handler(LookupFailure)
    async def _lookup_failed(request: Request, exc: LookupFailure) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"message": "Permission data unavailable"},
        )

    @app.exception_handler(RecordNotFound)
    async def _not_found(request: Request, exc: RecordNotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"message": str(exc)})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        catalog_path = settings.resolved_catalog_path()
        catalog = load_permission_catalog(catalog_path)
        logger.info("Loaded permission catalog: %s", catalog_path)

        init_db(engine, catalog, seed_demo_data=settings.seed_demo_data)
        logger.info("Database initialized (tables ensured + catalog seeded)")

        authz = AuthorizationService.from_settings(settings, SessionLocal)
        authz.start()
        app.state.authz = authz
        app.state.assignments = AssignmentService(SessionLocal, authz, InvalidationHooks(authz))

        yield

        authz.shutdown()
        logger.info("App shutdown complete")

    # Global dependency: endpoints opt in with @require_permissions.
    app = FastAPI(dependencies=[Depends(enforce_declared_permissions)], lifespan=lifespan)
    install_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(admin.router)

    return app


app = create_app()
