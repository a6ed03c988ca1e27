"""FastAPI application wiring the Fortnox and payroll routers."""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .fortnox_mcp import routes as fortnox_routes
from .fortnox_mcp.authorization import AuthorizationFlow
from .fortnox_mcp.token_vault import TokenVault
from .payroll_mcp import routes as payroll_routes
from .shared.auth import SessionStore, build_session_store
from .shared.config import PayrollExportConfig, config
from .shared.errors import PayrollExportError
from .shared.record_store import RecordStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[PayrollExportConfig] = None,
    session_store: Optional[SessionStore] = None,
    record_store: Optional[RecordStore] = None,
) -> FastAPI:
    settings = settings or config
    app = FastAPI(title="Payroll Export")

    vault = TokenVault(session_store or build_session_store(settings), settings)
    app.state.settings = settings
    app.state.vault = vault
    app.state.flow = AuthorizationFlow(settings, vault)
    app.state.record_store = record_store

    @app.exception_handler(PayrollExportError)
    async def handle_payroll_error(request: Request, exc: PayrollExportError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    app.include_router(fortnox_routes.auth_router)
    app.include_router(fortnox_routes.employees_router)
    app.include_router(fortnox_routes.compensations_router)
    app.include_router(payroll_routes.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
