# ---------------------------------------------------------
# estatecrm/main.py
# EstateCRM - tenant-scoped CRM backend
#
# Run: uvicorn estatecrm.main:app --reload (from repo root)
#
# - FastAPI + SQLAlchemy (SQLite locally, PostgreSQL via DATABASE_URL)
# - /api/clients, /api/estate-files : CRUD + watch/unwatch + status
# - /api/sections, /api/tasks        : task board, comments
# - /api/feedback                    : feedback + comment thread
# - /api/connections                 : user connections
# - /api/notifications               : inbox
# - /api/admin/...                   : users, role permissions (admins only)
# ---------------------------------------------------------

import logging
from typing import Dict

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from estatecrm import (
    routes_admin,
    routes_clients,
    routes_connections,
    routes_estate_files,
    routes_feedback,
    routes_notifications,
    routes_tasks,
)
from estatecrm.auth_context import Principal, require_principal
from estatecrm.config import CORS_ORIGINS, IS_PROD, LOG_LEVEL, log_settings
from estatecrm.db import init_db
from estatecrm.errors import CRMError, fields_from_errors
from estatecrm.schemas import PrincipalResponse

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------
app = FastAPI(title="EstateCRM Backend", version="0.1")

# CORS configuration from config module
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

log_settings()
init_db()


# ---------------------------------------------------------
# Error envelope: { "error": code, "detail"?, "reason"?, "fields"? }
# ---------------------------------------------------------
@app.exception_handler(CRMError)
def handle_crm_error(request: Request, exc: CRMError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = fields_from_errors(exc.errors())
    logger.info(f"[API] Validation failed on {request.method} {request.url.path}: {[f['field'] for f in fields]}")
    return JSONResponse(status_code=400, content={"error": "validation_error", "fields": fields})


@app.exception_handler(HTTPException)
def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(Exception)
def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"[API] Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "internal_error"})


# ---------------------------------------------------------
# Routes
# ---------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(require_principal)) -> PrincipalResponse:
    """Resolved identity and effective permissions of the caller."""
    return PrincipalResponse(
        user_id=principal.user_id,
        organization_id=principal.organization_id,
        role=principal.role,
        email=principal.email,
        is_admin=principal.is_admin,
        permissions=sorted(principal.permissions),
    )


app.include_router(routes_clients.router)
app.include_router(routes_estate_files.router)
app.include_router(routes_tasks.sections_router)
app.include_router(routes_tasks.router)
app.include_router(routes_feedback.router)
app.include_router(routes_connections.router)
app.include_router(routes_notifications.router)
app.include_router(routes_admin.router)
