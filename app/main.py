from contextlib import asynccontextmanager
import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.api.v1.router import api_router
from app.core.tenant_router import TenantConnectionRouter
from app.database import init_db, async_session_factory
from app.middleware.tenant import tenant_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler for the multi-tenant HRMS.

    Startup:
    - Configure logging
    - Create the registry tables (tenants)
    - Build the tenant connection router

    Tenant stores are bound lazily, on the first request for each tenant.
    """
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    await init_db()
    app.state.tenant_router = TenantConnectionRouter()

    yield

    logger.info("Shutting down...")
    await app.state.tenant_router.close()


OPENAPI_TAGS = [
    {"name": "Authentication", "description": "Employee login and JWT issuing"},
    {"name": "Tenants", "description": "Platform administration of tenants and their stores"},
    {"name": "Employees", "description": "Employee directory and reporting hierarchy"},
    {"name": "Attendance", "description": "Punches, settings, calendars, overrides and bulk upload"},
    {"name": "Leaves", "description": "Leave requests, approvals and balances"},
    {"name": "Leave Policies", "description": "Leave policy rules and assignment"},
    {"name": "Regularizations", "description": "Corrections to past attendance and leave"},
    {"name": "Holidays", "description": "Holiday calendar"},
    {"name": "Notifications", "description": "In-app notifications"},
]

API_DESCRIPTION = """
## Multi-Tenant HRMS API

Attendance, leave and regularization for many tenants, each in its own
isolated store.

### Tenancy

Every `/api/v1` route except `/tenants` is tenant scoped. The tenant comes
from the `tenant_id` claim of the bearer token, the `X-Tenant-ID` header, or
the `tenantId` query parameter on login.

### Error Codes

| Code | Description |
|------|-------------|
| 400 | Bad Request - Business rule violated (see `code`) |
| 401 | Unauthorized - Invalid/expired token |
| 403 | Forbidden - Role, module or location restriction |
| 404 | Not Found - Resource or tenant doesn't exist |
| 409 | Conflict - Duplicate resource or concurrent update |
| 422 | Unprocessable Entity - Validation failed |
"""

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=API_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add tenant middleware for multi-tenant support
app.middleware("http")(tenant_middleware)

# Include API router
app.include_router(api_router)


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    """A leave balance changed underneath this request; the client should retry."""
    logger.warning(f"Concurrent update on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "error": "The record was modified by another request. Please retry.",
            "code": "CONCURRENT_UPDATE",
        },
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning(f"Integrity error on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "error": "The request conflicts with an existing record",
            "code": "CONFLICT",
        },
    )


# Global exception handler to return detailed error for debugging
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return error details as JSON; the traceback only in DEBUG."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")

    error_detail = {
        "error": str(exc),
        "type": type(exc).__name__,
        "path": str(request.url.path),
        "method": request.method,
    }
    if settings.DEBUG:
        error_detail["traceback"] = traceback.format_exc()

    response = JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_detail
    )

    # Add CORS headers if origin is allowed
    origin = request.headers.get("origin", "")
    if origin in settings.cors_origins_list or "*" in settings.cors_origins_list:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check with registry connectivity and tenant cache size."""
    from sqlalchemy import text
    from datetime import datetime, timezone

    tenant_router = getattr(request.app.state, "tenant_router", None)
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown",
            "cached_tenants": len(tenant_router) if tenant_router is not None else 0,
        }
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
