"""Main FastAPI application for realty-access"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
from realty_access.config import settings
from realty_access.database.database import engine, Base, SessionLocal
from realty_access.api.routes import auth, invitations, members, roles, tenants
from realty_access.errors import AccessError, RateLimited
from realty_access.middleware.rate_limiting import init_redis
from realty_access.monitoring.metrics import router as metrics_router
from realty_access.services.permission_cache import InMemoryPermissionCache

logger = structlog.get_logger()


def seed_default_roles():
    """Make sure the default role catalogue exists"""
    if not settings.SEED_DEFAULT_ROLES:
        return

    from realty_access.seed import seed_rbac

    session = SessionLocal()
    try:
        seed_rbac(session)
    except Exception as e:
        logger.error("Failed to seed default roles", error=str(e))
        session.rollback()
    finally:
        session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    # Startup
    logger.info("realty-access service starting up")
    # Initialize Redis for rate limiting
    init_redis()
    # Create database tables
    Base.metadata.create_all(bind=engine)
    seed_default_roles()

    yield

    # Shutdown
    logger.info("realty-access service shutting down")


app = FastAPI(
    title="Realty Access API",
    description="Tenant-scoped authorization for the realty CRM",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# One cache per process; services receive it through get_permission_cache
app.state.permission_cache = InMemoryPermissionCache(settings.PERMISSION_CACHE_TTL_SECONDS)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError):
    """Render domain errors with their status and machine-readable reason"""
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    elif isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "reason": exc.reason},
        headers=headers,
    )


# Include routers
app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(tenants.router, prefix="/api/v1/tenants", tags=["tenants"])
app.include_router(members.router, prefix="/api/v1/tenants/{tenant_id}/members", tags=["members"])
app.include_router(invitations.router, prefix="/api/v1/tenants/{tenant_id}/invitations", tags=["invitations"])
app.include_router(invitations.public_router, prefix="/api/v1/invitations", tags=["invitations"])
app.include_router(roles.router, prefix="/api/v1/roles", tags=["roles"])
app.include_router(roles.permissions_router, prefix="/api/v1/permissions", tags=["permissions"])
app.include_router(metrics_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "realty-access"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("realty_access.main:app", host="0.0.0.0", port=settings.PORT)
