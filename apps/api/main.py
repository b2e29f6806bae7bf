# FastAPI entrypoint with all necessary routes and middleware

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy import text

from admin.customer_routes import router as customer_router
from admin.settings_routes import router as settings_router
from admin.user_routes import router as user_router
from auth.auth_routes import router as auth_router
from auth.config import get_config
from auth.errors import register_exception_handlers
from auth.models import get_engine, init_database
from auth.security_middleware import AuthorizationAuditMiddleware

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check():
    """Health check endpoint for monitoring database connectivity."""
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "database": "connected",
        }
    except Exception as e:
        logger.error(f"Health check failed: {type(e).__name__}: {e}")
        return JSONResponse(
            status_code=503,
            content={
                "status": "unhealthy",
                "timestamp": datetime.utcnow().isoformat(),
                "database": "disconnected",
            },
        )


# ==================== STARTUP ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database on startup."""
    try:
        logger.info("Initializing database...")
        init_database()
        logger.info("✓ Database initialized")
    except Exception as e:
        logger.error(f"Database init failed: {type(e).__name__}: {e}")
    yield


def create_app() -> FastAPI:
    """Build the API application."""
    config = get_config()

    app = FastAPI(
        title="Ability API",
        description="Role and attribute based authorization for a CRUD admin API",
        version="1.0.0",
        lifespan=lifespan,
    )

    # ==================== MIDDLEWARE ====================

    app.add_middleware(AuthorizationAuditMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD", "PATCH"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin"],
        max_age=86400,
    )

    register_exception_handlers(app)

    # ==================== ROUTER REGISTRATION ====================

    app.include_router(router)              # /api/health
    app.include_router(auth_router)         # /api/abilities, /api/roles
    app.include_router(user_router)         # /api/users
    app.include_router(settings_router)     # /api/settings
    app.include_router(customer_router)     # /api/customers

    @app.get("/")
    async def root():
        """Root endpoint - returns simple welcome message."""
        return {
            "message": "Ability API",
            "status": "running",
            "docs_url": "/docs",
            "api_base": "/api",
        }

    return app


app = create_app()


def main():
    import uvicorn

    uvicorn.run("apps.api.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
