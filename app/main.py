"""
Course Access Backend API
Paid course access: Stripe checkout, access codes, renewals and expiry.
"""
from dotenv import load_dotenv
load_dotenv()

import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

# Render captures stdout/stderr, but logging module is more reliable
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Run Alembic migrations on startup. Uses alembic.ini and DATABASE_URL.
    Fails startup if migrations fail, so the DB is never left out of sync."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        logger.warning("alembic.ini not found, skipping Alembic migrations")
        return
    try:
        alembic_cfg = Config(str(alembic_ini))
        alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
        alembic_cfg.set_main_option("sqlalchemy.url", SQLALCHEMY_DATABASE_URL)
        command.upgrade(alembic_cfg, "head")
        logger.info("Alembic migrations completed successfully")
    except Exception as e:
        logger.exception("Alembic migration failed: %s", e)
        raise  # Fail startup so DB is not left out of sync


from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.routes import admin, auth, checkout, webhooks
from app.core import config
from app.core.errors import AccessError
from app.db.base import Base
from app.db.session import SQLALCHEMY_DATABASE_URL, engine
# Import all models to ensure they're registered with Base
from app import models  # noqa: F401
from app.services.notifications import build_dispatcher

app = FastAPI(title="Course Access Portal")


@app.on_event("startup")
async def startup_event():
    """Create tables, run Alembic migrations, pick notification channels."""
    try:
        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.exception("Error creating tables: %s", e)
        raise

    if config.RUN_MIGRATIONS and not SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
        run_migrations()

    app.state.notifier = build_dispatcher()
    logger.info(
        "Startup complete (environment=%s, notification channels=%s)",
        config.ENVIRONMENT,
        ", ".join(app.state.notifier.channel_names) or "none",
    )


@app.on_event("shutdown")
async def shutdown_event():
    engine.dispose()


def _error_body(error: str, detail) -> dict:
    return {"success": False, "error": error, "detail": detail}


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError):
    if exc.status_code >= 500:
        logger.error("[%s] %s %s: %s", exc.error, request.method, request.url.path, exc.message)
        detail = "Internal server error" if config.IS_PRODUCTION else exc.message
    else:
        detail = exc.message
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.error, detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("invalid_input", "; ".join(messages) or "Invalid request"),
    )


HTTP_ERROR_KINDS = {
    400: "invalid_input",
    401: "unauthorized",
    404: "not_found",
    405: "method_not_allowed",
}


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(HTTP_ERROR_KINDS.get(exc.status_code, "http_error"), exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    detail = "Internal server error" if config.IS_PRODUCTION else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("internal_error", detail),
    )


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
@app.get("/health")
def health():
    return {"status": "ok", "service": "course-access", "environment": config.ENVIRONMENT}


# Register routers
app.include_router(checkout.router, tags=["Checkout"])
app.include_router(webhooks.router, tags=["Webhooks"])
app.include_router(auth.legacy_router, tags=["Auth"])
app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
