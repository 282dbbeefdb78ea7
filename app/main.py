"""FastAPI application entry point."""

import logging
import os

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.errors import RunError
from app.routes import canon, models, results, runs, transforms

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.SITE_NAME,
    description="Scripture recitation fidelity evaluation of language models",
    version="0.1.0",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(canon.router)
app.include_router(models.router)
app.include_router(runs.router)
app.include_router(results.router)
app.include_router(transforms.router)


@app.exception_handler(RunError)
def run_error_handler(request: Request, exc: RunError):
    """Map orchestration errors to their HTTP status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path}: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"ok": False, "error": exc.to_dict()})


@app.on_event("startup")
def startup_event():
    """Run database migrations unless the schema is already in place."""
    logger.info("Starting application...")

    from app.database import engine

    try:
        table_exists = sqlalchemy.inspect(engine).has_table("transform_profiles")

        if table_exists:
            logger.info("Database tables already exist, skipping migrations")
        else:
            logger.info("Running database migrations...")
            from alembic import command
            from alembic.config import Config

            alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
            command.upgrade(alembic_cfg, "head")
            logger.info("Database migrations completed successfully")
    except Exception as e:
        logger.error(f"Startup database check/migration error: {e}")
        logger.info("Continuing startup - assuming database is ready")


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "name": settings.SITE_NAME,
        "version": "0.1.0",
        "status": "running",
    }
