from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from loadhunter.api.router import api_router
from loadhunter.background.scheduler import shutdown_scheduler, start_scheduler
from loadhunter.core.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

db_initialized = False
db_error: str | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    global db_initialized, db_error
    from loadhunter.core.db import init_database, test_database_connection

    logger.info("Starting application initialization")
    if await test_database_connection():
        await init_database()
        db_initialized = True
    else:
        db_error = "Database connection failed"
        logger.error(db_error)

    start_scheduler()
    logger.info("Application startup complete")

    yield

    shutdown_scheduler()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.project_name,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Dispatcher-Email", "X-Dispatcher-Name", "X-Dispatcher-Id"],
)

app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Health check endpoint - responds immediately, reports database status."""
    return {
        "status": "ok",
        "service": settings.project_name,
        "database_ready": db_initialized,
        "database_error": db_error,
    }
