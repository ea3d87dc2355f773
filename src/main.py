"""FastAPI application initialization."""

from contextlib import asynccontextmanager

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.error_handlers import register_exception_handlers
from src.api.middleware import RequestContextMiddleware
from src.api.routes import router
from src.api.users import router as users_router
from src.config import get_settings
from src.database import close_database, init_database, run_migrations
from src.services.logging_service import configure_logging, get_logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    try:
        await init_database(settings)
        applied = await run_migrations()
        logger.info("database_initialized", migrations=applied)
    except Exception as e:
        logger.error(
            "database_initialization_failed",
            error=str(e),
            note="Continuing without database - account endpoints will fail until it is reachable",
        )

    logger.info(
        "application_started",
        log_level=settings.log_level,
        access_expiry_minutes=settings.access_token_expire_minutes,
        refresh_expiry_days=settings.refresh_token_expire_days,
    )

    yield

    await close_database()
    logger.info("application_shutdown")


app = FastAPI(
    title="Account Service",
    description="User registration, login and token lifecycle API",
    version="0.1.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# CORS with credentials so browsers send the token cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_settings().cors_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)

app.include_router(users_router)
app.include_router(router)
