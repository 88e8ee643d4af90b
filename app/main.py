from fastapi import FastAPI
from fastapi.concurrency import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.api.routes import api_router
from app.core.config import Environment, settings
from app.core.logger import configure_uvicorn_logging, setup_logger, shutdown_logger
from app.middleware.logging import LoggingMiddleware
from app.services.payments.app_store import AppStoreService
from app.services.payments.legacy_receipt import LegacyReceiptResolver
from app.services.payments.verification import VerificationService


def _check_configuration():
    """Log store configuration problems, requests still get a response body"""

    issues = settings.config_issues
    if issues:
        logger.warning(f"Store configuration incomplete: {', '.join(issues)}")
    else:
        logger.success("Store configuration is complete.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""

    setup_logger()
    configure_uvicorn_logging()

    logger.info("Initializing resources...")
    _check_configuration()
    app_store = AppStoreService(settings)
    app.state.verification_service = VerificationService(
        settings=settings,
        resolver=LegacyReceiptResolver(settings),
        app_store=app_store,
    )
    logger.success("Resources initialized.")

    yield  # Application runs here

    logger.info("Cleaning up resources...")
    await app_store.close_client()
    logger.success("Resources cleaned up.")
    shutdown_logger()


ALLOWED_ENVIRONMENTS = {Environment.LOCAL, Environment.DEV, Environment.STG}

app = FastAPI(
    title=settings.app_title,
    version=settings.app_version,
    description=settings.app_description,
    openapi_url=("/openapi.json" if settings.current_environment in ALLOWED_ENVIRONMENTS else None),
    docs_url="/docs" if settings.current_environment in ALLOWED_ENVIRONMENTS else None,
    redoc_url="/redoc" if settings.current_environment in ALLOWED_ENVIRONMENTS else None,
    lifespan=lifespan,
    generate_unique_id_function=lambda route: f"{route.tags[0]}-{route.name}",
)

# Set CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set logging middleware
app.add_middleware(LoggingMiddleware)

# Include API router
app.include_router(api_router)
