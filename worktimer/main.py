import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from worktimer.core.config import ServerConfig, TimerConfig, RateConfig
from worktimer.core.database import init_database, seed_test_data
from worktimer.api.endpoints import general, timer, entries, profile, admin

# Configure logging
log_level = getattr(logging, ServerConfig.LOG_LEVEL.upper())
logging.basicConfig(level=log_level)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    logger.info("=" * 60)
    logger.info(f"🚀 {ServerConfig.APP_NAME.upper()}")
    logger.info(f"Version: {ServerConfig.APP_VERSION}")
    logger.info("=" * 60)

    init_database()

    if ServerConfig.SEED_TEST_DATA:
        seed_test_data()

    logger.info(f"Idle threshold: {TimerConfig.IDLE_THRESHOLD_MINUTES} minutes")
    logger.info(f"Rate cache: TTL {RateConfig.RATE_CACHE_TTL_SECONDS}s, max {RateConfig.RATE_CACHE_MAX_ENTRIES} entries")
    if RateConfig.RATE_STRICT_MODE:
        logger.info("Strict rate mode: degraded rates are rejected")
    else:
        logger.warning("⚠️  Strict rate mode DISABLED - missing salary data falls back to nearest/default rates")

    logger.info(f"Database: {ServerConfig.DATABASE_PATH}")
    logger.info(f"HTTPS: {'ENABLED' if ServerConfig.USE_HTTPS else 'DISABLED'}")
    logger.info("=" * 60)
    logger.info("Work Timer Server started successfully!")

    yield  # Server is running

    # Shutdown logic
    logger.info("Shutting down Work Timer Server...")


app = FastAPI(
    title=ServerConfig.APP_NAME,
    version=ServerConfig.APP_VERSION,
    description=ServerConfig.APP_DESCRIPTION,
    lifespan=lifespan,
    docs_url="/docs" if ServerConfig.ENABLE_API_DOCS else None,
    redoc_url="/redoc" if ServerConfig.ENABLE_API_DOCS else None,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=ServerConfig.CORS_ORIGINS,
    allow_credentials=ServerConfig.CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(general.router, tags=["General"])
app.include_router(timer.router, tags=["Timer"])
app.include_router(entries.router, tags=["Time Entries"])
app.include_router(profile.router, tags=["Profile"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
