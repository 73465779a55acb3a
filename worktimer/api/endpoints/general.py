import logging

from fastapi import APIRouter, HTTPException
from worktimer.core.config import ServerConfig, TimerConfig, RateConfig
from worktimer.core.database import get_db

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/")
async def root():
    return {
        "message": ServerConfig.APP_NAME,
        "version": ServerConfig.APP_VERSION,
        "description": ServerConfig.APP_DESCRIPTION,
        "status": "running",
        "https_enabled": ServerConfig.USE_HTTPS,
    }

@router.get("/config")
async def get_public_config():
    """Get public configuration information"""
    return {
        "app_name": ServerConfig.APP_NAME,
        "app_version": ServerConfig.APP_VERSION,
        "idle_threshold_minutes": TimerConfig.IDLE_THRESHOLD_MINUTES,
        "max_idle_threshold_minutes": TimerConfig.MAX_IDLE_THRESHOLD_MINUTES,
        "auto_pause_grace_minutes": TimerConfig.AUTO_PAUSE_GRACE_MINUTES,
        "rate_cache_ttl_seconds": RateConfig.RATE_CACHE_TTL_SECONDS,
        "rate_strict_mode": RateConfig.RATE_STRICT_MODE,
        "development_mode": ServerConfig.DEVELOPMENT_MODE,
    }

@router.get("/health")
async def health_check():
    """Health check with running timer count"""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.execute("SELECT COUNT(*) FROM time_entries WHERE timer_status = 'running' AND deleted_at IS NULL")
            running_timers = cursor.fetchone()[0]

            return {
                "status": "healthy",
                "database": "connected",
                "running_timers": running_timers,
            }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")
