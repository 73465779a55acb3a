import os
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

def parse_list_env(env_var: str, default: List[str] = None) -> List[str]:
    """Parse comma-separated environment variable into list"""
    if default is None:
        default = []

    value = os.getenv(env_var, "")
    if not value.strip():
        return default

    return [item.strip() for item in value.split(",") if item.strip()]

def parse_bool_env(env_var: str, default: bool = False) -> bool:
    """Parse boolean environment variable"""
    return os.getenv(env_var, str(default)).lower() in ("true", "1", "yes", "on")

def parse_float_env(env_var: str, default: float) -> float:
    """Parse numeric environment variable, keeping the default on garbage"""
    try:
        return float(os.getenv(env_var, str(default)))
    except ValueError:
        return default

class TimerConfig:
    """Work session timer settings from environment"""

    # A running timer with no heartbeat for longer than this is considered idle
    IDLE_THRESHOLD_MINUTES = parse_float_env("IDLE_THRESHOLD_MINUTES", 10)
    # Upper bound for per-entry thresholds submitted by clients
    MAX_IDLE_THRESHOLD_MINUTES = parse_float_env("MAX_IDLE_THRESHOLD_MINUTES", 240)

    # Stale timer sweep
    AUTO_PAUSE_GRACE_MINUTES = parse_float_env("AUTO_PAUSE_GRACE_MINUTES", 30)

class RateConfig:
    """Hourly rate resolution settings from environment"""

    # Process-local rate cache
    RATE_CACHE_TTL_SECONDS = parse_float_env("RATE_CACHE_TTL_SECONDS", 300)
    RATE_CACHE_MAX_ENTRIES = int(os.getenv("RATE_CACHE_MAX_ENTRIES", "200"))
    RATE_CACHE_EVICT_COUNT = int(os.getenv("RATE_CACHE_EVICT_COUNT", "10"))

    # Raise instead of silently falling back when no usable salary data exists
    RATE_STRICT_MODE = parse_bool_env("RATE_STRICT_MODE", False)

    # Working defaults for profiles without their own configuration
    DEFAULT_HOURS_PER_DAY = parse_float_env("DEFAULT_HOURS_PER_DAY", 8)
    DEFAULT_DAYS_PER_MONTH = parse_float_env("DEFAULT_DAYS_PER_MONTH", 22)
    DEFAULT_OVERTIME_THRESHOLD_HOURS = parse_float_env("DEFAULT_OVERTIME_THRESHOLD_HOURS", 8)
    DEFAULT_OVERTIME_MULTIPLIER = parse_float_env("DEFAULT_OVERTIME_MULTIPLIER", 1.5)

class ServerConfig:
    """Server Configuration from Environment"""

    # Server settings
    HOST = os.getenv("WORKTIMER_HOST", "0.0.0.0")
    PORT = int(os.getenv("WORKTIMER_PORT", "8000"))
    SSL_PORT = int(os.getenv("WORKTIMER_SSL_PORT", "8443"))
    WORKERS = int(os.getenv("WORKTIMER_WORKERS", "1"))
    LOG_LEVEL = os.getenv("WORKTIMER_LOG_LEVEL", "info")

    # SSL/HTTPS settings
    USE_HTTPS = parse_bool_env("USE_HTTPS", False)
    SSL_CERT_FILE = os.getenv("SSL_CERT_FILE", "./certs/cert.pem")
    SSL_KEY_FILE = os.getenv("SSL_KEY_FILE", "./certs/key.pem")

    # Security settings
    ADMIN_SECRET = os.getenv("WORKTIMER_ADMIN_SECRET", "your-secret-key-here")
    LOCALHOST_ONLY_ADMIN = parse_bool_env("LOCALHOST_ONLY_ADMIN", True)
    USER_ID_HEADER = os.getenv("USER_ID_HEADER", "X-User-Id")

    # Database settings
    DATABASE_PATH = os.getenv("DATABASE_PATH", "worktimer.db")

    # Development settings
    SEED_TEST_DATA = parse_bool_env("SEED_TEST_DATA", True)
    DEVELOPMENT_MODE = parse_bool_env("DEVELOPMENT_MODE", False)
    ENABLE_API_DOCS = parse_bool_env("ENABLE_API_DOCS", True)

    # CORS settings
    CORS_ORIGINS = parse_list_env("CORS_ORIGINS", ["*"])
    CORS_ALLOW_CREDENTIALS = parse_bool_env("CORS_ALLOW_CREDENTIALS", True)

    # App metadata
    APP_NAME = os.getenv("APP_NAME", "Work Timer")
    APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
    APP_DESCRIPTION = os.getenv("APP_DESCRIPTION", "Work session timer with salary-history based earnings")
