import uvicorn
import logging
from pathlib import Path
from worktimer.main import app
from worktimer.core.config import ServerConfig

# Configure logging for the main entry point
log_level = getattr(logging, ServerConfig.LOG_LEVEL.upper())
logging.basicConfig(level=log_level)
logger = logging.getLogger(__name__)

if __name__ == "__main__":
    if ServerConfig.USE_HTTPS:
        if not Path(ServerConfig.SSL_CERT_FILE).exists() or not Path(ServerConfig.SSL_KEY_FILE).exists():
            logger.error(f"SSL certificate not found at {ServerConfig.SSL_CERT_FILE} / {ServerConfig.SSL_KEY_FILE}, falling back to HTTP")
            ServerConfig.USE_HTTPS = False

    # uvicorn needs an import string to spawn workers
    target = "worktimer.main:app" if ServerConfig.WORKERS > 1 else app
    if ServerConfig.WORKERS > 1:
        logger.warning("⚠️  Each worker keeps its own rate cache; salary changes may take up to the cache TTL to show everywhere")

    if ServerConfig.USE_HTTPS:
        logger.info(f"Starting HTTPS server on port {ServerConfig.SSL_PORT}...")
        logger.info(f"API Documentation: https://localhost:{ServerConfig.SSL_PORT}/docs")

        uvicorn.run(
            target,
            host=ServerConfig.HOST,
            port=ServerConfig.SSL_PORT,
            ssl_keyfile=ServerConfig.SSL_KEY_FILE,
            ssl_certfile=ServerConfig.SSL_CERT_FILE,
            log_level=ServerConfig.LOG_LEVEL.lower(),
            workers=ServerConfig.WORKERS if ServerConfig.WORKERS > 1 else None
        )
    else:
        logger.info(f"Starting HTTP server on port {ServerConfig.PORT}...")
        logger.info(f"API Documentation: http://localhost:{ServerConfig.PORT}/docs")

        uvicorn.run(
            target,
            host=ServerConfig.HOST,
            port=ServerConfig.PORT,
            log_level=ServerConfig.LOG_LEVEL.lower(),
            workers=ServerConfig.WORKERS if ServerConfig.WORKERS > 1 else None
        )
