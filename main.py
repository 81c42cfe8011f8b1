import sys
import traceback

import uvicorn

from userforge.utils.config import load_settings
from userforge.utils.exceptions import ConfigError
from userforge.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def _unhandled_exception(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions before the process exits non-zero."""
    if exc_type is KeyboardInterrupt:
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    logger.critical(
        "Unhandled exception, process will exit",
        error=str(exc_value),
        traceback="".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
    )


def main() -> None:
    """
    Entry point for the UserForge API.
    Loads settings, configures logging and serves web.main:create_app.
    """
    sys.excepthook = _unhandled_exception

    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.logging)

    host = settings.server.host
    port = settings.server.port
    reload = settings.is_development
    workers = settings.server.workers if settings.is_production else 1

    logger.info(
        "Starting UserForge API",
        environment=settings.app.environment,
        host=host,
        port=port,
        workers=workers,
    )

    try:
        # Factory form so every worker builds its own app from the same settings file
        uvicorn.run(
            "web.main:create_app",
            factory=True,
            host=host,
            port=port,
            reload=reload and workers == 1,
            workers=workers,
            log_level="info" if settings.is_production else "debug",
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
        sys.exit(0)


if __name__ == "__main__":
    main()
