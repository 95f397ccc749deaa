import logging
import sys

import structlog
from pythonjsonlogger import jsonlogger

from ..config import get_settings

_configured = False


def setup_logging():
    """Structured logging setup: structlog on top of stdlib logging."""
    global _configured
    settings = get_settings()

    renderer = structlog.processors.JSONRenderer() if settings.log_json else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if _configured:
        return structlog.get_logger()

    root = logging.getLogger()
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        handler.setFormatter(jsonlogger.JsonFormatter(fmt="%(asctime)s %(name)s %(levelname)s %(message)s"))
    else:
        handler.setFormatter(logging.Formatter("%(levelname)-8s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True

    return structlog.get_logger()
