import logging
import sys
from pathlib import Path

from loguru import logger

from app.core.config import settings

# Records bound with one of these components also go to the integrations log
INTEGRATION_COMPONENTS = ("oracle", "anchoring", "webhook")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[component]} | {name}:{line} | {message} | {extra}"


class InterceptHandler(logging.Handler):
    """Routes stdlib records (uvicorn, sqlalchemy, httpx) into loguru."""

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_back and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def is_integration_record(record) -> bool:
    return record["extra"].get("component") in INTEGRATION_COMPONENTS


def integration_log_path() -> Path:
    return Path(settings.log_file).with_name("integrations.log")


def setup_logging():
    level = settings.log_level.upper()

    logger.remove()
    logger.configure(extra={"component": "api"})

    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)
    logger.add(
        settings.log_file,
        level=level,
        format=FILE_FORMAT,
        rotation="500 MB",
        compression="zip",
        backtrace=True,
        diagnose=settings.debug,
    )
    # Oracle calls, anchoring runs and webhook deliveries, kept apart for
    # reconciliation against the audit trail
    logger.add(
        integration_log_path(),
        level="DEBUG",
        format=FILE_FORMAT,
        filter=is_integration_record,
        rotation="100 MB",
        retention="30 days",
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.INFO, force=True)
    for noisy in ("httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
